"""Quiz catalog API endpoints.

Provides routes for:
- Module listing and creation
- Quiz listing, creation and reordering
- Deletions (order compaction followed by progress repair)
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from src.auth.dependencies import CurrentUser, InstructorUser
from src.progress.dependencies import RepairServiceDep

from .dependencies import CatalogServiceDep, handle_catalog_error
from .schemas import (
    CreateModuleRequest,
    CreateQuizRequest,
    ModuleListResponse,
    ModuleResponse,
    QuizListResponse,
    QuizResponse,
    ReorderQuizzesRequest,
    StructuralChangeResponse,
)
from .service import CatalogError


router = APIRouter(prefix="/v1", tags=["catalog"])


# ==============================================================================
# Module Endpoints
# ==============================================================================


@router.get(
    "/modules",
    response_model=ModuleListResponse,
    summary="List modules",
)
async def list_modules(
    catalog_service: CatalogServiceDep,
    _user: CurrentUser,
) -> ModuleListResponse:
    """List modules in curriculum order."""
    modules = await catalog_service.find_modules_ordered_by(ascending=True)
    return ModuleListResponse(
        items=[catalog_service.to_module_response(m) for m in modules],
        total=len(modules),
    )


@router.post(
    "/modules",
    response_model=ModuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create module",
)
async def create_module(
    data: CreateModuleRequest,
    catalog_service: CatalogServiceDep,
    user: InstructorUser,
) -> ModuleResponse:
    """Append a module at the end of the curriculum."""
    module = await catalog_service.create_module(data, creator_id=user.id)
    return catalog_service.to_module_response(module)


@router.delete(
    "/modules/{module_id}",
    response_model=StructuralChangeResponse,
    summary="Delete module",
)
async def delete_module(
    module_id: UUID,
    catalog_service: CatalogServiceDep,
    repair_service: RepairServiceDep,
    _user: InstructorUser,
) -> StructuralChangeResponse:
    """Delete a module with its quizzes.

    Later modules shift down one order slot, then every progress record
    drops the module and re-points its current module.
    """
    try:
        module, reordered = await catalog_service.delete_module(module_id)
    except CatalogError as e:
        raise handle_catalog_error(e) from e

    summary = await repair_service.repair_after_module_deletion(
        module.id, module.order
    )
    return StructuralChangeResponse(
        message="Module deleted",
        reordered=reordered,
        progress_records_repaired=summary.repaired,
    )


# ==============================================================================
# Quiz Endpoints
# ==============================================================================


@router.get(
    "/modules/{module_id}/quizzes",
    response_model=QuizListResponse,
    summary="List module quizzes",
)
async def list_module_quizzes(
    module_id: UUID,
    catalog_service: CatalogServiceDep,
    _user: CurrentUser,
) -> QuizListResponse:
    """List a module's quizzes in order."""
    module = await catalog_service.get_module(module_id)
    if not module:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Module not found",
        )

    quizzes = await catalog_service.find_quizzes_by_module(module_id)
    return QuizListResponse(
        items=[catalog_service.to_quiz_response(q) for q in quizzes],
        total=len(quizzes),
    )


@router.post(
    "/modules/{module_id}/quizzes",
    response_model=QuizResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create quiz",
)
async def create_quiz(
    module_id: UUID,
    data: CreateQuizRequest,
    catalog_service: CatalogServiceDep,
    _user: InstructorUser,
) -> QuizResponse:
    """Append a quiz at the end of a module."""
    try:
        quiz = await catalog_service.create_quiz(module_id, data)
    except CatalogError as e:
        raise handle_catalog_error(e) from e

    return catalog_service.to_quiz_response(quiz)


@router.put(
    "/modules/{module_id}/quizzes/order",
    response_model=StructuralChangeResponse,
    summary="Reorder module quizzes",
)
async def reorder_quizzes(
    module_id: UUID,
    data: ReorderQuizzesRequest,
    catalog_service: CatalogServiceDep,
    repair_service: RepairServiceDep,
    _user: InstructorUser,
) -> StructuralChangeResponse:
    """Assign orders 1..N following the given quiz IDs, then repair progress."""
    try:
        changed = await catalog_service.reorder_quizzes(module_id, data.quiz_ids)
    except CatalogError as e:
        raise handle_catalog_error(e) from e

    summary = await repair_service.repair_system()
    return StructuralChangeResponse(
        message="Quizzes reordered",
        reordered=changed,
        progress_records_repaired=summary.repaired,
    )


@router.delete(
    "/quizzes/{quiz_id}",
    response_model=StructuralChangeResponse,
    summary="Delete quiz",
)
async def delete_quiz(
    quiz_id: UUID,
    catalog_service: CatalogServiceDep,
    repair_service: RepairServiceDep,
    _user: InstructorUser,
) -> StructuralChangeResponse:
    """Delete a quiz; later quizzes of its module shift down one slot."""
    try:
        quiz, reordered = await catalog_service.delete_quiz(quiz_id)
    except CatalogError as e:
        raise handle_catalog_error(e) from e

    summary = await repair_service.repair_after_quiz_deletion(quiz.module_id)
    return StructuralChangeResponse(
        message="Quiz deleted",
        reordered=reordered,
        progress_records_repaired=summary.repaired,
    )
