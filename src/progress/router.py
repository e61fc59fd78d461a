"""Sequential progression API endpoints.

Provides routes for:
- Progress queries (record created on first access)
- Quiz access checks and completion
- Attempt history
- Module scores and re-normalization
- Admin repair and record deletion
"""

from uuid import UUID

from fastapi import APIRouter, Query, status

from src.auth.dependencies import AdminUser, CurrentUser
from src.auth.permissions import bypasses_progression

from .dependencies import (
    ProgressServiceDep,
    RepairServiceDep,
    handle_progress_error,
)
from .schemas import (
    CompleteQuizRequest,
    CompleteQuizResponse,
    ModuleProgressDetailResponse,
    ModuleProgressResponse,
    ProgressResponse,
    QuizAccessResponse,
    QuizAttemptListResponse,
    QuizAttemptResponse,
    RecalculateResponse,
    RepairSummaryResponse,
    RepairSystemRequest,
)
from .service import ProgressError


router = APIRouter(prefix="/v1/progress", tags=["progress"])
admin_router = APIRouter(prefix="/v1/admin/progress", tags=["admin-progress"])


# ==============================================================================
# Progress Record
# ==============================================================================


@router.get(
    "",
    response_model=ProgressResponse,
    summary="Get my progress",
)
async def get_my_progress(
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> ProgressResponse:
    """Get the current user's progress, creating it with default access."""
    progress = await progress_service.get_or_create_progress(user.id)
    return ProgressResponse.from_entity(progress)


# ==============================================================================
# Quiz Endpoints
# ==============================================================================


@router.get(
    "/quizzes/{quiz_id}/access",
    response_model=QuizAccessResponse,
    summary="Check quiz access",
)
async def check_quiz_access(
    quiz_id: UUID,
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> QuizAccessResponse:
    """Check whether the current user may open a quiz.

    The first quiz of every module is always open. Instructors and admins
    bypass progression.
    """
    try:
        unlocked, quiz = await progress_service.check_quiz_access(user.id, quiz_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return QuizAccessResponse(
        quiz_id=quiz.id,
        module_id=quiz.module_id,
        order=quiz.order,
        unlocked=unlocked or bypasses_progression(user.role),
    )


@router.post(
    "/quizzes/{quiz_id}/complete",
    response_model=CompleteQuizResponse,
    summary="Submit quiz result",
)
async def complete_quiz(
    quiz_id: UUID,
    data: CompleteQuizRequest,
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> CompleteQuizResponse:
    """Record a scored attempt.

    Passing unlocks the next quiz, or completes the module and unlocks the
    next one once every quiz was passed. Failing never unlocks anything.
    """
    try:
        _, outcome = await progress_service.complete_quiz(
            user.id, quiz_id, data.score
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return CompleteQuizResponse.from_outcome(outcome)


@router.get(
    "/quizzes/{quiz_id}/attempts",
    response_model=QuizAttemptListResponse,
    summary="List my attempts for a quiz",
)
async def list_quiz_attempts(
    quiz_id: UUID,
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> QuizAttemptListResponse:
    """Attempt history for one quiz, newest first."""
    attempts = await progress_service.list_attempts(user.id, quiz_id=quiz_id)
    return QuizAttemptListResponse(
        items=[QuizAttemptResponse.from_entity(a) for a in attempts],
        total=len(attempts),
    )


# ==============================================================================
# Module Endpoints
# ==============================================================================


@router.get(
    "/modules/{module_id}",
    response_model=ModuleProgressDetailResponse,
    summary="Get my module progress",
)
async def get_module_progress(
    module_id: UUID,
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> ModuleProgressDetailResponse:
    """Module entry, unlock state and final score (mean best score)."""
    try:
        entry, unlocked, final_score = await progress_service.get_module_progress(
            user.id, module_id
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return ModuleProgressDetailResponse(
        module_id=module_id,
        unlocked=unlocked,
        final_score=final_score,
        progress=ModuleProgressResponse.from_entity(entry) if entry else None,
    )


@router.post(
    "/modules/{module_id}/recalculate",
    response_model=RecalculateResponse,
    summary="Recalculate module completion",
)
async def recalculate_module(
    module_id: UUID,
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> RecalculateResponse:
    """Prune stale quiz references and recompute the completion percentage."""
    try:
        percentage = await progress_service.recalculate_module(user.id, module_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return RecalculateResponse(module_id=module_id, completion_percentage=percentage)


# ==============================================================================
# Admin Endpoints
# ==============================================================================


@admin_router.post(
    "/repair-system",
    response_model=RepairSummaryResponse,
    summary="Repair progress records",
)
async def repair_system(
    repair_service: RepairServiceDep,
    _admin: AdminUser,
    data: RepairSystemRequest | None = None,
) -> RepairSummaryResponse:
    """Re-derive progress records against the current catalog.

    Idempotent: a second run reports zero repaired records.
    """
    user_id = data.user_id if data else None
    summary = await repair_service.repair_system(user_id=user_id)
    return RepairSummaryResponse.from_summary(summary)


@admin_router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a user's progress",
)
async def delete_user_progress(
    user_id: UUID,
    progress_service: ProgressServiceDep,
    _admin: AdminUser,
) -> None:
    """Remove a user's progress record and attempt history."""
    try:
        await progress_service.delete_progress(user_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@admin_router.get(
    "/{user_id}",
    response_model=ProgressResponse,
    summary="Get a user's progress",
)
async def get_user_progress(
    user_id: UUID,
    progress_service: ProgressServiceDep,
    _admin: AdminUser,
    create: bool = Query(False, description="Create the record if missing"),
) -> ProgressResponse:
    """Inspect any user's progress record."""
    try:
        if create:
            progress = await progress_service.get_or_create_progress(user_id)
        else:
            progress = await progress_service.get_progress(user_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return ProgressResponse.from_entity(progress)
