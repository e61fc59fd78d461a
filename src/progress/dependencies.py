"""FastAPI dependencies for sequential progression.

Provides dependency injection for:
- Progress service
- Repair service
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .repair import RepairService
from .service import ProgressError, ProgressService


async def get_progress_service(request: Request) -> ProgressService:
    """Get progress service from app state.

    Raises:
        HTTPException 503: If the service is not initialized
    """
    app_state = request.app.state
    if not getattr(app_state, "progress_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress service not available",
        )
    return app_state.progress_service


async def get_repair_service(request: Request) -> RepairService:
    """Get repair service from app state.

    Raises:
        HTTPException 503: If the service is not initialized
    """
    app_state = request.app.state
    if not getattr(app_state, "repair_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Repair service not available",
        )
    return app_state.repair_service


# Type aliases for dependency injection
ProgressServiceDep = Annotated[ProgressService, Depends(get_progress_service)]
RepairServiceDep = Annotated[RepairService, Depends(get_repair_service)]


def handle_progress_error(error: ProgressError) -> HTTPException:
    """Convert progress errors to HTTP exceptions."""
    status_map = {
        "quiz_not_found": status.HTTP_404_NOT_FOUND,
        "module_not_found": status.HTTP_404_NOT_FOUND,
        "progress_not_found": status.HTTP_404_NOT_FOUND,
        "validation_failed": status.HTTP_422_UNPROCESSABLE_ENTITY,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
