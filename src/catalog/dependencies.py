"""FastAPI dependencies for the quiz catalog.

Provides dependency injection for:
- Catalog service
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import CatalogError, CatalogService


async def get_catalog_service(request: Request) -> CatalogService:
    """Get catalog service from app state.

    Raises:
        HTTPException 503: If the service is not initialized
    """
    app_state = request.app.state
    if not getattr(app_state, "catalog_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Catalog service not available",
        )
    return app_state.catalog_service


# Type alias for dependency injection
CatalogServiceDep = Annotated[CatalogService, Depends(get_catalog_service)]


def handle_catalog_error(error: CatalogError) -> HTTPException:
    """Convert catalog errors to HTTP exceptions."""
    status_map = {
        "module_not_found": status.HTTP_404_NOT_FOUND,
        "quiz_not_found": status.HTTP_404_NOT_FOUND,
        "invalid_reorder": status.HTTP_400_BAD_REQUEST,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
