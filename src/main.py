"""Stepwise API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.catalog.router import router as catalog_router
from src.catalog.service import CatalogService
from src.config import Settings, get_settings
from src.core.context import get_request_id
from src.core.database import init_async_cassandra, shutdown_async_cassandra
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.health import router as health_router
from src.progress.engine import ProgressEngine
from src.progress.repair import RepairService
from src.progress.repository import ProgressRepository
from src.progress.router import admin_router as progress_admin_router
from src.progress.router import router as progress_router
from src.progress.service import ProgressService


settings = get_settings()
configure_structlog(settings)

logger = get_logger(__name__)


def init_services(app: FastAPI, session, settings: Settings) -> None:
    """Build the service graph on one session and publish it on app state."""
    keyspace = settings.cassandra_keyspace
    catalog_service = CatalogService(session=session, keyspace=keyspace)
    repository = ProgressRepository(session=session, keyspace=keyspace)
    engine = ProgressEngine(
        catalog=catalog_service,
        default_passing_score=settings.progress_default_passing_score,
    )

    app.state.catalog_service = catalog_service
    app.state.progress_service = ProgressService(
        repository=repository,
        engine=engine,
        attempts_limit=settings.progress_attempts_limit,
    )
    app.state.repair_service = RepairService(
        repository=repository,
        catalog=catalog_service,
        engine=engine,
        concurrency=settings.progress_repair_concurrency,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Connect Cassandra and wire services; readiness reports failures."""
    settings = get_settings()
    logger.info(
        "starting_application",
        version=settings.app_version,
        environment=settings.environment,
    )

    try:
        session = await init_async_cassandra()
        init_services(app, session, settings)
        logger.info("services_initialized")
    except Exception as e:
        logger.warning(
            "services_not_initialized",
            error_type=type(e).__name__,
            error=str(e),
        )

    yield

    logger.info("shutting_down_application")
    await shutdown_async_cassandra()


def _error_body(request: Request, status_code: int, message: str) -> dict:
    return {
        "error": True,
        "message": message,
        "status_code": status_code,
        "request_id": getattr(request.state, "request_id", None) or get_request_id(),
    }


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> ORJSONResponse:
    """Expose the detail of client errors only."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=str(exc.detail),
        path=request.url.path,
    )
    message = (
        str(exc.detail)
        if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
        else "Internal server error"
    )
    return ORJSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.status_code, message),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> ORJSONResponse:
    """422 with one entry per invalid field."""
    errors = exc.errors()
    logger.warning("validation_error", errors=len(errors), path=request.url.path)

    body = _error_body(
        request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error"
    )
    body["details"] = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", "Invalid value"),
        }
        for err in errors
    ]
    return ORJSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body)


async def unhandled_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.exception(
        "unhandled_exception",
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred. Please try again later.",
        ),
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Sequential learning progression API",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )
    # Added last so it wraps everything else
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router)
    app.include_router(catalog_router)
    app.include_router(progress_router)
    app.include_router(progress_admin_router)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {"message": "Stepwise API", "version": settings.app_version}

    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn using the configured bind address."""
    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_config=None,
    )
