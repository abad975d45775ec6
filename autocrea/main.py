"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from autocrea import __version__
from autocrea.api.middleware import RequestLoggingMiddleware
from autocrea.api.rate_limiting import create_limiter, retry_after_seconds
from autocrea.api.v1.router import router as v1_router
from autocrea.config import Settings, get_settings
from autocrea.core.events import EventBus
from autocrea.core.exceptions import AutocreaError, RateLimitExceededError
from autocrea.core.orchestrator import DeploymentOrchestrator
from autocrea.core.scheduler import PollingScheduler
from autocrea.core.store import DeploymentStore, create_store
from autocrea.providers.registry import ProviderRegistry, build_registry
from autocrea.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    app_settings: Settings = app.state.settings

    # Startup
    configure_logging(app_settings)
    await app.state.store.open()
    if app_settings.poll_enabled:
        app.state.scheduler.start()

    logger.info(
        "application.starting",
        version=__version__,
        environment=app_settings.app_env,
        store=app_settings.store_backend,
        polling=app_settings.poll_enabled,
    )

    yield

    # Shutdown
    await app.state.scheduler.stop()
    await app.state.registry.aclose()
    await app.state.store.close()
    logger.info("application.shutdown")


def _error_response(
    status_code: int, code: str, message: str, details: dict | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "details": details or {},
            }
        },
    )


def create_app(
    settings: Settings | None = None,
    registry: ProviderRegistry | None = None,
    store: DeploymentStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="AUTOCREA Deployment API",
        description="Deploys generated projects to Vercel, Netlify and Railway",
        version=__version__,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        lifespan=lifespan,
    )

    # Services live for the lifetime of the app
    app.state.settings = settings
    app.state.registry = registry or build_registry(settings)
    app.state.store = store or create_store(settings)
    app.state.events = EventBus()
    app.state.orchestrator = DeploymentOrchestrator(
        store=app.state.store,
        registry=app.state.registry,
        events=app.state.events,
        settings=settings,
    )
    app.state.scheduler = PollingScheduler(
        app.state.orchestrator,
        interval_seconds=settings.poll_interval_seconds,
        max_concurrency=settings.poll_max_concurrency,
    )
    app.state.limiter = create_limiter(settings)

    # Add middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # Register exception handlers
    @app.exception_handler(AutocreaError)
    async def autocrea_error_handler(
        request: Request, exc: AutocreaError
    ) -> JSONResponse:
        """Handle application-specific errors."""
        response = _error_response(exc.status_code, exc.code, exc.message, exc.details)
        response.headers.update(exc.headers)
        return response

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(
        request: Request, exc: RateLimitExceeded
    ) -> JSONResponse:
        """Report an exhausted deployment quota in the error envelope."""
        return await autocrea_error_handler(
            request, RateLimitExceededError(retry_after_seconds(request, exc))
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed requests are client errors, reported as 400."""
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "VALIDATION",
            "Invalid request",
            {
                "errors": [
                    {
                        "loc": [str(part) for part in err.get("loc", ())],
                        "msg": err.get("msg", ""),
                    }
                    for err in exc.errors()
                ]
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected errors."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )

        if settings.is_development:
            return _error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "INTERNAL_ERROR",
                str(exc),
                {"type": type(exc).__name__},
            )

        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "An unexpected error occurred",
        )

    # Include routers
    app.include_router(v1_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    app_settings = get_settings()
    uvicorn.run(
        "autocrea.main:app",
        host=app_settings.api_host,
        port=app_settings.api_port,
        reload=app_settings.is_development,
    )
