"""FastAPI application factory and main entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from attempt_engine.api.v1.live import EngineRegistry
from attempt_engine.api.v1.router import api_router
from attempt_engine.clients.attempt_store import HttpAttemptStore
from attempt_engine.common.request_id import RequestIDMiddleware
from attempt_engine.core.app_exceptions import AppError
from attempt_engine.core.config import settings
from attempt_engine.core.errors import (
    app_error_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from attempt_engine.core.logging import get_logger, setup_logging
from attempt_engine.observability.logging import setup_structured_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    setup_structured_logging()
    store = None
    if getattr(app.state, "registry", None) is None:
        store = HttpAttemptStore()
        app.state.registry = EngineRegistry(store)
    logger.info("Attempt engine started", extra={"env": settings.ENV})
    yield
    # Shutdown: stop timers and release integrity for every live attempt
    await app.state.registry.close_all()
    if store is not None:
        await store.aclose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version="1.0.0",
        description="Exam attempt engine - timed attempts with integrity monitoring",
        openapi_url="/openapi.json" if settings.ENV != "prod" else None,
        docs_url="/docs" if settings.ENV != "prod" else None,
        redoc_url="/redoc" if settings.ENV != "prod" else None,
        lifespan=lifespan,
    )

    # Add middleware (order matters - first added is outermost)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add exception handlers
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include API routers
    app.include_router(api_router, prefix=settings.API_PREFIX)

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint - API information."""
        return {
            "message": settings.PROJECT_NAME,
            "version": "1.0.0",
            "docs_url": "/docs" if settings.ENV != "prod" else None,
        }

    return app


# Create app instance
app = create_app()
