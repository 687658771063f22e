"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_run_engine.api.routes import health_router, payroll_runs_router
from payroll_run_engine.config import get_settings
from payroll_run_engine.database import dispose_db, init_db
from payroll_run_engine.errors import (
    ImmutableRunError,
    InvalidTransitionError,
    InvariantViolationError,
    OverlappingRunError,
    PayrollEngineError,
    PayrollRunNotFoundError,
    RunConflictError,
)
from payroll_run_engine.services.worker_pool import shutdown_worker_pool

logger = logging.getLogger(__name__)

# Domain error -> (HTTP status, error code); first match wins
ERROR_STATUS: list[tuple[type[PayrollEngineError], int, str]] = [
    (PayrollRunNotFoundError, status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    (RunConflictError, status.HTTP_409_CONFLICT, "RUN_CONFLICT"),
    (OverlappingRunError, status.HTTP_409_CONFLICT, "OVERLAPPING_RUN"),
    (ImmutableRunError, status.HTTP_409_CONFLICT, "IMMUTABLE_RUN"),
    (InvalidTransitionError, status.HTTP_400_BAD_REQUEST, "INVALID_TRANSITION"),
    (InvariantViolationError, status.HTTP_500_INTERNAL_SERVER_ERROR, "INVARIANT_VIOLATION"),
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    init_db()
    yield
    # Shutdown
    shutdown_worker_pool()
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="Payroll Run Engine API",
        description="Payroll run calculation, approval and payment tracking",
        version=settings.engine_version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollEngineError)
    async def engine_error_handler(request: Request, exc: PayrollEngineError) -> JSONResponse:
        """Map domain errors to HTTP responses."""
        for error_type, status_code, code in ERROR_STATUS:
            if isinstance(exc, error_type):
                break
        else:
            status_code, code = status.HTTP_500_INTERNAL_SERVER_ERROR, "ENGINE_ERROR"
        if status_code >= 500:
            logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": code})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc), "code": "INVALID_REQUEST"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(payroll_runs_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
