"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tally import __version__
from tally.api.routes import (
    exceptions_router,
    health_router,
    packs_router,
    pay_runs_router,
    variances_router,
)
from tally.config import get_settings
from tally.database import dispose_db, init_db
from tally.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TallyError,
    ValidationError,
)
from tally.logging_config import setup_logging

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[TallyError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
}


def status_code_for(exc: TallyError) -> int:
    """HTTP status for a typed failure, falling back to 400."""
    for error_type, code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    setup_logging(settings.log_level, format_as_json=settings.log_json)
    init_db()
    yield
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Tally API",
        description="Payroll reconciliation, review and pack workflow",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(TallyError)
    async def tally_error_handler(request: Request, exc: TallyError) -> JSONResponse:
        """Map typed failures to their HTTP status."""
        return JSONResponse(
            status_code=status_code_for(exc),
            content={"detail": exc.message, "code": exc.code, "details": exc.details or None},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
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
    app.include_router(pay_runs_router, prefix="/api/v1")
    app.include_router(exceptions_router, prefix="/api/v1")
    app.include_router(variances_router, prefix="/api/v1")
    app.include_router(packs_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
