"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hr_ledger import __version__
from hr_ledger.api.routes import (
    health_router,
    jobs_router,
    leaves_router,
    payroll_runs_router,
    workflows_router,
)
from hr_ledger.config import get_settings
from hr_ledger.database import create_schema, dispose_db
from hr_ledger.exceptions import HRLedgerError
from hr_ledger.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    await create_schema()
    logger.info("HR ledger started", extra={"engine_version": settings.engine_version})
    yield
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="HR Payroll & Leave Ledger API",
        description="Leave ledger, accrual jobs, approvals and payroll runs",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(HRLedgerError)
    async def domain_exception_handler(request: Request, exc: HRLedgerError) -> JSONResponse:
        """Map domain errors to their HTTP status."""
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
                "kind": "internal",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(leaves_router, prefix="/api/v1")
    app.include_router(jobs_router, prefix="/api/v1")
    app.include_router(workflows_router, prefix="/api/v1")
    app.include_router(payroll_runs_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
