"""
FastAPI Application Entry Point.

This is the main application file for the Freelance Backend (activity
reports and their immutable ledger).
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from freelance_backend.app.core.config import settings
from freelance_backend.app.api.v1.router import router as api_v1_router
from freelance_backend.app.core.dependencies import CurrentUser, get_current_user
from freelance_backend.app.core.observability import ObservabilityMiddleware, setup_logging
from freelance_backend.app.core.redis_client import ping_redis
from freelance_backend.app.db.session import engine, Base
from freelance_backend.app.domain.ledger.ledger_service import get_ledger_repository
from freelance_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from fastapi import HTTPException

# Import models to ensure they are registered with Base
from freelance_backend.app.models.assignment import Assignment
from freelance_backend.app.models.audit_log import AuditLog
from freelance_backend.app.models.report import Report
from freelance_backend.app.models.entry import Entry
from freelance_backend.app.models.relations import ReportAssignmentLink, EntryReportLink, EntryAssignmentLink
from freelance_backend.app.models.ledger_commit import LedgerCommit, LedgerOrphan

logger = logging.getLogger("freelance_backend")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging.
    2. Creates database tables.
    3. Initializes the ledger repository (directory, git repo, root commit).
    """
    setup_logging(settings.log_level)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await get_ledger_repository().init()
    logger.info("Ledger ready at %s", settings.ledger_path)
    yield
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Activity reports (CRA) with an append-only audit ledger",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and Redis reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the Freelance Backend API",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/auth/whoami", tags=["Authentication"])
async def whoami(current_user: CurrentUser = Depends(get_current_user)):
    """Echo the identity carried by the bearer token (401 when missing or invalid)."""
    return {"user_id": current_user.user_id, "username": current_user.username}
