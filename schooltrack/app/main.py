"""
SchoolTrack API application: routers, error handlers and the maintenance
loop that runs for the lifetime of the process.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from schooltrack.app.core.config import settings
from schooltrack.app.api.v1.router import router as api_v1_router
from schooltrack.app.db.session import engine, Base
from schooltrack.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from schooltrack.app.core.observability import ObservabilityMiddleware, configure_logging
from schooltrack.app.core.redis_client import ping_redis, close_redis
from schooltrack.app.services.maintenance import maintenance_loop

# Import models to ensure they are registered with Base
from schooltrack.app.models.user import User  # noqa: F401
from schooltrack.app.models.audit_log import AuditLog  # noqa: F401
from schooltrack.app.models.vehicle import Vehicle  # noqa: F401
from schooltrack.app.models.route import Route, Stop  # noqa: F401
from schooltrack.app.models.student import Student  # noqa: F401
from schooltrack.app.models.trip import Trip  # noqa: F401
from schooltrack.app.models.attendance import AttendanceRecord  # noqa: F401
from schooltrack.app.models.position import PositionSample, LastKnownPosition  # noqa: F401
from schooltrack.app.models.archived_position_sample import ArchivedPositionSample  # noqa: F401
from schooltrack.app.models.stop_event import StopEvent  # noqa: F401
from schooltrack.app.models.trip_history import TripHistory  # noqa: F401
from schooltrack.app.models.notification import Notification  # noqa: F401

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Runs the maintenance loop (stop event sweep, trip resets) until shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maintenance_task = asyncio.create_task(maintenance_loop())
    logger.info("%s started", settings.app_name)
    yield
    maintenance_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await maintenance_task
    await close_redis()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Trip lifecycle and live tracking backend for school transport",
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
    redis_ok = await ping_redis()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "redis": redis_ok,
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to SchoolTrack Backend API",
        "docs": "/docs",
        "health": "/health",
    }
