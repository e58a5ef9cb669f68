"""Main FastAPI application for the EV charger task scheduler."""

from contextlib import asynccontextmanager
from typing import Any, Dict

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from evcharge import __version__
from evcharge.core import db_manager, get_global_settings
from evcharge.core.logging import setup_logging
from evcharge.features.scheduler import (
    get_worker,
    scheduler_router,
    start_worker,
    stop_worker,
)

settings = get_global_settings()
setup_logging(settings.log_level)
logger = structlog.get_logger(__name__)


async def _start_worker_safely() -> None:
    """Start the task scheduler worker with error handling."""
    try:
        worker = await start_worker()
        if worker:
            logger.info("Task scheduler worker started")
    except Exception as e:
        logger.error(
            "Failed to start task scheduler worker",
            error=str(e),
            error_type=type(e).__name__,
        )
        # Don't fail startup - the API can still serve reads


async def _stop_worker_safely() -> None:
    """Stop the task scheduler worker with error handling."""
    try:
        await stop_worker()
    except Exception as e:
        logger.error(
            "Error during worker shutdown",
            error=str(e),
            error_type=type(e).__name__,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting up EV charger task scheduler", environment=settings.environment)
    await _start_worker_safely()
    yield
    logger.info("Shutting down EV charger task scheduler")
    await _stop_worker_safely()
    await db_manager.close()


# OpenAPI tags metadata
tags_metadata = [
    {
        "name": "scheduler",
        "description": "Schedule management, manual runs and run history for automated tasks.",
    },
    {
        "name": "health",
        "description": "Health check and system status endpoints.",
    },
]

# Create FastAPI application
app = FastAPI(
    title="EV Charger Desk - Task Scheduler",
    description="""
    Administrative task scheduler for the EV charger desk.

    ## Features

    * **Schedules**: Cron, interval and manual schedules for report, email and export tasks
    * **Manual runs**: Trigger any schedule immediately without disturbing its cadence
    * **Run history**: Outcome of every execution, newest first
    * **System tasks**: Fixed maintenance crons shown alongside user schedules

    ## Authentication

    The hosting platform injects the caller's email in the
    `X-MS-CLIENT-PRINCIPAL-NAME` header. Requests without it are rejected with 401.
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
    debug=settings.debug,
)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed bodies, path and query parameters as 400."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(scheduler_router, prefix="/api/v1", tags=["scheduler"])

# Root-level paths for clients that call the scheduler without a version prefix
app.include_router(scheduler_router)


@app.get("/health", tags=["health"])
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns the health status of the application including:
    - Overall health status
    - Application version
    - Whether the task scheduler worker is running
    """
    worker = get_worker()
    return {
        "status": "healthy",
        "message": "Application is running",
        "version": __version__,
        "scheduler_running": bool(worker and worker.running),
        "debug": settings.debug,
    }
