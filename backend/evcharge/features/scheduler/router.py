"""Task scheduler API endpoints."""

from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, Query

from evcharge.core import get_global_settings
from evcharge.core.exceptions import NotFoundError, ValidationError
from evcharge.features.auth import CurrentUserDep
from .dependencies import ScheduleServiceDep
from .schemas import (
    DeleteResponse,
    ManualRunResponse,
    RunHistoryListResponse,
    ScheduleCreate,
    ScheduleListResponse,
    ScheduleMutationResponse,
    ScheduleUpdate,
    TaskTypeListResponse,
)
from .service import ScheduleService

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["scheduler"])


# === Schedule Endpoints ===


@router.get("/schedules", response_model=ScheduleListResponse)
async def list_schedules(
    user: CurrentUserDep,
    schedule_service: ScheduleServiceDep,
):
    """
    List user schedules followed by the read-only system tasks.

    Returns:
        All schedules with ``isSystem`` set on system task entries.
    """
    try:
        tasks = await schedule_service.list_schedules()
        return ScheduleListResponse(tasks=tasks)
    except Exception as e:
        logger.error("Failed to fetch schedules", error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch schedules")


@router.post("/schedules", response_model=ScheduleMutationResponse)
async def create_schedule(
    schedule_data: ScheduleCreate,
    user: CurrentUserDep,
    schedule_service: ScheduleServiceDep,
):
    """
    Create a schedule and queue its first run.

    Raises:
        400: Missing required fields, unknown task type or invalid cadence.
    """
    try:
        schedule = await schedule_service.create_schedule(
            schedule_data, created_by=user.email
        )
        return ScheduleMutationResponse(schedule=schedule)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except Exception as e:
        logger.error(
            "Failed to create schedule",
            created_by=user.email,
            error=str(e),
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Failed to create schedule")


@router.put("/schedules/{schedule_id}", response_model=ScheduleMutationResponse)
async def update_schedule(
    schedule_id: int,
    schedule_update: ScheduleUpdate,
    user: CurrentUserDep,
    schedule_service: ScheduleServiceDep,
):
    """
    Update a schedule; only supplied fields change.

    Raises:
        400: Invalid cadence after merging.
        404: Schedule not found.
    """
    try:
        schedule = await schedule_service.update_schedule(schedule_id, schedule_update)
        return ScheduleMutationResponse(schedule=schedule)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        logger.error(
            "Failed to update schedule",
            schedule_id=schedule_id,
            error=str(e),
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Failed to update schedule")


@router.delete("/schedules/{schedule_id}", response_model=DeleteResponse)
async def delete_schedule(
    schedule_id: int,
    user: CurrentUserDep,
    schedule_service: ScheduleServiceDep,
):
    """
    Delete a schedule and its pending run.

    Raises:
        404: Schedule not found.
    """
    try:
        await schedule_service.delete_schedule(schedule_id)
        return DeleteResponse()
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        logger.error(
            "Failed to delete schedule",
            schedule_id=schedule_id,
            error=str(e),
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Failed to delete schedule")


@router.post("/schedules/{schedule_id}/run", response_model=ManualRunResponse)
async def run_schedule(
    schedule_id: int,
    user: CurrentUserDep,
    schedule_service: ScheduleServiceDep,
):
    """
    Queue an immediate one-shot run without touching the recurring cadence.

    Raises:
        404: Schedule not found.
    """
    try:
        job_id = await schedule_service.run_schedule_now(schedule_id)
        logger.info("Manual run requested", schedule_id=schedule_id, user=user.email)
        return ManualRunResponse(job_id=job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        logger.error(
            "Failed to run task",
            schedule_id=schedule_id,
            error=str(e),
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Failed to run task")


# === Run History Endpoints ===


@router.get("/run-history", response_model=RunHistoryListResponse)
async def list_run_history(
    user: CurrentUserDep,
    schedule_service: ScheduleServiceDep,
    schedule_id: Optional[int] = Query(
        None, alias="scheduleId", description="Only runs of this schedule"
    ),
    limit: Optional[int] = Query(
        None, ge=1, le=500, description="Maximum number of entries"
    ),
):
    """
    Get run history, newest first.

    Returns:
        Up to ``limit`` run history entries (default 50).
    """
    try:
        history = await schedule_service.list_run_history(
            schedule_id=schedule_id,
            limit=limit or get_global_settings().run_history_default_limit,
        )
        return RunHistoryListResponse(history=history)
    except Exception as e:
        logger.error(
            "Failed to fetch run history",
            schedule_id=schedule_id,
            error=str(e),
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Failed to fetch run history")


# === Task Type Endpoints ===


@router.get("/task-types", response_model=TaskTypeListResponse)
async def list_task_types(user: CurrentUserDep):
    """List schedulable task types with their config fields, and the system tasks."""
    return ScheduleService.list_task_types()
