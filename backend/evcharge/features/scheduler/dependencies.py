"""Dependencies for the scheduler feature."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from evcharge.core.database import get_db
from .queue import JobQueue
from .repository import ScheduleRepositoryInterface, SQLAlchemyScheduleRepository
from .service import ScheduleService
from .worker import get_worker

# Database dependency
DatabaseDep = Annotated[AsyncSession, Depends(get_db)]


# Repository dependency
def get_schedule_repository(db: DatabaseDep) -> ScheduleRepositoryInterface:
    return SQLAlchemyScheduleRepository(db)


ScheduleRepositoryDep = Annotated[
    ScheduleRepositoryInterface, Depends(get_schedule_repository)
]


# Job queue dependency
def get_job_queue() -> JobQueue:
    queue = get_worker()
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Task scheduler is not running",
        )
    return queue


JobQueueDep = Annotated[JobQueue, Depends(get_job_queue)]


# Service dependency
def get_schedule_service(
    repository: ScheduleRepositoryDep, queue: JobQueueDep
) -> ScheduleService:
    return ScheduleService(repository, queue)


ScheduleServiceDep = Annotated[ScheduleService, Depends(get_schedule_service)]

__all__ = [
    "get_schedule_repository",
    "get_job_queue",
    "get_schedule_service",
    "ScheduleRepositoryDep",
    "JobQueueDep",
    "ScheduleServiceDep",
]
