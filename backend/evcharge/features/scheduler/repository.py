from datetime import datetime
from typing import Any, List, Optional, Protocol

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from evcharge.core.exceptions import DatabaseError
from .models import RunStatus, TaskRunHistory, TaskSchedule, TriggerSource
from .utils import utc_now

logger = structlog.get_logger(__name__)

STALE_RUN_MESSAGE = (
    "Run marked as failed - was still running during application startup "
    "(likely ungraceful shutdown or crash)"
)


class ScheduleRepositoryInterface(Protocol):
    """Repository interface for schedule and run history persistence"""

    async def list_schedules(self) -> List[TaskSchedule]:
        """List all schedules ordered by creation time"""
        ...

    async def get_schedule(self, schedule_id: int) -> Optional[TaskSchedule]:
        """Retrieve a schedule by ID"""
        ...

    async def create_schedule(self, **fields: Any) -> TaskSchedule:
        """Persist a new schedule"""
        ...

    async def update_schedule(
        self, schedule_id: int, **changes: Any
    ) -> Optional[TaskSchedule]:
        """Apply a partial update, always refreshing updated_at"""
        ...

    async def delete_schedule(self, schedule_id: int) -> bool:
        """Delete a schedule, returning whether a row was removed"""
        ...

    async def create_run_history_entry(
        self, schedule_id: int, task_type: str, triggered_by: TriggerSource
    ) -> TaskRunHistory:
        """Append a running run history entry"""
        ...

    async def complete_run_history_entry(
        self,
        run_id: int,
        status: RunStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move a running entry to its terminal status"""
        ...

    async def list_run_history(
        self, schedule_id: Optional[int] = None, limit: int = 50
    ) -> List[TaskRunHistory]:
        """List run history newest first"""
        ...

    async def update_last_run_at(self, schedule_id: int, last_run_at: datetime) -> None:
        """Record when a schedule last executed"""
        ...

    async def update_next_run_at(
        self,
        schedule_id: int,
        next_run_at: Optional[datetime],
        queue_job_key: Optional[str],
    ) -> None:
        """Record the pending run and its job queue key"""
        ...

    async def mark_stale_runs_failed(self) -> int:
        """Fail every run left in the running state"""
        ...


class SQLAlchemyScheduleRepository:
    """SQLAlchemy implementation of the schedule repository"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self, operation: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Failed to commit {operation}",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise DatabaseError(
                f"failed to commit {operation}",
                service="ScheduleRepository",
                operation=operation,
                original_error=e,
            ) from e

    async def list_schedules(self) -> List[TaskSchedule]:
        """List all schedules ordered by creation time"""
        stmt = select(TaskSchedule).order_by(
            TaskSchedule.created_at.asc(), TaskSchedule.id.asc()
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_schedule(self, schedule_id: int) -> Optional[TaskSchedule]:
        """Retrieve a schedule by ID"""
        stmt = (
            select(TaskSchedule)
            .where(TaskSchedule.id == schedule_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create_schedule(self, **fields: Any) -> TaskSchedule:
        """Persist a new schedule"""
        now = utc_now()
        schedule = TaskSchedule(created_at=now, updated_at=now, **fields)

        self.db.add(schedule)
        await self._commit("create schedule")
        await self.db.refresh(schedule)
        return schedule

    async def update_schedule(
        self, schedule_id: int, **changes: Any
    ) -> Optional[TaskSchedule]:
        """Apply a partial update, always refreshing updated_at"""
        stmt = (
            update(TaskSchedule)
            .where(TaskSchedule.id == schedule_id)
            .values(**changes, updated_at=utc_now())
            .returning(TaskSchedule)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.db.execute(stmt)
        schedule = result.scalar_one_or_none()
        await self._commit("update schedule")
        return schedule

    async def delete_schedule(self, schedule_id: int) -> bool:
        """Delete a schedule, returning whether a row was removed"""
        stmt = delete(TaskSchedule).where(TaskSchedule.id == schedule_id)
        result = await self.db.execute(stmt)
        await self._commit("delete schedule")
        return result.rowcount > 0

    async def create_run_history_entry(
        self, schedule_id: int, task_type: str, triggered_by: TriggerSource
    ) -> TaskRunHistory:
        """Append a running run history entry"""
        run = TaskRunHistory(
            schedule_id=schedule_id,
            task_type=task_type,
            status=RunStatus.RUNNING.value,
            triggered_by=TriggerSource(triggered_by).value,
            started_at=utc_now(),
        )

        self.db.add(run)
        await self._commit("create run history entry")
        await self.db.refresh(run)
        return run

    async def complete_run_history_entry(
        self,
        run_id: int,
        status: RunStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move a running entry to its terminal status.

        Only rows still in the running state match, so a completed entry is
        never overwritten.
        """
        status = RunStatus(status)
        if status == RunStatus.RUNNING:
            raise ValueError("A run can only be completed as success or failed")

        stmt = (
            update(TaskRunHistory)
            .where(TaskRunHistory.id == run_id)
            .where(TaskRunHistory.status == RunStatus.RUNNING.value)
            .values(
                status=status.value,
                completed_at=utc_now(),
                error_message=error_message if status == RunStatus.FAILED else None,
            )
        )
        result = await self.db.execute(stmt)
        await self._commit("complete run history entry")
        return result.rowcount > 0

    async def list_run_history(
        self, schedule_id: Optional[int] = None, limit: int = 50
    ) -> List[TaskRunHistory]:
        """List run history newest first"""
        stmt = select(TaskRunHistory)
        if schedule_id is not None:
            stmt = stmt.where(TaskRunHistory.schedule_id == schedule_id)
        stmt = stmt.order_by(
            TaskRunHistory.started_at.desc(), TaskRunHistory.id.desc()
        ).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def update_last_run_at(self, schedule_id: int, last_run_at: datetime) -> None:
        """Record when a schedule last executed"""
        stmt = (
            update(TaskSchedule)
            .where(TaskSchedule.id == schedule_id)
            .values(last_run_at=last_run_at)
        )
        await self.db.execute(stmt)
        await self._commit("update last run")

    async def update_next_run_at(
        self,
        schedule_id: int,
        next_run_at: Optional[datetime],
        queue_job_key: Optional[str],
    ) -> None:
        """Record the pending run and its job queue key"""
        stmt = (
            update(TaskSchedule)
            .where(TaskSchedule.id == schedule_id)
            .values(next_run_at=next_run_at, queue_job_key=queue_job_key)
        )
        await self.db.execute(stmt)
        await self._commit("update next run")

    async def mark_stale_runs_failed(self) -> int:
        """Fail every run left in the running state.

        No run can be in progress while the worker is starting, so any
        running row belongs to a process that stopped mid-run.
        """
        stmt = (
            update(TaskRunHistory)
            .where(TaskRunHistory.status == RunStatus.RUNNING.value)
            .values(
                status=RunStatus.FAILED.value,
                completed_at=utc_now(),
                error_message=STALE_RUN_MESSAGE,
            )
        )
        result = await self.db.execute(stmt)
        await self._commit("mark stale runs failed")
        return result.rowcount or 0
