"""Executes queued schedule runs.

A run loads the schedule, records a run history entry, performs the work
registered for the task type, records the outcome and, for recurring
triggers, queues the next occurrence under the schedule's key. Work
failures end up on the run history entry and never propagate to the
queue.
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Callable, Dict, Mapping, Optional

import structlog
from structlog import contextvars as structlog_contextvars

from evcharge.core.exceptions import ServiceException, TaskExecutionError
from .implementations import WorkHandler
from .models import RunStatus, ScheduleType, TaskSchedule, TriggerSource
from .queue import JobHandler, JobHelpers, JobKeyMode
from .repository import ScheduleRepositoryInterface
from .utils import compute_next_run_at, schedule_job_key, utc_now

logger = structlog.get_logger(__name__)

RepositoryFactory = Callable[
    [], AbstractAsyncContextManager[ScheduleRepositoryInterface]
]

_RECURRING_TYPES = (ScheduleType.CRON.value, ScheduleType.INTERVAL.value)


def format_error(error: Exception) -> str:
    """Message stored on a failed run."""
    if isinstance(error, ServiceException):
        return error.message
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


def _resolve_trigger(value: Any) -> TriggerSource:
    if value is None:
        return TriggerSource.CRON
    try:
        return TriggerSource(value)
    except ValueError:
        logger.warning("Unknown trigger source, treating as cron", triggered_by=value)
        return TriggerSource.CRON


class TaskExecutor:
    """Runs the schedule-driven task types dispatched by the job queue."""

    def __init__(
        self,
        repository_factory: RepositoryFactory,
        work_handlers: Mapping[str, WorkHandler],
    ):
        """
        :param repository_factory: Opens a repository on a fresh session per run
        :param work_handlers: Work implementation per task type
        """
        self.repository_factory = repository_factory
        self.work_handlers = dict(work_handlers)

    async def execute_scheduled_task(
        self, payload: Dict[str, Any], helpers: JobHelpers
    ) -> None:
        """Handle one queued run of a user schedule."""
        schedule_id = payload.get("schedule_id")
        if isinstance(schedule_id, bool) or not isinstance(schedule_id, int):
            logger.error("Malformed scheduled task payload, skipping", payload=payload)
            return
        triggered_by = _resolve_trigger(payload.get("triggered_by"))

        async with self.repository_factory() as repository:
            schedule = await repository.get_schedule(schedule_id)
            if schedule is None:
                logger.info("Schedule not found, skipping", schedule_id=schedule_id)
                return
            if not schedule.enabled:
                logger.info("Schedule is disabled, skipping", schedule_id=schedule_id)
                return

            run = await repository.create_run_history_entry(
                schedule.id, schedule.task_type, triggered_by
            )
            structlog_contextvars.bind_contextvars(
                run_id=run.id,
                schedule_id=schedule.id,
                task_type=schedule.task_type,
                triggered_by=triggered_by.value,
            )
            try:
                error_message = await self._run_work(schedule)
                await self._complete_run(repository, run.id, error_message)

                try:
                    await repository.update_last_run_at(schedule.id, utc_now())
                except Exception as e:
                    logger.error(
                        "Failed to record last run time",
                        error=str(e),
                        error_type=type(e).__name__,
                    )

                if triggered_by != TriggerSource.MANUAL:
                    await self._rearm(repository, schedule.id, helpers)
            finally:
                structlog_contextvars.clear_contextvars()

    async def _run_work(self, schedule: TaskSchedule) -> Optional[str]:
        """Perform the work, returning the error message on failure."""
        handler = self.work_handlers.get(schedule.task_type)
        try:
            if handler is None:
                raise TaskExecutionError(
                    f"Unknown task type: {schedule.task_type}",
                    task_type=schedule.task_type,
                )
            await handler(dict(schedule.config or {}))
        except Exception as error:
            error_message = format_error(error)
            logger.error(
                "Scheduled task failed",
                schedule_name=schedule.name,
                error=error_message,
                error_type=type(error).__name__,
            )
            return error_message

        logger.info("Scheduled task completed", schedule_name=schedule.name)
        return None

    async def _complete_run(
        self,
        repository: ScheduleRepositoryInterface,
        run_id: int,
        error_message: Optional[str],
    ) -> None:
        """Record the run outcome, retrying once on a fresh session."""
        status = RunStatus.FAILED if error_message else RunStatus.SUCCESS
        try:
            await repository.complete_run_history_entry(run_id, status, error_message)
            return
        except Exception as e:
            logger.error(
                "Failed to record run completion",
                status=status.value,
                error=str(e),
                error_type=type(e).__name__,
            )

        try:
            async with self.repository_factory() as retry_repository:
                await retry_repository.complete_run_history_entry(
                    run_id, status, error_message
                )
            logger.info("Recorded run completion on retry", status=status.value)
        except Exception as retry_error:
            logger.error(
                "Failed to record run completion on retry - run may remain stuck",
                status=status.value,
                error=str(retry_error),
                error_type=type(retry_error).__name__,
            )

    async def _rearm(
        self,
        repository: ScheduleRepositoryInterface,
        schedule_id: int,
        helpers: JobHelpers,
    ) -> None:
        """Queue the next occurrence from the schedule's current state."""
        # Edits made while the work ran win over the state loaded at start
        current = await repository.get_schedule(schedule_id)
        if (
            current is None
            or not current.enabled
            or current.schedule_type not in _RECURRING_TYPES
        ):
            logger.info("Schedule no longer recurring, not rescheduling")
            return

        next_run_at = compute_next_run_at(
            current.schedule_type,
            current.cron_expression,
            current.interval_ms,
            current.enabled,
            utc_now(),
        )
        if next_run_at is None:
            return

        job_key = schedule_job_key(schedule_id)
        await helpers.enqueue(
            current.task_type,
            {"schedule_id": schedule_id},
            run_at=next_run_at,
            job_key=job_key,
            job_key_mode=JobKeyMode.REPLACE,
        )
        await repository.update_next_run_at(schedule_id, next_run_at, job_key)
        logger.info("Schedule rescheduled", next_run_at=next_run_at.isoformat())


def make_system_task_handler(task_id: str, work: WorkHandler) -> JobHandler:
    """Wrap a fixed system task's work as a job queue handler.

    System tasks have no schedule row and write no run history.
    """

    async def handle(payload: Dict[str, Any], helpers: JobHelpers) -> None:
        helpers.logger.info("Running system task", task_id=task_id)
        await work(dict(payload or {}))
        helpers.logger.info("System task complete", task_id=task_id)

    return handle
