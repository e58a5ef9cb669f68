"""Worker lifecycle for the task scheduler.

The worker is the job queue plus its registered handlers: one per task type
(all routed through the task executor) and one per fixed system task.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog

from evcharge.core import db_manager, get_global_settings
from .executor import RepositoryFactory, TaskExecutor, make_system_task_handler
from .implementations import SYSTEM_WORK_HANDLERS, WORK_HANDLERS
from .models import ScheduleType
from .queue import APSchedulerJobQueue, JobKeyMode, JobQueue
from .registry import SYSTEM_TASKS, TaskType
from .repository import ScheduleRepositoryInterface, SQLAlchemyScheduleRepository
from .utils import compute_next_run_at, schedule_job_key, utc_now

logger = structlog.get_logger(__name__)

# Global worker instance
_worker: Optional[APSchedulerJobQueue] = None
_worker_lock = asyncio.Lock()


@asynccontextmanager
async def sqlalchemy_repository() -> AsyncGenerator[ScheduleRepositoryInterface, None]:
    """Repository bound to a fresh database session."""
    async with db_manager.get_session() as db:
        yield SQLAlchemyScheduleRepository(db)


def get_worker() -> Optional[APSchedulerJobQueue]:
    """Get the running job queue.

    Returns:
        The queue if the worker is started, None otherwise.
    """
    return _worker


def register_task_handlers(queue: APSchedulerJobQueue, executor: TaskExecutor) -> None:
    """Register one handler per task type and per system task."""
    for task_type in TaskType:
        queue.register_handler(task_type.value, executor.execute_scheduled_task)

    for system_task in SYSTEM_TASKS:
        work = SYSTEM_WORK_HANDLERS.get(system_task.task_id)
        if work is None:
            logger.warning(
                "No work registered for system task, skipping",
                task_id=system_task.task_id,
            )
            continue
        queue.register_handler(
            system_task.task_id, make_system_task_handler(system_task.task_id, work)
        )


async def _mark_stale_runs_as_failed() -> None:
    """Fail runs left in the running state by a previous process."""
    try:
        async with sqlalchemy_repository() as repository:
            count = await repository.mark_stale_runs_failed()
        if count:
            logger.warning("Marked stale runs as failed", count=count)
        else:
            logger.info("No stale runs found on startup")
    except Exception as e:
        logger.error(
            "Failed to mark stale runs as failed",
            error=str(e),
            error_type=type(e).__name__,
        )


async def reconcile_pending_jobs(
    queue: JobQueue, repository_factory: RepositoryFactory
) -> int:
    """Re-arm enabled recurring schedules that have no pending job.

    A fired job leaves the job store before its handler runs, so a run that
    died mid-way or failed to re-arm leaves its schedule without a pending
    job. The stored ``next_run_at`` is kept while it is still ahead,
    otherwise the overdue occurrence is queued to run now.

    Returns:
        Number of schedules re-armed.
    """
    rearmed = 0
    async with repository_factory() as repository:
        for schedule in await repository.list_schedules():
            if not schedule.enabled or schedule.schedule_type not in (
                ScheduleType.CRON.value,
                ScheduleType.INTERVAL.value,
            ):
                continue

            job_key = schedule_job_key(schedule.id)
            if await queue.has_pending_job(job_key):
                continue

            now = utc_now()
            run_at = schedule.next_run_at
            if run_at is None:
                run_at = compute_next_run_at(
                    schedule.schedule_type,
                    schedule.cron_expression,
                    schedule.interval_ms,
                    schedule.enabled,
                    now,
                )
            elif run_at < now:
                run_at = now
            if run_at is None:
                continue

            try:
                await queue.enqueue(
                    schedule.task_type,
                    {"schedule_id": schedule.id},
                    run_at=run_at,
                    job_key=job_key,
                    job_key_mode=JobKeyMode.REPLACE,
                )
                await repository.update_next_run_at(schedule.id, run_at, job_key)
            except Exception as e:
                logger.error(
                    "Failed to re-arm schedule",
                    schedule_id=schedule.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            rearmed += 1
            logger.warning(
                "Re-armed schedule without a pending job",
                schedule_id=schedule.id,
                next_run_at=run_at.isoformat(),
            )
    return rearmed


async def start_worker(
    queue: Optional[APSchedulerJobQueue] = None,
) -> Optional[APSchedulerJobQueue]:
    """Initialize and start the worker.

    This function:
    1. Checks if the worker should be enabled via configuration
    2. Creates the job queue with its durable job store
    3. Registers handlers for every task type and system task
    4. Marks stale running runs as failed
    5. Starts the queue and registers the system crontabs
    6. Re-arms recurring schedules left without a pending job

    Starting an already started worker returns the running queue.

    Args:
        queue: Job queue to start instead of the default one.

    Returns:
        The started queue, or None when the worker is disabled.
    """
    global _worker

    settings = get_global_settings()
    if not settings.task_scheduler_enabled:
        logger.info("Task scheduler is disabled via configuration")
        return None

    async with _worker_lock:
        if _worker is not None:
            logger.warning("Worker already initialized")
            return _worker

        logger.info("Initializing task scheduler worker")
        queue = queue or APSchedulerJobQueue(
            concurrency=settings.scheduler_concurrency,
            session_factory=db_manager.get_session,
        )
        executor = TaskExecutor(sqlalchemy_repository, WORK_HANDLERS)
        register_task_handlers(queue, executor)

        await _mark_stale_runs_as_failed()

        try:
            queue.start()
            for system_task in SYSTEM_TASKS:
                await queue.add_crontab(
                    system_task.task_id, system_task.cron, system_task.task_id
                )
        except Exception as e:
            logger.error(
                "Failed to start task scheduler worker",
                error=str(e),
                error_type=type(e).__name__,
            )
            queue.shutdown(wait=False)
            raise

        try:
            await reconcile_pending_jobs(queue, sqlalchemy_repository)
        except Exception as e:
            logger.error(
                "Failed to reconcile pending jobs",
                error=str(e),
                error_type=type(e).__name__,
            )

        _worker = queue
        logger.info("Task scheduler worker started", concurrency=queue.concurrency)
        return _worker


async def stop_worker() -> None:
    """Gracefully stop the worker, waiting for running jobs."""
    global _worker

    async with _worker_lock:
        if _worker is None:
            logger.info("Worker is not running, nothing to stop")
            return

        logger.info("Stopping task scheduler worker")
        _worker.shutdown(wait=True)
        _worker = None
        logger.info("Task scheduler worker stopped")
