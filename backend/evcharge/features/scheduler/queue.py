"""Durable job queue backed by APScheduler.

Jobs are persisted in a SQLAlchemy job store so pending runs survive a
restart. A job may carry a key: enqueuing under an existing key replaces
the pending job, so at most one outstanding job exists per key. Keyless
jobs never replace anything.

Every job points at the module-level :func:`dispatch_job`, which routes
the call to the handler registered for the job's task type on the running
queue. Only plain data (task type, payload) is stored with the job.
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol
from uuid import uuid4

import structlog
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import BaseJobStore, JobLookupError
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.date import DateTrigger
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from evcharge.core.config import get_global_settings
from evcharge.core.exceptions import ExternalServiceError
from .cron import next_occurrence, validate_cron_expression
from .models import SCHEDULER_SCHEMA, KnownCrontab
from .utils import utc_now

logger = structlog.get_logger(__name__)

JOBSTORE_TABLE = "queued_jobs"


class JobKeyMode(str, PyEnum):
    """What happens when a job is enqueued under a key that is already pending."""

    REPLACE = "replace"  # new payload and run time win
    PRESERVE_RUN_AT = "preserve_run_at"  # new payload, keep the pending run time


@dataclass
class JobHelpers:
    """Handed to every job handler."""

    enqueue: Callable[..., Awaitable[str]]
    logger: Any
    job_id: Optional[str] = None


JobHandler = Callable[[Dict[str, Any], JobHelpers], Awaitable[None]]
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class JobQueue(Protocol):
    """Contract the scheduler relies on from the job queue"""

    async def enqueue(
        self,
        task_type: str,
        payload: Dict[str, Any],
        run_at: Optional[datetime] = None,
        job_key: Optional[str] = None,
        job_key_mode: JobKeyMode = JobKeyMode.REPLACE,
    ) -> str:
        """Schedule a job, returning its id"""
        ...

    async def remove_by_key(self, job_key: str) -> bool:
        """Remove the pending job for a key; absence is not an error"""
        ...

    async def has_pending_job(self, job_key: str) -> bool:
        """Whether a job is pending under a key"""
        ...

    def register_handler(self, task_type: str, handler: JobHandler) -> None:
        """Register the handler invoked for a task type"""
        ...

    async def get_crontab_last_executions(self) -> Dict[str, Optional[datetime]]:
        """Last execution time per fixed crontab identifier"""
        ...


class CronExpressionTrigger(BaseTrigger):
    """APScheduler trigger firing on a standard five-field cron expression.

    APScheduler's own CronTrigger numbers weekdays from Monday; this trigger
    evaluates expressions the same way user schedules are evaluated.
    """

    __slots__ = ("expression",)

    def __init__(self, expression: str):
        validate_cron_expression(expression)
        self.expression = expression

    def get_next_fire_time(self, previous_fire_time, now):
        return next_occurrence(self.expression, previous_fire_time or now)

    def __getstate__(self):
        return {"version": 1, "expression": self.expression}

    def __setstate__(self, state):
        self.expression = state["expression"]

    def __str__(self) -> str:
        return f"cron[{self.expression}]"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} ({self.expression!r})>"


# Queue whose handlers receive dispatched jobs
_active_queue: Optional["APSchedulerJobQueue"] = None


async def dispatch_job(
    task_type: str,
    payload: Dict[str, Any],
    crontab_identifier: Optional[str] = None,
    job_id: Optional[str] = None,
) -> None:
    """Entry point stored with every queued job."""
    if _active_queue is None:
        logger.error(
            "Job fired without a running queue, dropping",
            task_type=task_type,
            job_id=job_id,
        )
        return

    await _active_queue.dispatch(
        task_type, payload, crontab_identifier=crontab_identifier, job_id=job_id
    )


class APSchedulerJobQueue:
    """Job queue implementation on top of APScheduler's AsyncIOScheduler."""

    def __init__(
        self,
        jobstore: Optional[BaseJobStore] = None,
        concurrency: Optional[int] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        """Configure the scheduler without starting it.

        :param jobstore: Job store, defaults to the PostgreSQL-backed store
        :param concurrency: Maximum jobs executing at once
        :param session_factory: Async session factory for crontab bookkeeping
        """
        settings = get_global_settings()
        self.concurrency = concurrency or settings.scheduler_concurrency
        self._session_factory = session_factory
        self._handlers: Dict[str, JobHandler] = {}
        self._semaphore = asyncio.Semaphore(self.concurrency)

        if jobstore is None:
            jobstore = SQLAlchemyJobStore(
                url=settings.jobstore_url,
                tablename=JOBSTORE_TABLE,
                tableschema=SCHEDULER_SCHEMA,
            )

        self._scheduler = AsyncIOScheduler(
            jobstores={"default": jobstore},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,  # Combine missed runs of one job into one
                "max_instances": self.concurrency,
                "misfire_grace_time": None,  # Late jobs still run
            },
            timezone="UTC",
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    def register_handler(self, task_type: str, handler: JobHandler) -> None:
        """Register the handler invoked for a task type."""
        self._handlers[task_type] = handler
        logger.debug("Registered job handler", task_type=task_type)

    async def enqueue(
        self,
        task_type: str,
        payload: Dict[str, Any],
        run_at: Optional[datetime] = None,
        job_key: Optional[str] = None,
        job_key_mode: JobKeyMode = JobKeyMode.REPLACE,
    ) -> str:
        """Schedule ``task_type`` with ``payload`` at ``run_at`` (default: now).

        :returns: The job id, equal to ``job_key`` for keyed jobs
        :raises ExternalServiceError: If the job store rejects the job
        """
        run_at = run_at or utc_now()
        try:
            if job_key and JobKeyMode(job_key_mode) == JobKeyMode.PRESERVE_RUN_AT:
                existing = self._scheduler.get_job(job_key)
                if existing is not None:
                    self._scheduler.modify_job(
                        job_key, args=[task_type, payload], kwargs={"job_id": job_key}
                    )
                    logger.debug(
                        "Updated pending job payload", job_key=job_key, task_type=task_type
                    )
                    return job_key

            job_id = job_key or uuid4().hex
            job = self._scheduler.add_job(
                dispatch_job,
                trigger=DateTrigger(run_date=run_at, timezone="UTC"),
                args=[task_type, payload],
                kwargs={"job_id": job_id},
                id=job_id,
                name=job_key or task_type,
                replace_existing=bool(job_key),
            )
        except Exception as e:
            logger.error(
                "Failed to enqueue job",
                task_type=task_type,
                job_key=job_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ExternalServiceError(
                "failed to enqueue job",
                service="JobQueue",
                operation="enqueue",
                external_service="apscheduler",
                context={"task_type": task_type, "job_key": job_key},
                original_error=e,
            ) from e

        logger.info(
            "Enqueued job",
            job_id=job.id,
            job_key=job_key,
            task_type=task_type,
            run_at=run_at.isoformat(),
        )
        return job.id

    async def remove_by_key(self, job_key: str) -> bool:
        """Remove the pending job for ``job_key``.

        :returns: False when no job was pending under that key
        """
        try:
            self._scheduler.remove_job(job_key)
        except JobLookupError:
            logger.debug("No pending job to remove", job_key=job_key)
            return False
        except Exception as e:
            raise ExternalServiceError(
                "failed to remove job",
                service="JobQueue",
                operation="remove_by_key",
                external_service="apscheduler",
                context={"job_key": job_key},
                original_error=e,
            ) from e

        logger.info("Removed pending job", job_key=job_key)
        return True

    async def has_pending_job(self, job_key: str) -> bool:
        """Whether a job is pending under ``job_key``."""
        return self._scheduler.get_job(job_key) is not None

    async def add_crontab(
        self, identifier: str, expression: str, task_type: Optional[str] = None
    ) -> None:
        """Register a fixed cron job and record it in the crontab bookkeeping."""
        task_type = task_type or identifier
        self._scheduler.add_job(
            dispatch_job,
            trigger=CronExpressionTrigger(expression),
            args=[task_type, {}],
            kwargs={"crontab_identifier": identifier, "job_id": identifier},
            id=identifier,
            name=identifier,
            replace_existing=True,
        )

        if self._session_factory is not None:
            async with self._session_factory() as db:
                stmt = (
                    insert(KnownCrontab)
                    .values(identifier=identifier, known_since=utc_now())
                    .on_conflict_do_nothing(index_elements=[KnownCrontab.identifier])
                )
                await db.execute(stmt)
                await db.commit()

        logger.info(
            "Registered crontab",
            identifier=identifier,
            expression=expression,
            task_type=task_type,
        )

    async def get_crontab_last_executions(self) -> Dict[str, Optional[datetime]]:
        """Last execution time per crontab identifier."""
        if self._session_factory is None:
            return {}

        async with self._session_factory() as db:
            result = await db.execute(select(KnownCrontab))
            return {
                crontab.identifier: crontab.last_execution
                for crontab in result.scalars().all()
            }

    async def _record_crontab_execution(self, identifier: str) -> None:
        if self._session_factory is None:
            return

        now = utc_now()
        async with self._session_factory() as db:
            stmt = (
                insert(KnownCrontab)
                .values(identifier=identifier, known_since=now, last_execution=now)
                .on_conflict_do_update(
                    index_elements=[KnownCrontab.identifier],
                    set_={"last_execution": now},
                )
            )
            await db.execute(stmt)
            await db.commit()

    async def dispatch(
        self,
        task_type: str,
        payload: Dict[str, Any],
        crontab_identifier: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> None:
        """Run the handler registered for ``task_type``."""
        handler = self._handlers.get(task_type)
        if handler is None:
            logger.error(
                "No handler registered for task type, dropping job",
                task_type=task_type,
                job_id=job_id,
            )
            return

        async with self._semaphore:
            if crontab_identifier:
                try:
                    await self._record_crontab_execution(crontab_identifier)
                except Exception as e:
                    logger.error(
                        "Failed to record crontab execution",
                        identifier=crontab_identifier,
                        error=str(e),
                        error_type=type(e).__name__,
                    )

            helpers = JobHelpers(
                enqueue=self.enqueue,
                logger=logger.bind(task_type=task_type, job_id=job_id),
                job_id=job_id,
            )
            try:
                await handler(dict(payload or {}), helpers)
            except Exception as e:
                logger.error(
                    "Job handler raised",
                    task_type=task_type,
                    job_id=job_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                raise

    def start(self, paused: bool = False) -> None:
        """Start processing jobs; requires a running event loop."""
        global _active_queue
        self._scheduler.start(paused=paused)
        _active_queue = self
        logger.info("Job queue started", concurrency=self.concurrency)

    def shutdown(self, wait: bool = True) -> None:
        """Stop processing jobs."""
        global _active_queue
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        if _active_queue is self:
            _active_queue = None
        logger.info("Job queue shut down")
