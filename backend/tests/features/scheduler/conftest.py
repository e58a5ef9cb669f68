from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest
import structlog

from evcharge.features.scheduler.models import (
    RunStatus,
    TaskRunHistory,
    TaskSchedule,
    TriggerSource,
)
from evcharge.features.scheduler.queue import JobHelpers, JobKeyMode
from evcharge.features.scheduler.service import ScheduleService
from evcharge.features.scheduler.utils import utc_now


class InMemoryScheduleRepository:
    """Schedule repository keeping ORM instances in dictionaries"""

    def __init__(self, call_log: Optional[List[str]] = None):
        self.schedules: Dict[int, TaskSchedule] = {}
        self.runs: Dict[int, TaskRunHistory] = {}
        self.call_log = call_log if call_log is not None else []
        self._next_schedule_id = 1
        self._next_run_id = 1

    async def list_schedules(self) -> List[TaskSchedule]:
        return sorted(self.schedules.values(), key=lambda s: (s.created_at, s.id))

    async def get_schedule(self, schedule_id: int) -> Optional[TaskSchedule]:
        return self.schedules.get(schedule_id)

    async def create_schedule(self, **fields: Any) -> TaskSchedule:
        now = utc_now()
        schedule = TaskSchedule(
            id=self._next_schedule_id, created_at=now, updated_at=now, **fields
        )
        self.schedules[schedule.id] = schedule
        self._next_schedule_id += 1
        self.call_log.append(f"create_schedule:{schedule.id}")
        return schedule

    async def update_schedule(
        self, schedule_id: int, **changes: Any
    ) -> Optional[TaskSchedule]:
        schedule = self.schedules.get(schedule_id)
        if schedule is None:
            return None
        for key, value in changes.items():
            setattr(schedule, key, value)
        schedule.updated_at = utc_now()
        self.call_log.append(f"update_schedule:{schedule_id}")
        return schedule

    async def delete_schedule(self, schedule_id: int) -> bool:
        self.call_log.append(f"delete_schedule:{schedule_id}")
        removed = self.schedules.pop(schedule_id, None)
        if removed is None:
            return False
        for run in self.runs.values():
            if run.schedule_id == schedule_id:
                run.schedule_id = None
        return True

    async def create_run_history_entry(
        self, schedule_id: int, task_type: str, triggered_by: TriggerSource
    ) -> TaskRunHistory:
        run = TaskRunHistory(
            id=self._next_run_id,
            schedule_id=schedule_id,
            task_type=task_type,
            status=RunStatus.RUNNING.value,
            triggered_by=TriggerSource(triggered_by).value,
            started_at=utc_now(),
        )
        self.runs[run.id] = run
        self._next_run_id += 1
        return run

    async def complete_run_history_entry(
        self,
        run_id: int,
        status: RunStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        run = self.runs.get(run_id)
        if run is None or run.status != RunStatus.RUNNING.value:
            return False
        run.status = RunStatus(status).value
        run.completed_at = utc_now()
        run.error_message = error_message if status == RunStatus.FAILED else None
        return True

    async def list_run_history(
        self, schedule_id: Optional[int] = None, limit: int = 50
    ) -> List[TaskRunHistory]:
        runs = [
            run
            for run in self.runs.values()
            if schedule_id is None or run.schedule_id == schedule_id
        ]
        runs.sort(key=lambda r: (r.started_at, r.id), reverse=True)
        return runs[:limit]

    async def update_last_run_at(self, schedule_id: int, last_run_at: datetime) -> None:
        schedule = self.schedules.get(schedule_id)
        if schedule is not None:
            schedule.last_run_at = last_run_at

    async def update_next_run_at(
        self,
        schedule_id: int,
        next_run_at: Optional[datetime],
        queue_job_key: Optional[str],
    ) -> None:
        schedule = self.schedules.get(schedule_id)
        if schedule is not None:
            schedule.next_run_at = next_run_at
            schedule.queue_job_key = queue_job_key

    async def mark_stale_runs_failed(self) -> int:
        count = 0
        for run in self.runs.values():
            if run.status == RunStatus.RUNNING.value:
                run.status = RunStatus.FAILED.value
                run.completed_at = utc_now()
                count += 1
        return count

    def add_schedule(self, **fields: Any) -> TaskSchedule:
        """Insert a schedule directly, bypassing validation"""
        defaults = {
            "name": "Weekly compliance",
            "task_type": "report_publish",
            "schedule_type": "interval",
            "cron_expression": None,
            "interval_ms": 3_600_000,
            "enabled": True,
            "config": {"reportId": "compliance-weekly"},
            "created_by": "jane.doe@example.com",
            "last_run_at": None,
            "next_run_at": None,
            "queue_job_key": None,
        }
        defaults.update(fields)
        now = utc_now()
        schedule = TaskSchedule(
            id=self._next_schedule_id, created_at=now, updated_at=now, **defaults
        )
        self.schedules[schedule.id] = schedule
        self._next_schedule_id += 1
        return schedule


class FakeJobQueue:
    """Job queue recording keyed and keyless jobs"""

    def __init__(self, call_log: Optional[List[str]] = None):
        self.keyed: Dict[str, Dict[str, Any]] = {}
        self.keyless: List[Dict[str, Any]] = []
        self.handlers: Dict[str, Any] = {}
        self.crontab_last_executions: Dict[str, Optional[datetime]] = {}
        self.call_log = call_log if call_log is not None else []

    async def enqueue(
        self,
        task_type: str,
        payload: Dict[str, Any],
        run_at: Optional[datetime] = None,
        job_key: Optional[str] = None,
        job_key_mode: JobKeyMode = JobKeyMode.REPLACE,
    ) -> str:
        run_at = run_at or utc_now()
        job = {"task_type": task_type, "payload": dict(payload), "run_at": run_at}
        if job_key is None:
            job["id"] = f"job-{len(self.keyless) + 1}"
            self.keyless.append(job)
            self.call_log.append(f"enqueue:{task_type}")
            return job["id"]

        existing = self.keyed.get(job_key)
        if existing and job_key_mode == JobKeyMode.PRESERVE_RUN_AT:
            job["run_at"] = existing["run_at"]
        job["id"] = job_key
        self.keyed[job_key] = job
        self.call_log.append(f"enqueue:{job_key}")
        return job_key

    async def remove_by_key(self, job_key: str) -> bool:
        self.call_log.append(f"remove:{job_key}")
        return self.keyed.pop(job_key, None) is not None

    async def has_pending_job(self, job_key: str) -> bool:
        return job_key in self.keyed

    def register_handler(self, task_type: str, handler) -> None:
        self.handlers[task_type] = handler

    async def get_crontab_last_executions(self) -> Dict[str, Optional[datetime]]:
        return dict(self.crontab_last_executions)


@pytest.fixture
def call_log() -> List[str]:
    return []


@pytest.fixture
def repository(call_log) -> InMemoryScheduleRepository:
    return InMemoryScheduleRepository(call_log)


@pytest.fixture
def job_queue(call_log) -> FakeJobQueue:
    return FakeJobQueue(call_log)


@pytest.fixture
def schedule_service(repository, job_queue) -> ScheduleService:
    return ScheduleService(repository, job_queue)


@pytest.fixture
def repository_factory(repository):
    @asynccontextmanager
    async def factory():
        yield repository

    return factory


@pytest.fixture
def helpers(job_queue) -> JobHelpers:
    return JobHelpers(enqueue=job_queue.enqueue, logger=structlog.get_logger("tests"))
