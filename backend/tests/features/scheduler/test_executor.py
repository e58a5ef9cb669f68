from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from structlog import contextvars as structlog_contextvars

from evcharge.core.exceptions import ExternalServiceError
from evcharge.features.scheduler.executor import (
    TaskExecutor,
    format_error,
    make_system_task_handler,
)
from evcharge.features.scheduler.models import RunStatus
from evcharge.features.scheduler.queue import JobHelpers
from evcharge.features.scheduler.utils import utc_now


@pytest.fixture
def work():
    return AsyncMock()


@pytest.fixture
def executor(repository_factory, work):
    return TaskExecutor(
        repository_factory,
        {"report_publish": work, "send_email": work, "data_export": work},
    )


async def test_deleted_schedule_creates_no_run(executor, repository, job_queue, helpers, work):
    """Test a job for a deleted schedule is dropped without a run entry"""
    # Execute
    await executor.execute_scheduled_task({"schedule_id": 77}, helpers)

    # Verify
    assert repository.runs == {}
    assert job_queue.keyed == {}
    work.assert_not_called()


async def test_disabled_schedule_is_skipped(executor, repository, job_queue, helpers, work):
    """Test disabled schedules are skipped without a run entry"""
    schedule = repository.add_schedule(enabled=False)

    await executor.execute_scheduled_task(
        {"schedule_id": schedule.id, "triggered_by": "manual"}, helpers
    )

    assert repository.runs == {}
    work.assert_not_called()


@pytest.mark.parametrize(
    "payload",
    [{}, {"schedule_id": "7"}, {"schedule_id": None}, {"schedule_id": True}],
)
async def test_malformed_payload_is_skipped(executor, repository, helpers, work, payload):
    """Test payloads without an integer schedule id are dropped"""
    repository.add_schedule()

    await executor.execute_scheduled_task(payload, helpers)

    assert repository.runs == {}
    work.assert_not_called()


async def test_successful_interval_run(executor, repository, job_queue, helpers, work):
    """Test a successful run is recorded and the next interval is queued"""
    # Setup
    schedule = repository.add_schedule(
        task_type="data_export", interval_ms=600_000, config={"format": "json"}
    )
    before = utc_now()

    # Execute
    await executor.execute_scheduled_task({"schedule_id": schedule.id}, helpers)

    # Verify
    work.assert_awaited_once_with({"format": "json"})

    [run] = repository.runs.values()
    assert run.schedule_id == schedule.id
    assert run.task_type == "data_export"
    assert run.status == RunStatus.SUCCESS.value
    assert run.triggered_by == "cron"
    assert run.completed_at is not None
    assert run.error_message is None

    assert schedule.last_run_at >= before
    assert schedule.next_run_at >= before + timedelta(minutes=10)
    assert schedule.queue_job_key == "schedule:1"
    assert list(job_queue.keyed) == ["schedule:1"]
    job = job_queue.keyed["schedule:1"]
    assert job["payload"] == {"schedule_id": schedule.id}
    assert job["run_at"] == schedule.next_run_at


async def test_failed_run_records_error(executor, repository, job_queue, helpers, work):
    """Test a failing task yields exactly one failed run with its error"""
    # Setup
    schedule = repository.add_schedule()
    work.side_effect = RuntimeError("SMTP relay unavailable")

    # Execute
    await executor.execute_scheduled_task({"schedule_id": schedule.id}, helpers)

    # Verify
    assert len(repository.runs) == 1
    [run] = repository.runs.values()
    assert run.status == RunStatus.FAILED.value
    assert run.error_message == "RuntimeError: SMTP relay unavailable"
    assert run.completed_at is not None
    assert schedule.last_run_at is not None
    # Failures still keep the schedule going
    assert "schedule:1" in job_queue.keyed


async def test_unknown_task_type_fails_run(repository, repository_factory, helpers):
    """Test a stored task type without work fails the run"""
    executor = TaskExecutor(repository_factory, {})
    schedule = repository.add_schedule(task_type="legacy_task")

    await executor.execute_scheduled_task({"schedule_id": schedule.id}, helpers)

    [run] = repository.runs.values()
    assert run.status == RunStatus.FAILED.value
    assert run.error_message == "Unknown task type: legacy_task"


async def test_cron_run_rearms_at_next_occurrence(executor, repository, job_queue, helpers):
    """Test cron runs queue the next occurrence after completion"""
    schedule = repository.add_schedule(
        schedule_type="cron", cron_expression="0 6 * * *", interval_ms=None
    )
    before = utc_now()

    await executor.execute_scheduled_task({"schedule_id": schedule.id}, helpers)

    assert schedule.next_run_at > before
    assert (schedule.next_run_at.hour, schedule.next_run_at.minute) == (6, 0)
    assert schedule.next_run_at <= before + timedelta(days=1, seconds=5)
    assert job_queue.keyed["schedule:1"]["run_at"] == schedule.next_run_at


async def test_manual_run_does_not_rearm(executor, repository, job_queue, helpers):
    """Test manual runs leave the recurring job and next run untouched"""
    # Setup
    pending_at = utc_now() + timedelta(hours=3)
    schedule = repository.add_schedule(
        next_run_at=pending_at, queue_job_key="schedule:1"
    )
    await job_queue.enqueue(
        schedule.task_type,
        {"schedule_id": schedule.id},
        run_at=pending_at,
        job_key="schedule:1",
    )

    # Execute
    await executor.execute_scheduled_task(
        {"schedule_id": schedule.id, "triggered_by": "manual"}, helpers
    )

    # Verify
    [run] = repository.runs.values()
    assert run.triggered_by == "manual"
    assert run.status == RunStatus.SUCCESS.value
    assert schedule.next_run_at == pending_at
    assert job_queue.keyed["schedule:1"]["run_at"] == pending_at
    assert schedule.last_run_at is not None


async def test_manual_schedule_run_is_not_rearmed(executor, repository, job_queue, helpers):
    """Test manual-type schedules never get a next run"""
    schedule = repository.add_schedule(schedule_type="manual", interval_ms=None)

    await executor.execute_scheduled_task({"schedule_id": schedule.id}, helpers)

    assert schedule.next_run_at is None
    assert job_queue.keyed == {}


async def test_rearm_uses_state_edited_during_run(executor, repository, job_queue, helpers, work):
    """Test a schedule disabled while running is not queued again"""
    schedule = repository.add_schedule()

    async def disable_midway(config):
        schedule.enabled = False

    work.side_effect = disable_midway

    await executor.execute_scheduled_task({"schedule_id": schedule.id}, helpers)

    [run] = repository.runs.values()
    assert run.status == RunStatus.SUCCESS.value
    assert job_queue.keyed == {}


async def test_completion_is_retried_on_fresh_repository(repository, helpers, work):
    """Test a failed completion write is retried once"""
    # Setup
    class FlakyRepository(type(repository)):
        failures = 1

        async def complete_run_history_entry(self, run_id, status, error_message=None):
            if self.failures:
                self.failures -= 1
                raise ConnectionError("connection reset")
            return await super().complete_run_history_entry(
                run_id, status, error_message
            )

    repository = FlakyRepository()
    opened = []

    @asynccontextmanager
    async def factory():
        opened.append(repository)
        yield repository

    executor = TaskExecutor(factory, {"report_publish": work})
    schedule = repository.add_schedule()

    # Execute
    await executor.execute_scheduled_task({"schedule_id": schedule.id}, helpers)

    # Verify
    [run] = repository.runs.values()
    assert run.status == RunStatus.SUCCESS.value
    assert len(opened) == 2


async def test_rearm_failure_propagates(executor, repository, work):
    """Test a queue failure while re-arming reaches the job queue"""
    schedule = repository.add_schedule()
    failing = JobHelpers(
        enqueue=AsyncMock(
            side_effect=ExternalServiceError(
                "failed to enqueue job", service="JobQueue", operation="enqueue"
            )
        ),
        logger=None,
    )

    with pytest.raises(ExternalServiceError):
        await executor.execute_scheduled_task({"schedule_id": schedule.id}, failing)

    [run] = repository.runs.values()
    assert run.status == RunStatus.SUCCESS.value


async def test_last_run_failure_still_rearms(executor, repository, job_queue, helpers):
    """Test a failure recording last_run_at does not leave the schedule unarmed"""
    schedule = repository.add_schedule()
    repository.update_last_run_at = AsyncMock(side_effect=RuntimeError("db gone"))

    await executor.execute_scheduled_task({"schedule_id": schedule.id}, helpers)

    assert "schedule:1" in job_queue.keyed
    assert schedule.queue_job_key == "schedule:1"


async def test_log_context_cleared_after_run(executor, repository, helpers):
    """Test run-scoped log context does not leak into later jobs"""
    schedule = repository.add_schedule()

    await executor.execute_scheduled_task({"schedule_id": schedule.id}, helpers)

    assert structlog_contextvars.get_contextvars() == {}


def test_format_error():
    """Test failure messages include the exception type"""
    assert format_error(ValueError("bad reportId")) == "ValueError: bad reportId"
    assert format_error(TimeoutError()) == "TimeoutError"


async def test_system_task_handler_runs_work(helpers):
    """Test system task handlers run their work without run history"""
    work = AsyncMock()
    handler = make_system_task_handler("session_cleanup", work)

    await handler({}, helpers)

    work.assert_awaited_once_with({})
