"""Helpers shared by the schedule service and the task executor."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from .cron import describe, next_occurrence
from .models import ScheduleType

JOB_KEY_PREFIX = "schedule:"

_MINUTE_MS = 60_000
_HOUR_MS = 60 * _MINUTE_MS
_DAY_MS = 24 * _HOUR_MS


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def schedule_job_key(schedule_id: int) -> str:
    """Deterministic job queue key for a schedule's pending run."""
    return f"{JOB_KEY_PREFIX}{schedule_id}"


def compute_next_run_at(
    schedule_type: str,
    cron_expression: Optional[str],
    interval_ms: Optional[int],
    enabled: bool,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Next due time for a schedule, or None when nothing should be queued.

    Cron schedules use the next cron occurrence after ``now``; interval
    schedules fire ``interval_ms`` after ``now``. Manual and disabled
    schedules never have a next run.
    """
    if not enabled:
        return None

    now = now or utc_now()
    if schedule_type == ScheduleType.CRON.value and cron_expression:
        return next_occurrence(cron_expression, now)
    if schedule_type == ScheduleType.INTERVAL.value and interval_ms:
        return now + timedelta(milliseconds=interval_ms)
    return None


def describe_interval(interval_ms: Optional[int]) -> str:
    if not interval_ms or interval_ms <= 0:
        return "Manual only"
    if interval_ms < _HOUR_MS:
        return f"Every {interval_ms // _MINUTE_MS} min"
    if interval_ms < _DAY_MS:
        return f"Every {interval_ms // _HOUR_MS} hr"
    days = interval_ms // _DAY_MS
    return f"Every {days} day{'s' if days > 1 else ''}"


def describe_schedule(
    schedule_type: str, cron_expression: Optional[str], interval_ms: Optional[int]
) -> str:
    """Human-readable cadence shown next to a schedule."""
    if schedule_type == ScheduleType.CRON.value:
        return describe(cron_expression)
    if schedule_type == ScheduleType.INTERVAL.value:
        return describe_interval(interval_ms)
    return "Manual only"


def duration_ms(
    started_at: Optional[datetime], completed_at: Optional[datetime]
) -> Optional[int]:
    """Elapsed milliseconds of a run, None while it is still running."""
    if started_at is None or completed_at is None:
        return None
    return int((completed_at - started_at).total_seconds() * 1000)
