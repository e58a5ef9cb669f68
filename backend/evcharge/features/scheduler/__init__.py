"""Scheduler feature - user schedules, job queue reconciliation and task execution."""

from .router import router as scheduler_router
from .service import ScheduleService
from .models import (
    KnownCrontab,
    RunStatus,
    ScheduleType,
    TaskRunHistory,
    TaskSchedule,
    TriggerSource,
)
from .registry import SYSTEM_TASKS, TASK_TYPES, TaskType
from .worker import start_worker, stop_worker, get_worker

__all__ = [
    # Router
    "scheduler_router",
    # Service
    "ScheduleService",
    # Models
    "KnownCrontab",
    "RunStatus",
    "ScheduleType",
    "TaskRunHistory",
    "TaskSchedule",
    "TriggerSource",
    # Registry
    "SYSTEM_TASKS",
    "TASK_TYPES",
    "TaskType",
    # Worker
    "start_worker",
    "stop_worker",
    "get_worker",
]
