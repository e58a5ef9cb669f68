"""Schedule service keeping the job queue consistent with persisted schedules.

The schedule row is the source of truth. Every mutation recomputes the
pending run from the row's effective state and reconciles the queue with an
idempotent replace (or remove) under the schedule's deterministic key.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from evcharge.core.exceptions import NotFoundError, ValidationError
from .cron import next_occurrence, validate_cron_expression
from .models import ScheduleType, TaskRunHistory, TaskSchedule, TriggerSource
from .queue import JobKeyMode, JobQueue
from .registry import (
    SYSTEM_TASKS,
    TASK_TYPES,
    get_task_definition,
    validate_task_config,
)
from .repository import ScheduleRepositoryInterface
from .schemas import (
    ConfigFieldResponse,
    ConfigOptionResponse,
    RunHistoryResponse,
    ScheduleCreate,
    ScheduleListItem,
    ScheduleResponse,
    ScheduleUpdate,
    SystemTaskResponse,
    TaskTypeListResponse,
    TaskTypeResponse,
)
from .utils import (
    compute_next_run_at,
    describe_schedule,
    duration_ms,
    schedule_job_key,
    utc_now,
)

logger = structlog.get_logger(__name__)

SYSTEM_SCHEDULE_TYPE = "system"
SYSTEM_CREATED_BY = "SYSTEM"

_CADENCE_FIELDS = ("schedule_type", "cron_expression", "interval_ms", "enabled")


def validate_schedule_state(
    name: Optional[str],
    task_type: Optional[str],
    schedule_type: Optional[str],
    cron_expression: Optional[str],
    interval_ms: Optional[int],
    config: Optional[Dict[str, Any]],
) -> None:
    """Validate a schedule's effective state.

    :raises ValidationError: On the first rule the state violates
    """
    if not name or not name.strip() or not task_type or not schedule_type:
        raise ValidationError("name, taskType, and scheduleType are required")

    if get_task_definition(task_type) is None:
        raise ValidationError(
            f"Unknown task type: {task_type}", field="taskType", value=task_type
        )

    valid_types = [t.value for t in ScheduleType]
    if schedule_type not in valid_types:
        raise ValidationError(
            f"Invalid schedule type: {schedule_type}. "
            f"Expected one of: {', '.join(valid_types)}",
            field="scheduleType",
            value=schedule_type,
        )

    if schedule_type == ScheduleType.CRON.value:
        if not cron_expression:
            raise ValidationError(
                "cronExpression is required for cron schedule type",
                field="cronExpression",
            )
        validate_cron_expression(cron_expression)

    if schedule_type == ScheduleType.INTERVAL.value:
        if not interval_ms:
            raise ValidationError(
                "intervalMs is required for interval schedule type",
                field="intervalMs",
            )
        if interval_ms <= 0:
            raise ValidationError(
                "intervalMs must be a positive number of milliseconds",
                field="intervalMs",
                value=interval_ms,
            )

    validate_task_config(task_type, config)


def _normalize_cadence(fields: Dict[str, Any]) -> None:
    """Null out the cadence field that does not apply to the schedule type."""
    if fields["schedule_type"] != ScheduleType.CRON.value:
        fields["cron_expression"] = None
    else:
        fields["cron_expression"] = fields["cron_expression"].strip()
    if fields["schedule_type"] != ScheduleType.INTERVAL.value:
        fields["interval_ms"] = None


class ScheduleService:
    """Schedule CRUD with job queue reconciliation."""

    def __init__(self, repository: ScheduleRepositoryInterface, queue: JobQueue):
        self.repository = repository
        self.queue = queue

    async def _get_existing(self, schedule_id: int, operation: str) -> TaskSchedule:
        schedule = await self.repository.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError(
                "Schedule not found",
                service="ScheduleService",
                operation=operation,
                entity_id=schedule_id,
            )
        return schedule

    async def _arm(self, schedule_id: int, task_type: str, run_at: datetime) -> str:
        job_key = schedule_job_key(schedule_id)
        await self.queue.enqueue(
            task_type,
            {"schedule_id": schedule_id},
            run_at=run_at,
            job_key=job_key,
            job_key_mode=JobKeyMode.REPLACE,
        )
        return job_key

    async def create_schedule(
        self, data: ScheduleCreate, created_by: str
    ) -> ScheduleResponse:
        """Validate, persist and, when due, queue a new schedule."""
        fields = data.model_dump()
        validate_schedule_state(
            fields["name"],
            fields["task_type"],
            fields["schedule_type"],
            fields["cron_expression"],
            fields["interval_ms"],
            fields["config"],
        )
        _normalize_cadence(fields)
        fields["name"] = fields["name"].strip()

        next_run_at = compute_next_run_at(
            fields["schedule_type"],
            fields["cron_expression"],
            fields["interval_ms"],
            fields["enabled"],
        )

        schedule = await self.repository.create_schedule(
            **fields,
            created_by=created_by,
            next_run_at=next_run_at,
            queue_job_key=None,
        )
        logger.info(
            "Created schedule",
            schedule_id=schedule.id,
            task_type=schedule.task_type,
            schedule_type=schedule.schedule_type,
            created_by=created_by,
        )

        if next_run_at is not None:
            job_key = await self._arm(schedule.id, schedule.task_type, next_run_at)
            schedule = (
                await self.repository.update_schedule(
                    schedule.id, queue_job_key=job_key
                )
                or schedule
            )

        return ScheduleResponse.model_validate(schedule)

    async def update_schedule(
        self, schedule_id: int, data: ScheduleUpdate
    ) -> ScheduleResponse:
        """Merge supplied fields over the schedule and reconcile its queued run."""
        existing = await self._get_existing(schedule_id, "update_schedule")

        changes = data.model_dump(exclude_unset=True)
        merged = {
            "name": existing.name,
            "task_type": existing.task_type,
            "schedule_type": existing.schedule_type,
            "cron_expression": existing.cron_expression,
            "interval_ms": existing.interval_ms,
            "enabled": existing.enabled,
            "config": existing.config,
        }
        merged.update(changes)
        if merged["enabled"] is None:
            merged["enabled"] = existing.enabled

        validate_schedule_state(
            merged["name"],
            merged["task_type"],
            merged["schedule_type"],
            merged["cron_expression"],
            merged["interval_ms"],
            merged["config"],
        )
        _normalize_cadence(merged)
        merged["name"] = merged["name"].strip()

        next_run_at = compute_next_run_at(
            merged["schedule_type"],
            merged["cron_expression"],
            merged["interval_ms"],
            merged["enabled"],
        )

        job_key = schedule_job_key(schedule_id)
        if next_run_at is not None:
            await self._arm(schedule_id, merged["task_type"], next_run_at)
            queue_job_key = job_key
        else:
            await self.queue.remove_by_key(job_key)
            queue_job_key = None

        updated = await self.repository.update_schedule(
            schedule_id,
            **merged,
            next_run_at=next_run_at,
            queue_job_key=queue_job_key,
        )
        if updated is None:
            # Deleted between the read and the write
            await self.queue.remove_by_key(job_key)
            raise NotFoundError(
                "Schedule not found",
                service="ScheduleService",
                operation="update_schedule",
                entity_id=schedule_id,
            )

        logger.info(
            "Updated schedule",
            schedule_id=schedule_id,
            changed_fields=sorted(changes),
            cadence_changed=any(f in changes for f in _CADENCE_FIELDS),
            next_run_at=next_run_at.isoformat() if next_run_at else None,
        )
        return ScheduleResponse.model_validate(updated)

    async def delete_schedule(self, schedule_id: int) -> None:
        """Remove the queued run, then the schedule row."""
        await self._get_existing(schedule_id, "delete_schedule")

        await self.queue.remove_by_key(schedule_job_key(schedule_id))
        await self.repository.delete_schedule(schedule_id)
        logger.info("Deleted schedule", schedule_id=schedule_id)

    async def run_schedule_now(self, schedule_id: int) -> str:
        """Queue an immediate one-shot run that leaves the recurring job alone.

        Disabled schedules are still queued; the executor skips them.
        """
        schedule = await self._get_existing(schedule_id, "run_schedule_now")

        job_id = await self.queue.enqueue(
            schedule.task_type,
            {"schedule_id": schedule.id, "triggered_by": TriggerSource.MANUAL.value},
        )
        logger.info(
            "Queued manual run",
            schedule_id=schedule_id,
            task_type=schedule.task_type,
            job_id=job_id,
            enabled=schedule.enabled,
        )
        return job_id

    async def list_schedules(self) -> List[ScheduleListItem]:
        """User schedules followed by the read-only system tasks."""
        schedules = await self.repository.list_schedules()
        items = [
            ScheduleListItem(
                **ScheduleResponse.model_validate(schedule).model_dump(),
                is_system=False,
                schedule_description=describe_schedule(
                    schedule.schedule_type,
                    schedule.cron_expression,
                    schedule.interval_ms,
                ),
            )
            for schedule in schedules
        ]

        last_executions = await self.queue.get_crontab_last_executions()
        now = utc_now()
        for system_task in SYSTEM_TASKS:
            items.append(
                ScheduleListItem(
                    id=None,
                    name=system_task.name,
                    task_type=system_task.task_type,
                    schedule_type=SYSTEM_SCHEDULE_TYPE,
                    cron_expression=system_task.cron,
                    interval_ms=None,
                    enabled=True,
                    config=None,
                    created_by=SYSTEM_CREATED_BY,
                    last_run_at=last_executions.get(system_task.task_id),
                    next_run_at=next_occurrence(system_task.cron, now),
                    queue_job_key=system_task.task_id,
                    is_system=True,
                    schedule_description=describe_schedule(
                        ScheduleType.CRON.value, system_task.cron, None
                    ),
                )
            )
        return items

    async def list_run_history(
        self, schedule_id: Optional[int] = None, limit: int = 50
    ) -> List[RunHistoryResponse]:
        """Run history newest first, optionally for one schedule."""
        runs = await self.repository.list_run_history(
            schedule_id=schedule_id, limit=limit
        )
        return [self._run_to_response(run) for run in runs]

    @staticmethod
    def _run_to_response(run: TaskRunHistory) -> RunHistoryResponse:
        response = RunHistoryResponse.model_validate(run)
        response.duration_ms = duration_ms(run.started_at, run.completed_at)
        return response

    @staticmethod
    def list_task_types() -> TaskTypeListResponse:
        """Catalog of schedulable task types and fixed system tasks."""
        return TaskTypeListResponse(
            task_types=[
                TaskTypeResponse(
                    id=definition.id.value,
                    label=definition.label,
                    description=definition.description,
                    config_fields=[
                        ConfigFieldResponse(
                            key=config_field.key,
                            label=config_field.label,
                            type=config_field.type,
                            required=config_field.required,
                            options=[
                                ConfigOptionResponse(
                                    value=option.value, label=option.label
                                )
                                for option in config_field.options
                            ],
                        )
                        for config_field in definition.config_fields
                    ],
                )
                for definition in TASK_TYPES
            ],
            system_tasks=[
                SystemTaskResponse(
                    task_id=system_task.task_id,
                    name=system_task.name,
                    cron=system_task.cron,
                    schedule_label=system_task.schedule_label,
                    task_type=system_task.task_type,
                )
                for system_task in SYSTEM_TASKS
            ],
        )
