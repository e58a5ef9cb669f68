"""Pydantic schemas for the task scheduler API.

JSON keys are camelCase (``taskType``, ``cronExpression``); snake_case
names are accepted on input as well.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ScheduleCreate(CamelModel):
    """Schema for creating a schedule.

    Required-field and cadence rules are enforced by the service so that
    every violation is reported the same way.
    """

    name: Optional[str] = Field(None, max_length=128, description="Display name")
    task_type: Optional[str] = Field(None, description="Task registry identifier")
    schedule_type: Optional[str] = Field(
        None, description="cron, interval or manual"
    )
    cron_expression: Optional[str] = Field(
        None, max_length=128, description="Five-field cron expression"
    )
    interval_ms: Optional[int] = Field(None, description="Interval in milliseconds")
    enabled: bool = Field(default=True, description="Whether the schedule is active")
    config: Optional[Dict[str, Any]] = Field(
        None, description="Task-specific configuration"
    )


class ScheduleUpdate(CamelModel):
    """Schema for updating a schedule; only supplied fields change."""

    name: Optional[str] = Field(None, max_length=128)
    task_type: Optional[str] = None
    schedule_type: Optional[str] = None
    cron_expression: Optional[str] = Field(None, max_length=128)
    interval_ms: Optional[int] = None
    enabled: Optional[bool] = None
    config: Optional[Dict[str, Any]] = None


class ScheduleResponse(CamelModel):
    """Schema for schedule response data."""

    id: int = Field(..., description="Unique identifier")
    name: str
    task_type: str
    schedule_type: str
    cron_expression: Optional[str] = None
    interval_ms: Optional[int] = None
    enabled: bool
    config: Optional[Dict[str, Any]] = None
    created_by: str
    created_at: datetime
    updated_at: datetime
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    queue_job_key: Optional[str] = None


class ScheduleListItem(CamelModel):
    """A user schedule or a read-only system task in the listing."""

    id: Optional[int] = Field(None, description="Null for system tasks")
    name: str
    task_type: str
    schedule_type: str
    cron_expression: Optional[str] = None
    interval_ms: Optional[int] = None
    enabled: bool
    config: Optional[Dict[str, Any]] = None
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    queue_job_key: Optional[str] = None
    is_system: bool = Field(..., description="System tasks cannot be modified")
    schedule_description: str = Field(
        ..., description="Human-readable cadence, e.g. 'Every 5 minutes'"
    )


class ScheduleListResponse(CamelModel):
    tasks: List[ScheduleListItem]


class ScheduleMutationResponse(CamelModel):
    success: bool = True
    schedule: ScheduleResponse


class DeleteResponse(CamelModel):
    success: bool = True


class ManualRunResponse(CamelModel):
    success: bool = True
    message: str = "Job enqueued for immediate execution"
    job_id: Optional[str] = None


class RunHistoryResponse(CamelModel):
    """Schema for one run history entry."""

    id: int
    schedule_id: Optional[int] = None
    task_type: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    triggered_by: str
    duration_ms: Optional[int] = Field(
        None, description="Run duration, null while running"
    )


class RunHistoryListResponse(CamelModel):
    history: List[RunHistoryResponse]


class ConfigOptionResponse(CamelModel):
    value: str
    label: str


class ConfigFieldResponse(CamelModel):
    key: str
    label: str
    type: str
    required: bool
    options: List[ConfigOptionResponse] = Field(default_factory=list)


class TaskTypeResponse(CamelModel):
    id: str
    label: str
    description: str
    config_fields: List[ConfigFieldResponse]


class SystemTaskResponse(CamelModel):
    task_id: str
    name: str
    cron: str
    schedule_label: str
    task_type: str


class TaskTypeListResponse(CamelModel):
    task_types: List[TaskTypeResponse]
    system_tasks: List[SystemTaskResponse]
