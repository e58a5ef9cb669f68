"""Static catalog of schedulable task types and fixed system tasks."""

from dataclasses import dataclass, field
from enum import Enum as PyEnum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from evcharge.core.exceptions import ValidationError


class TaskType(str, PyEnum):
    """Task types a user schedule can run.

    Values double as job queue task names.
    """

    REPORT_PUBLISH = "report_publish"
    SEND_EMAIL = "send_email"
    DATA_EXPORT = "data_export"


SYSTEM_TASK_TYPE = "SYSTEM"


@dataclass(frozen=True)
class ConfigOption:
    value: str
    label: str


@dataclass(frozen=True)
class ConfigField:
    """One configuration key declared by a task type."""

    key: str
    label: str
    type: str  # text | select | number
    required: bool = False
    options: Tuple[ConfigOption, ...] = ()


@dataclass(frozen=True)
class TaskTypeDefinition:
    id: TaskType
    label: str
    description: str
    config_fields: Tuple[ConfigField, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SystemTask:
    """A fixed schedule registered straight with the job queue's cron mechanism."""

    task_id: str
    name: str
    cron: str
    schedule_label: str
    task_type: str = SYSTEM_TASK_TYPE


TASK_TYPES: List[TaskTypeDefinition] = [
    TaskTypeDefinition(
        id=TaskType.REPORT_PUBLISH,
        label="Report Publishing",
        description="Generates and publishes a report",
        config_fields=(
            ConfigField(
                key="reportId",
                label="Report",
                type="select",
                required=True,
                options=(
                    ConfigOption("compliance-weekly", "Weekly Compliance Report"),
                    ConfigOption("usage-monthly", "Monthly Usage Report"),
                    ConfigOption("billing-summary", "Billing Summary"),
                ),
            ),
        ),
    ),
    TaskTypeDefinition(
        id=TaskType.SEND_EMAIL,
        label="Email Notification",
        description="Sends an email notification",
        config_fields=(
            ConfigField(
                key="templateId",
                label="Email Template",
                type="select",
                required=True,
                options=(
                    ConfigOption("weekly-digest", "Weekly Digest"),
                    ConfigOption("monthly-summary", "Monthly Summary"),
                ),
            ),
        ),
    ),
    TaskTypeDefinition(
        id=TaskType.DATA_EXPORT,
        label="Data Export",
        description="Exports data to a file",
        config_fields=(
            ConfigField(
                key="format",
                label="Export Format",
                type="select",
                required=True,
                options=(
                    ConfigOption("csv", "CSV"),
                    ConfigOption("json", "JSON"),
                    ConfigOption("xlsx", "Excel"),
                ),
            ),
        ),
    ),
]

SYSTEM_TASKS: List[SystemTask] = [
    SystemTask(
        task_id="session_cleanup",
        name="Session Cleanup",
        cron="*/5 * * * *",
        schedule_label="Every 5 min",
    ),
]

_TASK_TYPES_BY_ID: Dict[str, TaskTypeDefinition] = {
    definition.id.value: definition for definition in TASK_TYPES
}


def get_task_definition(task_type: Any) -> Optional[TaskTypeDefinition]:
    """Look up a task type definition, accepting the enum or its string value."""
    if isinstance(task_type, TaskType):
        task_type = task_type.value
    return _TASK_TYPES_BY_ID.get(task_type)


def validate_task_config(
    task_type: Any, config: Optional[Mapping[str, Any]]
) -> None:
    """Check the config values a schedule supplies against its task type.

    Missing keys are accepted; the required flag only drives the form.

    :raises ValidationError: Unknown task type, select value outside the
        declared options, or non-numeric number field.
    """
    definition = get_task_definition(task_type)
    if definition is None:
        raise ValidationError(
            f"Unknown task type: {task_type}", field="taskType", value=task_type
        )

    config = config or {}
    if not isinstance(config, Mapping):
        raise ValidationError("config must be an object", field="config")

    for config_field in definition.config_fields:
        value = config.get(config_field.key)
        if value is None or value == "":
            continue

        if config_field.type == "select":
            allowed = [option.value for option in config_field.options]
            if value not in allowed:
                raise ValidationError(
                    f"Invalid {config_field.label.lower()}: {value}. "
                    f"Expected one of: {', '.join(allowed)}",
                    field=config_field.key,
                    value=value,
                )
        elif config_field.type == "number":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(
                    f"{config_field.label} must be a number",
                    field=config_field.key,
                    value=value,
                )
