"""Schedule, run history and crontab bookkeeping models."""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime as SQLDateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from evcharge.core.models import Base

SCHEDULER_SCHEMA = "scheduler"


class ScheduleType(str, PyEnum):
    """How a schedule decides when it runs next."""

    CRON = "cron"
    INTERVAL = "interval"
    MANUAL = "manual"


class RunStatus(str, PyEnum):
    """Enumeration of run history statuses."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class TriggerSource(str, PyEnum):
    """What caused a run."""

    CRON = "cron"
    MANUAL = "manual"
    SYSTEM = "system"


class TaskSchedule(Base):
    """A user-defined recurring or manual task definition."""

    __tablename__ = "task_schedules"
    __table_args__ = {"schema": SCHEDULER_SCHEMA}

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Unique identifier for the schedule",
    )

    name: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Display name of the schedule",
    )

    task_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Task registry identifier (report_publish, send_email, data_export)",
    )

    schedule_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="cron, interval or manual",
    )

    cron_expression: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        comment="Five-field cron expression, set only for cron schedules",
    )

    interval_ms: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Interval in milliseconds, set only for interval schedules",
    )

    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
        comment="Whether the schedule should be queued",
    )

    config: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Task-specific configuration declared by the task type",
    )

    created_by: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Email of the user who created the schedule",
    )

    created_at: Mapped[datetime] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="When the schedule was created",
    )

    updated_at: Mapped[datetime] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="When the schedule was last modified",
    )

    last_run_at: Mapped[Optional[datetime]] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=True,
        comment="When the schedule last executed",
    )

    next_run_at: Mapped[Optional[datetime]] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=True,
        comment="When the pending queue job is due",
    )

    queue_job_key: Mapped[Optional[str]] = mapped_column(
        String(191),
        nullable=True,
        comment="Job queue key of the pending job (schedule:<id>)",
    )

    def __repr__(self) -> str:
        """Return string representation of the schedule."""
        return (
            f"<TaskSchedule(id={self.id}, name='{self.name}', "
            f"task_type='{self.task_type}', schedule_type='{self.schedule_type}', "
            f"enabled={self.enabled})>"
        )


class TaskRunHistory(Base):
    """One execution attempt of a schedule."""

    __tablename__ = "task_run_history"
    __table_args__ = (
        Index("idx_task_run_history_schedule_started", "schedule_id", "started_at"),
        Index("idx_task_run_history_status", "status"),
        {"schema": SCHEDULER_SCHEMA},
    )

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Unique identifier for the run",
    )

    schedule_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey(f"{SCHEDULER_SCHEMA}.task_schedules.id", ondelete="SET NULL"),
        nullable=True,
        comment="Owning schedule, null once the schedule is deleted",
    )

    task_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Task type executed by this run",
    )

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="running, success or failed",
    )

    started_at: Mapped[datetime] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="When the run started",
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=True,
        comment="When the run left the running state",
    )

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Failure message for failed runs",
    )

    triggered_by: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=TriggerSource.CRON.value,
        comment="cron, manual or system",
    )

    def __repr__(self) -> str:
        """Return string representation of the run."""
        return (
            f"<TaskRunHistory(id={self.id}, schedule_id={self.schedule_id}, "
            f"status='{self.status}', triggered_by='{self.triggered_by}')>"
        )


class KnownCrontab(Base):
    """Job queue bookkeeping for fixed crontab entries."""

    __tablename__ = "known_crontabs"
    __table_args__ = {"schema": SCHEDULER_SCHEMA}

    identifier: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
        comment="Crontab identifier (system task id)",
    )

    known_since: Mapped[datetime] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="When the crontab was first registered",
    )

    last_execution: Mapped[Optional[datetime]] = mapped_column(
        SQLDateTime(timezone=True),
        nullable=True,
        comment="When the crontab last fired",
    )
