"""Create scheduler schema with schedule, run history and crontab tables

Revision ID: 4f2a9c1b7e3d
Revises:
Create Date: 2026-02-09 10:12:41.215804

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "4f2a9c1b7e3d"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create task_schedules, task_run_history and known_crontabs in the scheduler schema."""
    op.execute("CREATE SCHEMA IF NOT EXISTS scheduler")

    op.create_table(
        "task_schedules",
        sa.Column(
            "id",
            sa.Integer(),
            autoincrement=True,
            nullable=False,
            comment="Unique identifier for the schedule",
        ),
        sa.Column(
            "name",
            sa.String(length=128),
            nullable=False,
            comment="Display name of the schedule",
        ),
        sa.Column(
            "task_type",
            sa.String(length=64),
            nullable=False,
            comment="Task registry identifier (report_publish, send_email, data_export)",
        ),
        sa.Column(
            "schedule_type",
            sa.String(length=16),
            nullable=False,
            comment="cron, interval or manual",
        ),
        sa.Column(
            "cron_expression",
            sa.String(length=128),
            nullable=True,
            comment="Five-field cron expression, set only for cron schedules",
        ),
        sa.Column(
            "interval_ms",
            sa.BigInteger(),
            nullable=True,
            comment="Interval in milliseconds, set only for interval schedules",
        ),
        sa.Column(
            "enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
            comment="Whether the schedule should be queued",
        ),
        sa.Column(
            "config",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Task-specific configuration declared by the task type",
        ),
        sa.Column(
            "created_by",
            sa.String(length=255),
            nullable=False,
            comment="Email of the user who created the schedule",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="When the schedule was created",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="When the schedule was last modified",
        ),
        sa.Column(
            "last_run_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="When the schedule last executed",
        ),
        sa.Column(
            "next_run_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="When the pending queue job is due",
        ),
        sa.Column(
            "queue_job_key",
            sa.String(length=191),
            nullable=True,
            comment="Job queue key of the pending job (schedule:<id>)",
        ),
        sa.CheckConstraint(
            "schedule_type IN ('cron', 'interval', 'manual')",
            name="schedule_type_valid",
        ),
        sa.CheckConstraint(
            "interval_ms IS NULL OR interval_ms > 0",
            name="interval_ms_positive",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_task_schedules")),
        schema="scheduler",
    )
    op.create_index(
        op.f("ix_scheduler_task_schedules_task_type"),
        "task_schedules",
        ["task_type"],
        unique=False,
        schema="scheduler",
    )

    op.create_table(
        "task_run_history",
        sa.Column(
            "id",
            sa.Integer(),
            autoincrement=True,
            nullable=False,
            comment="Unique identifier for the run",
        ),
        sa.Column(
            "schedule_id",
            sa.Integer(),
            nullable=True,
            comment="Owning schedule, null once the schedule is deleted",
        ),
        sa.Column(
            "task_type",
            sa.String(length=64),
            nullable=False,
            comment="Task type executed by this run",
        ),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            comment="running, success or failed",
        ),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="When the run started",
        ),
        sa.Column(
            "completed_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="When the run left the running state",
        ),
        sa.Column(
            "error_message",
            sa.Text(),
            nullable=True,
            comment="Failure message for failed runs",
        ),
        sa.Column(
            "triggered_by",
            sa.String(length=16),
            nullable=False,
            comment="cron, manual or system",
        ),
        sa.CheckConstraint(
            "status IN ('running', 'success', 'failed')",
            name="status_valid",
        ),
        sa.CheckConstraint(
            "triggered_by IN ('cron', 'manual', 'system')",
            name="triggered_by_valid",
        ),
        sa.ForeignKeyConstraint(
            ["schedule_id"],
            ["scheduler.task_schedules.id"],
            name=op.f("fk_task_run_history_schedule_id_task_schedules"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_task_run_history")),
        schema="scheduler",
    )
    op.create_index(
        "idx_task_run_history_schedule_started",
        "task_run_history",
        ["schedule_id", "started_at"],
        unique=False,
        schema="scheduler",
    )
    op.create_index(
        "idx_task_run_history_status",
        "task_run_history",
        ["status"],
        unique=False,
        schema="scheduler",
    )

    op.create_table(
        "known_crontabs",
        sa.Column(
            "identifier",
            sa.String(length=128),
            nullable=False,
            comment="Crontab identifier (system task id)",
        ),
        sa.Column(
            "known_since",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="When the crontab was first registered",
        ),
        sa.Column(
            "last_execution",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="When the crontab last fired",
        ),
        sa.PrimaryKeyConstraint("identifier", name=op.f("pk_known_crontabs")),
        schema="scheduler",
    )


def downgrade() -> None:
    """Drop scheduler tables."""
    op.drop_table("known_crontabs", schema="scheduler")
    op.drop_index(
        "idx_task_run_history_status",
        table_name="task_run_history",
        schema="scheduler",
    )
    op.drop_index(
        "idx_task_run_history_schedule_started",
        table_name="task_run_history",
        schema="scheduler",
    )
    op.drop_table("task_run_history", schema="scheduler")
    op.drop_index(
        op.f("ix_scheduler_task_schedules_task_type"),
        table_name="task_schedules",
        schema="scheduler",
    )
    op.drop_table("task_schedules", schema="scheduler")
