"""Alembic environment configuration for the task scheduler.

Reads the database URL from the application settings (POSTGRES_* variables).
Imports all ORM models so autogenerate can detect schema changes.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool, text

from alembic import context

from evcharge.core import Base, get_global_settings
from evcharge.features.scheduler import models  # noqa: F401
from evcharge.features.scheduler.models import SCHEDULER_SCHEMA

# Alembic Config object - provides access to .ini values
config = context.config

# Migrations run on a synchronous driver
config.set_main_option("sqlalchemy.url", get_global_settings().jobstore_url)

# Python logging from .ini file
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def include_name(name, type_, parent_names) -> bool:
    """Only manage the scheduler schema; the job store owns its own table."""
    if type_ == "schema":
        return name == SCHEDULER_SCHEMA
    if type_ == "table":
        return name != "queued_jobs"
    return True


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (SQL script output only)."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_schemas=True,
        include_name=include_name,
        version_table_schema=SCHEDULER_SCHEMA,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (live database connection)."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        # The version table lives in the schema, so it must exist first
        connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {SCHEDULER_SCHEMA}"))
        connection.commit()

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_schemas=True,
            include_name=include_name,
            version_table_schema=SCHEDULER_SCHEMA,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
