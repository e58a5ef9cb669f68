"""Configuration settings for the EV charger task scheduler service."""

import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    postgres_db: str = Field(default="evcharge_db")
    postgres_user: str = Field(default="evcharge_user")
    postgres_password: str = Field(default="dev_password")
    postgres_host: str = Field(default="postgres")
    postgres_port: int = Field(default=5432)

    @property
    def database_url(self) -> str:
        """Construct async database URL from components."""
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @property
    def jobstore_url(self) -> str:
        """Synchronous URL for the job queue store.

        APScheduler's SQLAlchemyJobStore uses synchronous connections.
        """
        return self.database_url.replace(
            "postgresql+asyncpg://", "postgresql+psycopg2://"
        )

    db_pool_size: int = Field(
        default=5,
        description="Connections reserved for API requests, on top of one per running job",
    )

    # Application Configuration
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000,http://127.0.0.1:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        """Get CORS origins as a list."""
        return [
            origin.strip() for origin in self.cors_origins.split(",") if origin.strip()
        ]

    @property
    def environment(self) -> str:
        """Get current environment from ENVIRONMENT variable."""
        env = os.getenv("ENVIRONMENT", "").lower()
        return env if env in ["dev", "production"] else "dev"

    # Task Scheduler Configuration
    task_scheduler_enabled: bool = Field(
        default=True,
        description="Start the job queue worker inside the API process",
    )
    scheduler_concurrency: int = Field(
        default=5,
        description="Maximum number of queued jobs executed at the same time",
    )
    task_simulated_duration_seconds: float = Field(
        default=1.0,
        description="Duration of the simulated work performed by each task type",
    )
    run_history_default_limit: int = Field(
        default=50,
        description="Number of run history entries returned when no limit is given",
    )

    # Caller identity
    auth_user_header: str = Field(
        default="x-ms-client-principal-name",
        description="Request header injected by the hosting platform with the caller's email",
    )
    mock_user_email: Optional[str] = Field(
        default=None,
        description="Identity used when the platform header is absent (local development only)",
    )

    @field_validator("scheduler_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Concurrency must allow at least one running job."""
        if v < 1:
            raise ValueError("scheduler_concurrency must be at least 1")
        return v

    @field_validator("mock_user_email")
    @classmethod
    def validate_mock_user(cls, v: Optional[str]) -> Optional[str]:
        """Refuse a mock identity in production."""
        if v and os.getenv("ENVIRONMENT", "").lower() == "production":
            raise ValueError("MOCK_USER_EMAIL must not be set in production")
        return v or None

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix for environment variables
        extra="forbid",  # Forbid extra fields for better type safety
    )


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()


# Create a global settings instance lazily
settings: Settings | None = None


def get_global_settings() -> Settings:
    """Get or create the global settings instance."""
    global settings
    if settings is None:
        settings = get_settings()
    return settings
