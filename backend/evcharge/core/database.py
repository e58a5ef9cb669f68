"""Async SQLAlchemy engine and sessions shared by the API and the job worker."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)

from .config import get_global_settings


class DatabaseManager:
    """Owns the engine; every request and every job run opens its own session."""

    def __init__(self, database_url: Optional[str] = None):
        settings = get_global_settings()
        self.database_url = database_url or settings.database_url

        # Each running job holds one session for its whole run
        self.engine = create_async_engine(
            self.database_url,
            echo=settings.debug,
            pool_size=settings.db_pool_size + settings.scheduler_concurrency,
            pool_pre_ping=True,
        )
        self.async_session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session rolled back when the caller raises."""
        async with self.async_session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        await self.engine.dispose()


db_manager = DatabaseManager()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with db_manager.get_session() as session:
        yield session
