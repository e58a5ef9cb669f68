"""Fixed maintenance tasks run by the system crontab."""

from typing import Any, Dict

import structlog

from ._simulation import simulate_work

logger = structlog.get_logger(__name__)


async def cleanup_sessions(config: Dict[str, Any]) -> None:
    logger.info("Running session cleanup")
    await simulate_work()
    logger.info("Session cleanup complete")
