"""Data export task."""

from typing import Any, Dict

import structlog

from ._simulation import simulate_work

logger = structlog.get_logger(__name__)


async def export_data(config: Dict[str, Any]) -> None:
    export_format = config.get("format")
    logger.info("Exporting data", format=export_format)
    await simulate_work()
    logger.info("Data export complete", format=export_format)
