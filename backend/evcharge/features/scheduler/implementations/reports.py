"""Report publishing task."""

from typing import Any, Dict

import structlog

from ._simulation import simulate_work

logger = structlog.get_logger(__name__)


async def publish_report(config: Dict[str, Any]) -> None:
    report_id = config.get("reportId")
    logger.info("Publishing report", report_id=report_id)
    await simulate_work()
    logger.info("Report published", report_id=report_id)
