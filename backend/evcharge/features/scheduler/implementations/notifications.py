"""Email notification task."""

from typing import Any, Dict

import structlog

from ._simulation import simulate_work

logger = structlog.get_logger(__name__)


async def send_email(config: Dict[str, Any]) -> None:
    template_id = config.get("templateId")
    logger.info("Sending email template", template_id=template_id)
    await simulate_work()
    logger.info("Email sent", template_id=template_id)
