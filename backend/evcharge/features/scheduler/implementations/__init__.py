"""Work performed by each task type.

Every implementation is an ``async def (config) -> None`` that raises on
failure.
"""

from typing import Any, Awaitable, Callable, Dict

from ..registry import TaskType
from .exports import export_data
from .maintenance import cleanup_sessions
from .notifications import send_email
from .reports import publish_report

WorkHandler = Callable[[Dict[str, Any]], Awaitable[None]]

WORK_HANDLERS: Dict[str, WorkHandler] = {
    TaskType.REPORT_PUBLISH.value: publish_report,
    TaskType.SEND_EMAIL.value: send_email,
    TaskType.DATA_EXPORT.value: export_data,
}

SYSTEM_WORK_HANDLERS: Dict[str, WorkHandler] = {
    "session_cleanup": cleanup_sessions,
}

__all__ = [
    "WorkHandler",
    "WORK_HANDLERS",
    "SYSTEM_WORK_HANDLERS",
    "publish_report",
    "send_email",
    "export_data",
    "cleanup_sessions",
]
