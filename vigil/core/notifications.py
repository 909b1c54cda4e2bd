import logging
from typing import Any, Dict, List, Protocol, TypedDict

logger = logging.getLogger(__name__)

ALERT_EVENT = "task_alert"


class NotificationOptions(TypedDict):
    priority: str
    channels: List[str]


class NotificationSink(Protocol):
    """Delivers alerts. The engine decides whether and what; the sink decides how."""

    async def send_notification(
        self,
        user_id: str,
        event_type: str,
        variables: Dict[str, Any],
        options: NotificationOptions,
    ) -> None: ...


class LoggingNotificationSink:
    """Default sink: writes alerts to the ``vigil.notifications`` logger."""

    def __init__(self) -> None:
        self._logger = logging.getLogger("vigil.notifications")

    async def send_notification(
        self,
        user_id: str,
        event_type: str,
        variables: Dict[str, Any],
        options: NotificationOptions,
    ) -> None:
        self._logger.warning(
            f"[{event_type}] {variables.get('task_name')} for user {user_id} "
            f"via {', '.join(options['channels'])}: {variables.get('message')}"
        )
