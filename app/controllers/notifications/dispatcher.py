import logging
from typing import Any, Protocol

from app.models import NotificationCondition, StorageProvider


class NotificationDispatcher(Protocol):
    """Delivery boundary for user/admin notifications (email, chat, ...)."""

    async def notify(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition, context: dict[str, Any]
    ) -> None: ...

    async def escalate(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition, context: dict[str, Any]
    ) -> None: ...


class LoggingNotificationDispatcher:
    """Writes notifications to the structured log; stands in until a delivery channel is configured."""

    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    async def notify(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition, context: dict[str, Any]
    ) -> None:
        self._logger.info(
            f"Notification {condition.value} for user {user_id} ({provider.value})",
            extra={"notification": {"user_id": user_id, "provider": provider.value, "condition": condition.value, **context}},
        )

    async def escalate(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition, context: dict[str, Any]
    ) -> None:
        self._logger.error(
            f"Escalating {condition.value} for user {user_id} ({provider.value}) to administrators",
            extra={"notification": {"user_id": user_id, "provider": provider.value, "condition": condition.value, **context}},
        )
