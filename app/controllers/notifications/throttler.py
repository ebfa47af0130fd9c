import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.exc import DBAPIError

from app.controllers.config.config_service import ConfigService, ConfigSnapshot
from app.controllers.notifications.dispatcher import NotificationDispatcher
from app.models import NotificationCondition, NotificationRecord, StorageProvider
from app.repos.credential import CredentialRepo
from app.repos.notification import NotificationRecordRepo


class NotificationThrottler:
    """Sends at most one notification per (user, provider, condition) per throttle window.

    The send slot is claimed with a versioned write before dispatching, so two workers racing on
    the same condition send once. Delivery problems are logged and counted, never raised.
    """

    def __init__(
        self,
        notification_record_repo: NotificationRecordRepo,
        credential_repo: CredentialRepo,
        config_service: ConfigService,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._notification_record_repo = notification_record_repo
        self._credential_repo = credential_repo
        self._config_service = config_service
        self._dispatcher = dispatcher

    async def should_notify(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition, now: datetime | None = None
    ) -> bool:
        now = now or datetime.now(UTC)
        config = self._config_service.snapshot()
        if not config.notifications_enabled:
            return False
        record = await self._notification_record_repo.get_for(user_id, provider, condition)
        return self._is_due(record, now, config.notification_throttle)

    async def notify(
        self,
        user_id: int,
        provider: StorageProvider,
        condition: NotificationCondition,
        context: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Dispatch unless throttled; returns whether a notification went out."""
        now = now or datetime.now(UTC)
        context = context or {}
        config = self._config_service.snapshot()
        if not config.notifications_enabled:
            return False

        try:
            record = await self._notification_record_repo.get_or_create(user_id, provider, condition)
            if not self._is_due(record, now, config.notification_throttle):
                self._logger.debug(f"Notification {condition.value} for user {user_id} throttled")
                return False
            previous_sent_at = record.last_sent_at
            record.last_sent_at = now
            if not await self._notification_record_repo.try_commit():
                self._logger.info(f"Notification {condition.value} for user {user_id} claimed by another worker")
                return False
        except (DBAPIError, OSError) as e:
            self._logger.error(f"Could not claim notification {condition.value} for user {user_id}: {e}")
            return False

        try:
            await self._dispatcher.notify(user_id, provider, condition, context)
        except Exception as e:
            self._logger.exception(f"Delivery of {condition.value} notification to user {user_id} failed")
            await self._record_failure(user_id, provider, condition, previous_sent_at, e, config, context, now)
            return False

        await self._record_delivery(user_id, provider, condition, now)
        self._logger.info(f"Sent {condition.value} notification to user {user_id} ({provider.value})")
        return True

    async def _record_delivery(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition, now: datetime
    ) -> None:
        try:
            record = await self._notification_record_repo.get_for(user_id, provider, condition)
            if record is not None:
                record.failure_count = 0
            await self._credential_repo.record_notification_state(user_id, provider, 0, now)
            await self._notification_record_repo.try_commit()
        except (DBAPIError, OSError) as e:
            self._logger.warning(f"Could not record delivery of {condition.value} for user {user_id}: {e}")

    async def _record_failure(
        self,
        user_id: int,
        provider: StorageProvider,
        condition: NotificationCondition,
        previous_sent_at: datetime | None,
        error: Exception,
        config: ConfigSnapshot,
        context: dict[str, Any],
        now: datetime,
    ) -> None:
        failure_count = 0
        try:
            record = await self._notification_record_repo.get_for(user_id, provider, condition)
            if record is None:
                return
            # Release the slot so the next attempt is not throttled by a notification nobody got.
            if record.last_sent_at == now:
                record.last_sent_at = previous_sent_at
            record.failure_count = min(record.failure_count + 1, config.max_notification_failures)
            record.last_failure_at = now
            record.last_failure_message = str(error)
            failure_count = record.failure_count

            await self._credential_repo.record_notification_state(user_id, provider, failure_count)
            await self._notification_record_repo.try_commit()
        except (DBAPIError, OSError) as e:
            self._logger.warning(f"Could not record failed {condition.value} delivery for user {user_id}: {e}")
            return

        if failure_count >= config.max_notification_failures and config.escalate_to_admin:
            try:
                await self._dispatcher.escalate(
                    user_id, provider, condition, {**context, "failure_count": failure_count, "error": str(error)}
                )
            except Exception:
                self._logger.exception(f"Escalation of {condition.value} for user {user_id} failed")

    @staticmethod
    def _is_due(record: NotificationRecord | None, now: datetime, throttle: timedelta) -> bool:
        if record is None or record.last_sent_at is None:
            return True
        return now - record.last_sent_at >= throttle
