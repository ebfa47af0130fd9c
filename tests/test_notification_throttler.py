"""Unit tests for NotificationThrottler"""

from datetime import timedelta

import pytest

from app.controllers.config.config_service import ConfigService
from app.controllers.notifications.throttler import NotificationThrottler
from app.models import NotificationCondition
from settings import settings
from tests.fakes import GOOGLE, make_credential

CONDITION = NotificationCondition.refresh_failed


class TestNotify:
    """Tests for notify method"""

    @pytest.mark.asyncio
    async def test_second_notification_inside_window_is_throttled(self, throttler, notification_dispatcher, now):
        """
        GIVEN a notification sent an hour ago
        WHEN the same condition fires again inside the throttle window
        THEN should not dispatch it
        """
        # GIVEN
        assert await throttler.notify(1, GOOGLE, CONDITION, {"failure_count": 3}, now)

        # WHEN
        sent = await throttler.notify(1, GOOGLE, CONDITION, {"failure_count": 4}, now + timedelta(hours=1))

        # THEN
        assert not sent
        assert len(notification_dispatcher.sent) == 1
        assert not await throttler.should_notify(1, GOOGLE, CONDITION, now + timedelta(hours=23))

    @pytest.mark.asyncio
    async def test_notification_after_window_is_sent(self, throttler, notification_dispatcher, now):
        await throttler.notify(1, GOOGLE, CONDITION, now=now)

        assert await throttler.should_notify(1, GOOGLE, CONDITION, now + timedelta(hours=24))
        assert await throttler.notify(1, GOOGLE, CONDITION, now=now + timedelta(hours=24))
        assert len(notification_dispatcher.sent) == 2

    @pytest.mark.asyncio
    async def test_conditions_are_throttled_separately(self, throttler, notification_dispatcher, now):
        await throttler.notify(1, GOOGLE, CONDITION, now=now)

        assert await throttler.notify(1, GOOGLE, NotificationCondition.reconnection_required, now=now)
        assert await throttler.notify(2, GOOGLE, CONDITION, now=now)
        assert len(notification_dispatcher.sent) == 3

    @pytest.mark.asyncio
    async def test_delivery_is_recorded_on_credential(self, throttler, credential_repo, now):
        credential = credential_repo.seed(make_credential(notification_failure_count=2))

        await throttler.notify(1, GOOGLE, CONDITION, now=now)

        assert credential.last_notification_at == now
        assert credential.notification_failure_count == 0

    @pytest.mark.asyncio
    async def test_delivery_does_not_bump_credential_version(
        self, throttler, credential_repo, notification_dispatcher, now
    ):
        """
        GIVEN a credential a refresh worker has read at version 1
        WHEN an upload_failed notification is sent, then fails to deliver
        THEN should leave the credential version alone so the refresh can still commit
        """
        # GIVEN
        credential = credential_repo.seed(make_credential())
        assert credential.version == 1

        # WHEN
        await throttler.notify(1, GOOGLE, NotificationCondition.upload_failed, now=now)
        notification_dispatcher.fail_with = ConnectionError("Mail relay unreachable")
        await throttler.notify(1, GOOGLE, CONDITION, now=now)

        # THEN
        assert credential.version == 1
        assert credential.last_notification_at == now
        assert credential.notification_failure_count == 1

    @pytest.mark.asyncio
    async def test_losing_the_slot_does_not_dispatch(self, throttler, notification_dispatcher, session, now):
        session.fail_commits = 1

        assert not await throttler.notify(1, GOOGLE, CONDITION, now=now)
        assert notification_dispatcher.sent == []

    @pytest.mark.asyncio
    async def test_disabled_notifications_are_dropped(
        self, notification_repo, credential_repo, config_override_repo, notification_dispatcher, now
    ):
        defaults = settings.token_refresh.model_copy(
            update={"notifications": settings.token_refresh.notifications.model_copy(update={"enabled": False})}
        )
        throttler = NotificationThrottler(
            notification_repo, credential_repo, ConfigService(config_override_repo, defaults), notification_dispatcher
        )

        assert not await throttler.notify(1, GOOGLE, CONDITION, now=now)
        assert not await throttler.should_notify(1, GOOGLE, CONDITION, now)
        assert notification_dispatcher.sent == []


class TestDeliveryFailures:
    """Tests for failed deliveries and escalation"""

    @pytest.mark.asyncio
    async def test_failed_delivery_releases_the_slot(
        self, throttler, notification_repo, notification_dispatcher, now
    ):
        """
        GIVEN a delivery channel that raises
        WHEN notifying
        THEN should return False, count the failure and leave the condition unthrottled
        """
        # GIVEN
        notification_dispatcher.fail_with = ConnectionError("Mail relay unreachable")

        # WHEN
        sent = await throttler.notify(1, GOOGLE, CONDITION, now=now)

        # THEN
        assert not sent
        record = await notification_repo.get_for(1, GOOGLE, CONDITION)
        assert record.last_sent_at is None
        assert record.failure_count == 1
        assert record.last_failure_message == "Mail relay unreachable"
        assert await throttler.should_notify(1, GOOGLE, CONDITION, now)

    @pytest.mark.asyncio
    async def test_escalates_after_repeated_failures(
        self, throttler, notification_repo, notification_dispatcher, credential_repo, now
    ):
        """
        GIVEN a delivery channel that keeps failing
        WHEN the failure count reaches the configured maximum
        THEN should escalate once and cap the counter
        """
        # GIVEN
        credential = credential_repo.seed(make_credential())
        notification_dispatcher.fail_with = ConnectionError("Mail relay unreachable")

        # WHEN
        for attempt in range(4):
            await throttler.notify(1, GOOGLE, CONDITION, {"failure_count": 5}, now + timedelta(minutes=attempt))

        # THEN
        record = await notification_repo.get_for(1, GOOGLE, CONDITION)
        assert record.failure_count == 3
        assert credential.notification_failure_count == 3
        assert len(notification_dispatcher.escalations) == 2
        _, _, condition, context = notification_dispatcher.escalations[0]
        assert condition == CONDITION
        assert context["failure_count"] == 3
        assert context["error"] == "Mail relay unreachable"

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, throttler, notification_repo, notification_dispatcher, now):
        notification_dispatcher.fail_with = ConnectionError("Mail relay unreachable")
        await throttler.notify(1, GOOGLE, CONDITION, now=now)
        notification_dispatcher.fail_with = None

        assert await throttler.notify(1, GOOGLE, CONDITION, now=now + timedelta(minutes=1))

        record = await notification_repo.get_for(1, GOOGLE, CONDITION)
        assert record.failure_count == 0
        assert record.last_sent_at == now + timedelta(minutes=1)
