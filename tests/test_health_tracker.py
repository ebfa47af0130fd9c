"""Unit tests for HealthStatusTracker"""

from datetime import timedelta

import pytest

from app.controllers.errors.classifier import ClassifiedError
from app.exceptions import ConcurrencyError, ProviderError
from app.models import CloudStorageErrorType, ConsolidatedStatus, HealthStatus
from tests.fakes import GOOGLE, make_credential, make_health


class TestRecordOutcomes:
    """Tests for the record_* methods"""

    @pytest.mark.asyncio
    async def test_refresh_success_makes_connection_healthy(self, tracker, credential_repo, now):
        """
        GIVEN a connected credential without any health record
        WHEN a refresh succeeds
        THEN should create the record as healthy and mirror the token expiry
        """
        # GIVEN
        credential = credential_repo.seed(make_credential(expires_at=now + timedelta(hours=1)))

        # WHEN
        health = await tracker.record_refresh_success(1, GOOGLE, now)

        # THEN
        assert health.consolidated_status == ConsolidatedStatus.healthy
        assert health.status == HealthStatus.healthy
        assert health.last_successful_operation_at == now
        assert health.token_refresh_failures == 0
        assert health.token_expires_at == credential.expires_at

    @pytest.mark.asyncio
    async def test_refresh_failure_counts(self, tracker, credential_repo, classifier, now):
        credential_repo.seed(make_credential(expires_at=now + timedelta(minutes=10)))
        error = classifier.describe(ProviderError("Backend Error", 503), operation="token refresh")

        health = await tracker.record_refresh_failure(1, GOOGLE, error, now)

        assert health.token_refresh_failures == 1
        assert health.consecutive_failures == 1
        assert health.last_error_type == CloudStorageErrorType.service_unavailable
        assert health.last_error_at == now
        assert health.consolidated_status != ConsolidatedStatus.healthy

    @pytest.mark.asyncio
    async def test_intervention_failure_requires_authentication(self, tracker, credential_repo, health_repo, now):
        """
        GIVEN a healthy connection
        WHEN an operation fails with an expired token
        THEN should flag reconnection and require authentication
        """
        # GIVEN
        credential_repo.seed(make_credential(expires_at=now + timedelta(hours=1)))
        health_repo.seed(make_health(last_successful_operation_at=now - timedelta(minutes=1)))
        error = ClassifiedError(CloudStorageErrorType.token_expired, "invalid_grant")

        # WHEN
        health = await tracker.record_operation_failure(1, GOOGLE, error, now)

        # THEN
        assert health.requires_reconnection
        assert health.consolidated_status == ConsolidatedStatus.authentication_required
        assert health.status == HealthStatus.unhealthy

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, tracker, credential_repo, health_repo, now):
        credential_repo.seed(make_credential(expires_at=now + timedelta(hours=1)))
        health_repo.seed(
            make_health(
                consecutive_failures=2,
                last_error_type=CloudStorageErrorType.timeout,
                last_error_message="timed out",
                requires_reconnection=True,
            )
        )

        health = await tracker.record_operation_success(1, GOOGLE, now)

        assert health.consecutive_failures == 0
        assert health.last_error_type is None
        assert health.last_error_message is None
        assert not health.requires_reconnection
        assert health.consolidated_status == ConsolidatedStatus.healthy

    @pytest.mark.asyncio
    async def test_validation_result_is_recorded(self, tracker, credential_repo, now):
        credential_repo.seed(make_credential(expires_at=now + timedelta(hours=1)))

        health = await tracker.record_validation_result(1, GOOGLE, True, now=now)

        assert health.last_validation_result is True
        assert health.last_validated_at == now
        assert health.consolidated_status == ConsolidatedStatus.healthy

    @pytest.mark.asyncio
    async def test_mark_disconnected_resets_counters(self, tracker, credential_repo, health_repo, now):
        credential_repo.seed(make_credential(access_token=None, refresh_token=None))
        health_repo.seed(make_health(consecutive_failures=4, requires_reconnection=True, last_validation_result=False))

        health = await tracker.mark_disconnected(1, GOOGLE, now)

        assert health.consecutive_failures == 0
        assert not health.requires_reconnection
        assert health.last_validation_result is None
        assert health.consolidated_status == ConsolidatedStatus.not_connected


class TestConcurrentWrites:
    """Tests for the versioned write loop"""

    @pytest.mark.asyncio
    async def test_retries_after_losing_a_race(self, tracker, credential_repo, health_repo, session, now):
        """
        GIVEN a health write that will lose its first commit to a concurrent writer
        WHEN recording a success
        THEN should re-read, reapply and commit on the next attempt
        """
        # GIVEN
        credential_repo.seed(make_credential(expires_at=now + timedelta(hours=1)))
        health_repo.seed(make_health())
        session.fail_commits = 1

        # WHEN
        health = await tracker.record_operation_success(1, GOOGLE, now)

        # THEN
        assert session.rollbacks == 1
        assert health.consolidated_status == ConsolidatedStatus.healthy
        assert health.last_successful_operation_at == now

    @pytest.mark.asyncio
    async def test_gives_up_after_configured_attempts(self, tracker, credential_repo, health_repo, session, now):
        credential_repo.seed(make_credential(expires_at=now + timedelta(hours=1)))
        health = health_repo.seed(make_health())
        session.fail_commits = 10

        with pytest.raises(ConcurrencyError):
            await tracker.record_operation_success(1, GOOGLE, now)

        assert health.last_successful_operation_at is None

    @pytest.mark.asyncio
    async def test_failure_counter_is_not_double_counted(self, tracker, credential_repo, health_repo, session, now):
        """
        GIVEN a failure write that is rolled back once
        WHEN it is reapplied
        THEN should count the failure once
        """
        credential_repo.seed(make_credential(expires_at=now + timedelta(hours=1)))
        health_repo.seed(make_health())
        session.fail_commits = 1

        health = await tracker.record_operation_failure(
            1, GOOGLE, ClassifiedError(CloudStorageErrorType.timeout, "timed out"), now
        )

        assert health.consecutive_failures == 1


class TestHealthSummary:
    """Tests for get_health_summary and get_consolidated_status"""

    @pytest.mark.asyncio
    async def test_summary_uses_error_message_when_unhealthy(self, tracker, credential_repo, health_repo, now):
        credential_repo.seed(make_credential(expires_at=now + timedelta(hours=1), requires_reconnection=True))
        health_repo.seed(make_health(last_error_type=CloudStorageErrorType.token_expired, consecutive_failures=1))

        summary = await tracker.get_health_summary(1, GOOGLE, now)

        assert summary.consolidated_status == ConsolidatedStatus.authentication_required
        assert summary.requires_reconnection
        assert summary.message.startswith("Your Google Drive connection has expired.")

    @pytest.mark.asyncio
    async def test_reconnection_message_wins_over_recoverable_error(
        self, tracker, credential_repo, health_repo, now
    ):
        """
        GIVEN a credential given up on after repeated 503s from the token endpoint
        WHEN reading the health summary
        THEN should ask the user to reconnect instead of promising an automatic retry
        """
        # GIVEN
        credential_repo.seed(
            make_credential(expires_at=now - timedelta(minutes=5), requires_reconnection=True, refresh_failure_count=5)
        )
        health_repo.seed(
            make_health(last_error_type=CloudStorageErrorType.service_unavailable, consecutive_failures=5)
        )

        # WHEN
        summary = await tracker.get_health_summary(1, GOOGLE, now)

        # THEN
        assert summary.consolidated_status == ConsolidatedStatus.authentication_required
        assert summary.message == "Authentication required - please reconnect your Google Drive account"

    @pytest.mark.asyncio
    async def test_summary_without_records(self, tracker, now):
        summary = await tracker.get_health_summary(5, GOOGLE, now)

        assert summary.consolidated_status == ConsolidatedStatus.not_connected
        assert summary.consecutive_failures == 0
        assert summary.message == "Google Drive not connected - please set up your cloud storage connection"

    @pytest.mark.asyncio
    async def test_status_is_derived_on_read(self, tracker, credential_repo, health_repo, now):
        """
        GIVEN a stored healthy status that has gone stale
        WHEN reading the consolidated status a day later
        THEN should derive it again instead of trusting the stored value
        """
        credential_repo.seed(make_credential(expires_at=now + timedelta(days=2)))
        health_repo.seed(
            make_health(last_successful_operation_at=now, consolidated_status=ConsolidatedStatus.healthy)
        )

        status = await tracker.get_consolidated_status(1, GOOGLE, now + timedelta(hours=25))

        assert status == ConsolidatedStatus.not_connected


class TestBackfill:
    """Tests for backfill method"""

    @pytest.mark.asyncio
    async def test_backfill_is_idempotent(self, tracker, credential_repo, health_repo, now):
        """
        GIVEN connections whose stored statuses are out of date
        WHEN running the backfill twice
        THEN should fix them the first time and change nothing the second time
        """
        # GIVEN
        credential_repo.seed(make_credential(user_id=1, requires_reconnection=True))
        credential_repo.seed(make_credential(user_id=2, expires_at=now + timedelta(hours=1), refresh_failure_count=4))
        credential_repo.seed(make_credential(user_id=3, access_token=None, refresh_token=None))
        health_repo.seed(make_health(user_id=1, consolidated_status=ConsolidatedStatus.healthy))
        health_repo.seed(make_health(user_id=2, consolidated_status=ConsolidatedStatus.healthy))

        # WHEN
        first = await tracker.backfill(GOOGLE, batch_size=2)
        second = await tracker.backfill(GOOGLE, batch_size=2)

        # THEN
        assert first == 3
        assert second == 0
        statuses = {health.user_id: health.consolidated_status for health in health_repo.rows.values()}
        assert statuses == {
            1: ConsolidatedStatus.authentication_required,
            2: ConsolidatedStatus.connection_issues,
            3: ConsolidatedStatus.not_connected,
        }
