"""Shared test fixtures for pytest"""

import contextlib
import os

os.environ["APP_ENV"] = "test"

from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402

from app.controllers.config.config_service import ConfigService  # noqa: E402
from app.controllers.errors.classifier import ErrorClassifier  # noqa: E402
from app.controllers.health.connection_tester import ConnectionTester, ManualTestRateLimiter  # noqa: E402
from app.controllers.health.dashboard import DashboardService  # noqa: E402
from app.controllers.health.tracker import HealthStatusTracker  # noqa: E402
from app.controllers.notifications.throttler import NotificationThrottler  # noqa: E402
from app.controllers.tokens.refresh_scheduler import RefreshScheduler  # noqa: E402
from app.controllers.tokens.token_store import TokenStore  # noqa: E402
from app.controllers.uploads.recovery import UploadRecoveryCoordinator  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeConfigOverrideRepo,
    FakeConnectionHealthRepo,
    FakeCredentialRepo,
    FakeManualTestAllowanceRepo,
    FakeNotificationRecordRepo,
    FakePendingTransferRepo,
    FakeProviderClient,
    FakeRefreshLogRepo,
    FakeSession,
    RecordingNotificationDispatcher,
    RecordingUploadDispatcher,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def credential_repo(session):
    return FakeCredentialRepo(session)


@pytest.fixture
def health_repo(session):
    return FakeConnectionHealthRepo(session)


@pytest.fixture
def transfer_repo(session):
    return FakePendingTransferRepo(session)


@pytest.fixture
def notification_repo(session):
    return FakeNotificationRecordRepo(session)


@pytest.fixture
def refresh_log_repo(session):
    return FakeRefreshLogRepo(session)


@pytest.fixture
def config_override_repo(session):
    return FakeConfigOverrideRepo(session)


@pytest.fixture
def config_service(config_override_repo):
    return ConfigService(config_override_repo)


@pytest.fixture
def classifier():
    return ErrorClassifier()


@pytest.fixture
def provider_client():
    return FakeProviderClient()


@pytest.fixture
def token_store(credential_repo):
    return TokenStore(credential_repo)


@pytest.fixture
def notification_dispatcher():
    return RecordingNotificationDispatcher()


@pytest.fixture
def throttler(notification_repo, credential_repo, config_service, notification_dispatcher):
    return NotificationThrottler(notification_repo, credential_repo, config_service, notification_dispatcher)


@pytest.fixture
def tracker(health_repo, credential_repo, config_service, classifier):
    return HealthStatusTracker(health_repo, credential_repo, config_service, classifier)


@pytest.fixture
def scheduler(
    token_store, credential_repo, refresh_log_repo, provider_client, tracker, throttler, classifier, config_service
):
    return RefreshScheduler(
        token_store,
        credential_repo,
        refresh_log_repo,
        provider_client,
        tracker,
        throttler,
        classifier,
        config_service,
        session_scope=contextlib.nullcontext,
    )


@pytest.fixture
def upload_dispatcher():
    return RecordingUploadDispatcher()


@pytest.fixture
def recovery(transfer_repo, tracker, throttler, classifier, config_service, upload_dispatcher):
    return UploadRecoveryCoordinator(transfer_repo, tracker, throttler, classifier, config_service, upload_dispatcher)


@pytest.fixture
def allowance_repo(session):
    return FakeManualTestAllowanceRepo(session)


@pytest.fixture
def rate_limiter(allowance_repo):
    return ManualTestRateLimiter(allowance_repo)


@pytest.fixture
def connection_tester(token_store, scheduler, provider_client, tracker, classifier, config_service, rate_limiter):
    return ConnectionTester(token_store, scheduler, provider_client, tracker, classifier, config_service, rate_limiter)


@pytest.fixture
def dashboard(health_repo, credential_repo, refresh_log_repo, recovery):
    return DashboardService(health_repo, credential_repo, refresh_log_repo, recovery)
