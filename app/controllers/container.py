from typing import cast

from dependency_injector import containers, providers

from app.controllers.config.config_service import ConfigService
from app.controllers.errors.classifier import ErrorClassifier
from app.controllers.health.connection_tester import ConnectionTester, ManualTestRateLimiter
from app.controllers.health.dashboard import DashboardService
from app.controllers.health.tracker import HealthStatusTracker
from app.controllers.notifications.dispatcher import LoggingNotificationDispatcher
from app.controllers.notifications.throttler import NotificationThrottler
from app.controllers.providers.client import ProviderClient
from app.controllers.tokens.refresh_scheduler import RefreshScheduler
from app.controllers.tokens.token_store import TokenStore
from app.controllers.uploads.dispatcher import LoggingUploadDispatcher
from app.controllers.uploads.recovery import UploadRecoveryCoordinator
from app.repos.container import RepoContainer


class ControllerContainer(containers.DeclarativeContainer):
    repos: RepoContainer = cast(RepoContainer, providers.DependenciesContainer())

    error_classifier = providers.Singleton(ErrorClassifier)
    config_service = providers.Singleton(ConfigService, config_override_repo=repos.config_override)
    provider_client = providers.Singleton(ProviderClient)
    token_store = providers.Singleton(TokenStore, credential_repo=repos.credential)

    notification_dispatcher = providers.Singleton(LoggingNotificationDispatcher)
    notification_throttler = providers.Singleton(
        NotificationThrottler,
        notification_record_repo=repos.notification_record,
        credential_repo=repos.credential,
        config_service=config_service,
        dispatcher=notification_dispatcher,
    )

    health_tracker = providers.Singleton(
        HealthStatusTracker,
        connection_health_repo=repos.connection_health,
        credential_repo=repos.credential,
        config_service=config_service,
        error_classifier=error_classifier,
    )

    refresh_scheduler = providers.Singleton(
        RefreshScheduler,
        token_store=token_store,
        credential_repo=repos.credential,
        refresh_log_repo=repos.refresh_log,
        provider_client=provider_client,
        health_tracker=health_tracker,
        notification_throttler=notification_throttler,
        error_classifier=error_classifier,
        config_service=config_service,
    )

    upload_dispatcher = providers.Singleton(LoggingUploadDispatcher)
    upload_recovery = providers.Singleton(
        UploadRecoveryCoordinator,
        pending_transfer_repo=repos.pending_transfer,
        health_tracker=health_tracker,
        notification_throttler=notification_throttler,
        error_classifier=error_classifier,
        config_service=config_service,
        dispatcher=upload_dispatcher,
    )

    manual_test_rate_limiter = providers.Singleton(
        ManualTestRateLimiter, manual_test_allowance_repo=repos.manual_test_allowance
    )
    connection_tester = providers.Singleton(
        ConnectionTester,
        token_store=token_store,
        refresh_scheduler=refresh_scheduler,
        provider_client=provider_client,
        health_tracker=health_tracker,
        error_classifier=error_classifier,
        config_service=config_service,
        rate_limiter=manual_test_rate_limiter,
    )

    dashboard = providers.Singleton(
        DashboardService,
        connection_health_repo=repos.connection_health,
        credential_repo=repos.credential,
        refresh_log_repo=repos.refresh_log,
        upload_recovery=upload_recovery,
    )
