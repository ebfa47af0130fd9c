import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable

from app.controllers.config.config_service import ConfigService
from app.controllers.errors.classifier import ClassifiedError, ErrorClassifier
from app.controllers.health.status import (
    HealthThresholds,
    determine_consolidated_status,
    raw_status_for,
    status_message,
)
from app.exceptions import ConcurrencyError
from app.models import (
    CloudStorageErrorType,
    ConnectionHealth,
    ConsolidatedStatus,
    Credential,
    HealthStatus,
    StorageProvider,
)
from app.repos.connection_health import ConnectionHealthRepo
from app.repos.credential import CredentialRepo
from settings import settings

HealthMutation = Callable[[ConnectionHealth, Credential | None], None]


@dataclass(frozen=True)
class HealthSummary:
    user_id: int
    provider: StorageProvider
    status: HealthStatus
    consolidated_status: ConsolidatedStatus
    message: str
    consecutive_failures: int
    last_successful_operation_at: datetime | None
    last_error_type: CloudStorageErrorType | None
    last_error_message: str | None
    token_expires_at: datetime | None
    requires_reconnection: bool
    last_validation_result: bool | None
    last_validated_at: datetime | None


class HealthStatusTracker:
    """Keeps ``ConnectionHealth`` rows up to date.

    Every write re-derives the consolidated status from the row and the credential. Writes are
    versioned; a write that lost against a concurrent one is rolled back, re-read and reapplied so
    an older computation never overwrites a newer state.
    """

    def __init__(
        self,
        connection_health_repo: ConnectionHealthRepo,
        credential_repo: CredentialRepo,
        config_service: ConfigService,
        error_classifier: ErrorClassifier,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._connection_health_repo = connection_health_repo
        self._credential_repo = credential_repo
        self._config_service = config_service
        self._error_classifier = error_classifier

    def thresholds(self) -> HealthThresholds:
        return HealthThresholds.from_settings(self._config_service.snapshot().max_retry_attempts)

    async def get_consolidated_status(
        self, user_id: int, provider: StorageProvider, now: datetime | None = None
    ) -> ConsolidatedStatus:
        now = now or datetime.now(UTC)
        credential = await self._credential_repo.get_for_user(user_id, provider)
        health = await self._connection_health_repo.get_for_user(user_id, provider)
        return determine_consolidated_status(credential, health, now, self.thresholds())

    async def get_health_summary(
        self, user_id: int, provider: StorageProvider, now: datetime | None = None
    ) -> HealthSummary:
        now = now or datetime.now(UTC)
        credential = await self._credential_repo.get_for_user(user_id, provider)
        health = await self._connection_health_repo.get_for_user(user_id, provider)
        consolidated = determine_consolidated_status(credential, health, now, self.thresholds())

        return HealthSummary(
            user_id=user_id,
            provider=provider,
            status=raw_status_for(consolidated),
            consolidated_status=consolidated,
            message=self.message_for(consolidated, provider, health),
            consecutive_failures=health.consecutive_failures if health else 0,
            last_successful_operation_at=health.last_successful_operation_at if health else None,
            last_error_type=health.last_error_type if health else None,
            last_error_message=health.last_error_message if health else None,
            token_expires_at=credential.expires_at if credential else None,
            requires_reconnection=bool(
                (credential and credential.requires_reconnection) or (health and health.requires_reconnection)
            ),
            last_validation_result=health.last_validation_result if health else None,
            last_validated_at=health.last_validated_at if health else None,
        )

    def message_for(
        self, consolidated: ConsolidatedStatus, provider: StorageProvider, health: ConnectionHealth | None
    ) -> str:
        """User-facing message for ``consolidated``.

        The last error's template is only used when it agrees with the status: a connection that
        needs reconnecting always asks the user to reconnect, even if the error that got it there
        was a recoverable one.
        """
        error_type = health.last_error_type if health is not None else None
        if consolidated == ConsolidatedStatus.healthy or error_type is None:
            return status_message(consolidated, provider)
        if consolidated == ConsolidatedStatus.authentication_required and not error_type.requires_intervention:
            return status_message(consolidated, provider)
        return self._error_classifier.render_message(error_type, provider, health.last_error_context)

    async def recompute(self, user_id: int, provider: StorageProvider, now: datetime | None = None) -> ConnectionHealth:
        return await self._write(user_id, provider, lambda health, credential: None, now)

    async def record_refresh_success(
        self, user_id: int, provider: StorageProvider, now: datetime | None = None
    ) -> ConnectionHealth:
        now = now or datetime.now(UTC)

        def mutate(health: ConnectionHealth, credential: Credential | None) -> None:
            health.last_token_refresh_attempt_at = now
            health.token_refresh_failures = 0
            self._mark_success(health, now)

        return await self._write(user_id, provider, mutate, now)

    async def record_refresh_failure(
        self, user_id: int, provider: StorageProvider, error: ClassifiedError, now: datetime | None = None
    ) -> ConnectionHealth:
        now = now or datetime.now(UTC)

        def mutate(health: ConnectionHealth, credential: Credential | None) -> None:
            health.last_token_refresh_attempt_at = now
            health.token_refresh_failures += 1
            self._mark_failure(health, error, now)

        return await self._write(user_id, provider, mutate, now)

    async def record_operation_success(
        self, user_id: int, provider: StorageProvider, now: datetime | None = None
    ) -> ConnectionHealth:
        now = now or datetime.now(UTC)
        return await self._write(
            user_id, provider, lambda health, credential: self._mark_success(health, now), now
        )

    async def record_operation_failure(
        self, user_id: int, provider: StorageProvider, error: ClassifiedError, now: datetime | None = None
    ) -> ConnectionHealth:
        now = now or datetime.now(UTC)

        def mutate(health: ConnectionHealth, credential: Credential | None) -> None:
            self._mark_failure(health, error, now)
            if error.type.requires_intervention:
                health.requires_reconnection = True

        return await self._write(user_id, provider, mutate, now)

    async def record_validation_result(
        self,
        user_id: int,
        provider: StorageProvider,
        valid: bool,
        error: ClassifiedError | None = None,
        now: datetime | None = None,
    ) -> ConnectionHealth:
        now = now or datetime.now(UTC)

        def mutate(health: ConnectionHealth, credential: Credential | None) -> None:
            health.last_validation_result = valid
            health.last_validated_at = now
            if valid:
                self._mark_success(health, now)
            elif error is not None:
                self._mark_failure(health, error, now)
                if error.type.requires_intervention:
                    health.requires_reconnection = True

        return await self._write(user_id, provider, mutate, now)

    async def mark_disconnected(
        self, user_id: int, provider: StorageProvider, now: datetime | None = None
    ) -> ConnectionHealth:
        def mutate(health: ConnectionHealth, credential: Credential | None) -> None:
            health.consecutive_failures = 0
            health.token_refresh_failures = 0
            health.requires_reconnection = False
            health.last_validation_result = None
            health.clear_error()

        return await self._write(user_id, provider, mutate, now)

    async def backfill(self, provider: StorageProvider | None = None, batch_size: int = 100) -> int:
        """Recompute the stored status of every connection; returns how many rows changed.

        Idempotent: running it twice over unchanged data changes nothing the second time.
        """
        providers = [provider] if provider else list(StorageProvider)
        changed = 0
        for current_provider in providers:
            after_id = 0
            while True:
                credentials = await self._credential_repo.list_for_provider(current_provider, after_id, batch_size)
                if not credentials:
                    break
                for credential in credentials:
                    after_id = credential.id
                    before = await self._connection_health_repo.get_for_user(credential.user_id, current_provider)
                    before_status = before.consolidated_status if before else None
                    health = await self.recompute(credential.user_id, current_provider)
                    if health.consolidated_status != before_status:
                        changed += 1
            self._logger.info(f"Health backfill for {current_provider.value} complete; {changed} statuses changed")
        return changed

    async def _write(
        self, user_id: int, provider: StorageProvider, mutate: HealthMutation, now: datetime | None
    ) -> ConnectionHealth:
        now = now or datetime.now(UTC)
        thresholds = self.thresholds()
        attempts = settings.health.write_retry_attempts

        for attempt in range(1, attempts + 1):
            health = await self._connection_health_repo.get_or_create(user_id, provider)
            credential = await self._credential_repo.get_for_user(user_id, provider)
            previous = health.consolidated_status

            mutate(health, credential)
            health.token_expires_at = credential.expires_at if credential else None
            consolidated = determine_consolidated_status(credential, health, now, thresholds)
            health.consolidated_status = consolidated
            health.status = raw_status_for(consolidated)

            if await self._connection_health_repo.try_commit():
                if previous != consolidated:
                    self._logger.info(
                        f"Connection health for user {user_id} ({provider.value}) changed "
                        f"from {previous.value} to {consolidated.value}"
                    )
                return health

            self._logger.info(
                f"Concurrent health update for user {user_id} ({provider.value}); retrying ({attempt}/{attempts})"
            )

        raise ConcurrencyError(
            f"Could not update connection health for user {user_id} after {attempts} attempts",
            provider=provider.value,
        )

    @staticmethod
    def _mark_success(health: ConnectionHealth, now: datetime) -> None:
        health.consecutive_failures = 0
        health.last_successful_operation_at = now
        health.requires_reconnection = False
        health.clear_error()

    @staticmethod
    def _mark_failure(health: ConnectionHealth, error: ClassifiedError, now: datetime) -> None:
        health.consecutive_failures += 1
        health.last_error_type = error.type
        health.last_error_message = error.message
        health.last_error_context = error.context
        health.last_error_at = now
