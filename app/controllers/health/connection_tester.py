import asyncio
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import AsyncIterator, Callable

from sqlalchemy.exc import DBAPIError

from app.controllers.config.config_service import ConfigService
from app.controllers.errors.classifier import ErrorClassifier
from app.controllers.health.tracker import HealthStatusTracker
from app.controllers.providers.client import ProviderClient
from app.controllers.tokens.refresh_scheduler import RefreshScheduler
from app.controllers.tokens.token_store import TokenStore
from app.exceptions import RateLimitExceededError
from app.models import ConsolidatedStatus, ManualTestAllowance, RefreshOutcome, StorageProvider
from app.repos.manual_test_allowance import ManualTestAllowanceRepo
from settings import settings

HOUR_SECONDS = 3600
PRUNE_INTERVAL = timedelta(minutes=10)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ManualTestRateLimiter:
    """Per-identity limit on manual connection tests, shared by every API process.

    The allowance decays linearly, so ``max_per_hour`` tests are possible in any hour. On top of
    that, an identity waits ``cooldown_seconds`` after each finished test and can have only one
    test running at a time. The state lives in ``manual_test_allowances`` and a test is admitted
    with a versioned write, so two processes racing on one identity admit it once.
    """

    def __init__(
        self, manual_test_allowance_repo: ManualTestAllowanceRepo, clock: Callable[[], datetime] = _utcnow
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._manual_test_allowance_repo = manual_test_allowance_repo
        self._clock = clock
        self._lock = asyncio.Lock()
        self._pruned_at: datetime | None = None

    @asynccontextmanager
    async def slot(self, identity: str, max_per_hour: int, cooldown_seconds: int) -> AsyncIterator[None]:
        await self.acquire(identity, max_per_hour, cooldown_seconds)
        try:
            yield
        finally:
            await self.release(identity)

    async def acquire(self, identity: str, max_per_hour: int, cooldown_seconds: int) -> None:
        async with self._lock:
            now = self._clock()
            await self._prune_if_due(now)

            allowance = await self._manual_test_allowance_repo.get_or_create(identity, now)
            if allowance.in_flight_until is not None and allowance.in_flight_until > now:
                raise RateLimitExceededError("A connection test is already running", retry_after=cooldown_seconds)

            if allowance.last_completed_at is not None:
                remaining = cooldown_seconds - (now - allowance.last_completed_at).total_seconds()
                if remaining > 0:
                    raise RateLimitExceededError(
                        "Please wait before testing the connection again", retry_after=math.ceil(remaining)
                    )

            used = self._decayed(allowance, max_per_hour, now)
            if used + 1 > max_per_hour:
                rate = max_per_hour / HOUR_SECONDS
                retry_after = math.ceil((used + 1 - max_per_hour) / rate)
                raise RateLimitExceededError("Too many connection tests", retry_after=retry_after)

            allowance.used = used + 1
            allowance.decayed_at = now
            allowance.in_flight_until = now + timedelta(seconds=settings.health.manual_test_in_flight_seconds)
            if not await self._manual_test_allowance_repo.try_commit():
                raise RateLimitExceededError("A connection test is already running", retry_after=cooldown_seconds)

    async def release(self, identity: str) -> None:
        async with self._lock:
            try:
                allowance = await self._manual_test_allowance_repo.get_for(identity)
                if allowance is None:
                    return
                allowance.in_flight_until = None
                allowance.last_completed_at = self._clock()
                if not await self._manual_test_allowance_repo.try_commit():
                    self._logger.warning(f"Manual test slot for {identity} changed concurrently; left to expire")
            except (DBAPIError, OSError) as e:
                self._logger.error(f"Could not release manual test slot for {identity}: {e}")

    async def _prune_if_due(self, now: datetime) -> None:
        """Drop allowances idle for an hour; by then they have fully decayed."""
        if self._pruned_at is not None and now - self._pruned_at < PRUNE_INTERVAL:
            return
        self._pruned_at = now
        removed = await self._manual_test_allowance_repo.delete_idle(now - timedelta(seconds=HOUR_SECONDS), now)
        await self._manual_test_allowance_repo.commit()
        if removed:
            self._logger.info(f"Pruned {removed} idle manual test allowances")

    @staticmethod
    def _decayed(allowance: ManualTestAllowance, max_per_hour: int, now: datetime) -> float:
        elapsed = (now - allowance.decayed_at).total_seconds()
        return max(0.0, allowance.used - elapsed * max_per_hour / HOUR_SECONDS)


@dataclass(frozen=True)
class ConnectionTestResult:
    user_id: int
    provider: StorageProvider
    consolidated_status: ConsolidatedStatus
    message: str
    refreshed: bool
    validated: bool | None
    tested_at: datetime


class ConnectionTester:
    """User-triggered check of a connection: refresh the token if needed, then call the provider API with it."""

    def __init__(
        self,
        token_store: TokenStore,
        refresh_scheduler: RefreshScheduler,
        provider_client: ProviderClient,
        health_tracker: HealthStatusTracker,
        error_classifier: ErrorClassifier,
        config_service: ConfigService,
        rate_limiter: ManualTestRateLimiter,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._token_store = token_store
        self._refresh_scheduler = refresh_scheduler
        self._provider_client = provider_client
        self._health_tracker = health_tracker
        self._error_classifier = error_classifier
        self._config_service = config_service
        self._rate_limiter = rate_limiter

    @staticmethod
    def identity_for(user_id: int, provider: StorageProvider, client_ip: str | None, ip_based: bool) -> str:
        if ip_based and client_ip:
            return f"{provider.value}:{user_id}:{client_ip}"
        return f"{provider.value}:{user_id}"

    async def test_connection(
        self, user_id: int, provider: StorageProvider, identity: str, now: datetime | None = None
    ) -> ConnectionTestResult:
        now = now or datetime.now(UTC)
        config = await self._config_service.ensure_loaded()

        async with self._rate_limiter.slot(
            identity, config.max_manual_tests_per_hour, settings.health.manual_test_cooldown_seconds
        ):
            self._logger.info(f"Manual connection test for user {user_id} ({provider.value})")

            outcome = await self._refresh_scheduler.refresh_now(user_id, provider, now)
            refreshed = outcome == RefreshOutcome.refreshed

            validated: bool | None = None
            credential = await self._token_store.get(user_id, provider)
            access_token = self._token_store.access_token(credential) if credential else None
            if access_token and credential is not None and credential.is_connected and config.feature("live_validation"):
                validated = await self._validate(user_id, provider, access_token, now)
            elif credential is not None:
                await self._health_tracker.recompute(user_id, provider, now)

            summary = await self._health_tracker.get_health_summary(user_id, provider, now)

        return ConnectionTestResult(
            user_id=user_id,
            provider=provider,
            consolidated_status=summary.consolidated_status,
            message=summary.message,
            refreshed=refreshed,
            validated=validated,
            tested_at=now,
        )

    async def _validate(self, user_id: int, provider: StorageProvider, access_token: str, now: datetime) -> bool:
        try:
            await asyncio.wait_for(
                self._provider_client.validate_access(provider, access_token),
                timeout=settings.oauth.request_timeout,
            )
        except Exception as e:
            error = self._error_classifier.describe(e, operation="connection test")
            self._logger.warning(
                f"Connection test for user {user_id} ({provider.value}) failed as {error.type.value}: {error.message}"
            )
            await self._health_tracker.record_validation_result(user_id, provider, False, error, now)
            return False

        await self._health_tracker.record_validation_result(user_id, provider, True, now=now)
        return True
