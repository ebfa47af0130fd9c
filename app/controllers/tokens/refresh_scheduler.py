import asyncio
import logging
import time
import uuid
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable

from fastapi_async_sqlalchemy import db
from sqlalchemy.exc import DBAPIError

from app.controllers.config.config_service import ConfigService, ConfigSnapshot
from app.controllers.errors.classifier import ClassifiedError, ErrorClassifier
from app.controllers.health.tracker import HealthStatusTracker
from app.controllers.notifications.throttler import NotificationThrottler
from app.controllers.providers.client import ProviderClient, TokenGrant
from app.controllers.tokens.token_store import TokenStore, can_be_refreshed, is_expired, is_expiring_soon
from app.exceptions import ConcurrencyError
from app.models import Credential, NotificationCondition, RefreshLog, RefreshOutcome, StorageProvider
from app.repos.credential import CredentialRepo
from app.repos.refresh_log import RefreshLogRepo
from settings import settings

SessionScope = Callable[[], AbstractAsyncContextManager[Any]]


def worker_session_scope() -> AbstractAsyncContextManager[Any]:
    """A fresh session whose loaded rows stay readable after commit."""
    return db(session_args={"expire_on_commit": False})


@dataclass
class TickReport:
    selected: int = 0
    refreshed: int = 0
    failed: int = 0
    lost_race: int = 0
    skipped: int = 0
    aborted: bool = False

    def count(self, outcome: RefreshOutcome | None) -> None:
        if outcome == RefreshOutcome.refreshed:
            self.refreshed += 1
        elif outcome == RefreshOutcome.failed:
            self.failed += 1
        elif outcome == RefreshOutcome.lost_race:
            self.lost_race += 1
        else:
            self.skipped += 1


@dataclass(frozen=True)
class _Claim:
    credential_id: int
    user_id: int
    provider: StorageProvider
    version: int
    refresh_token: str
    had_failures: bool


class RefreshScheduler:
    """Refreshes OAuth credentials before they expire.

    A refresh runs in three steps, each in its own session: claim a short lease on the credential,
    call the token endpoint with no transaction open, then write the result only if the credential
    has not changed since the claim. A worker that loses any of these races drops its result.
    """

    def __init__(
        self,
        token_store: TokenStore,
        credential_repo: CredentialRepo,
        refresh_log_repo: RefreshLogRepo,
        provider_client: ProviderClient,
        health_tracker: HealthStatusTracker,
        notification_throttler: NotificationThrottler,
        error_classifier: ErrorClassifier,
        config_service: ConfigService,
        session_scope: SessionScope = worker_session_scope,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._token_store = token_store
        self._credential_repo = credential_repo
        self._refresh_log_repo = refresh_log_repo
        self._provider_client = provider_client
        self._health_tracker = health_tracker
        self._notification_throttler = notification_throttler
        self._error_classifier = error_classifier
        self._config_service = config_service
        self._session_scope = session_scope

    async def run_tick(self, now: datetime | None = None) -> TickReport:
        now = now or datetime.now(UTC)
        report = TickReport()

        try:
            async with self._session_scope():
                config = await self._config_service.ensure_loaded()
                if not config.feature("proactive_refresh"):
                    self._logger.info("Proactive refresh disabled; skipping tick")
                    return report
                due = await self._credential_repo.get_due_for_refresh(
                    refresh_before=now + config.proactive_refresh_window,
                    now=now,
                    max_failures=config.max_retry_attempts,
                    limit=settings.worker.refresh_batch_size,
                )
                due_ids = [credential.id for credential in due]
        except (DBAPIError, OSError) as e:
            self._logger.error(f"Refresh tick skipped, persistence unavailable: {e}")
            report.aborted = True
            return report

        report.selected = len(due_ids)
        for credential_id in due_ids:
            try:
                outcome = await self.refresh_credential(credential_id, config, now)
            except (DBAPIError, OSError) as e:
                self._logger.error(f"Refresh tick aborted at credential {credential_id}, persistence unavailable: {e}")
                report.aborted = True
                break
            report.count(outcome)

        self._logger.info(
            f"Refresh tick done: selected={report.selected} refreshed={report.refreshed} failed={report.failed} "
            f"lost_race={report.lost_race} skipped={report.skipped} aborted={report.aborted}"
        )
        return report

    async def refresh_now(
        self, user_id: int, provider: StorageProvider, now: datetime | None = None
    ) -> RefreshOutcome | None:
        """Refresh one connection on demand if its token is expired or about to expire."""
        now = now or datetime.now(UTC)
        async with self._session_scope():
            config = await self._config_service.ensure_loaded()
            credential = await self._credential_repo.get_for_user(user_id, provider)
            if credential is None:
                return None
            credential_id = credential.id
        return await self.refresh_credential(credential_id, config, now)

    async def refresh_credential(
        self, credential_id: int, config: ConfigSnapshot, now: datetime | None = None
    ) -> RefreshOutcome | None:
        """Run one coordinated refresh. Returns None when the credential was not eligible."""
        now = now or datetime.now(UTC)
        operation_id = str(uuid.uuid4())
        started = time.monotonic()

        async with self._session_scope():
            credential = await self._credential_repo.get(credential_id)
            if credential is None:
                return None
            if not is_expired(credential, now) and not is_expiring_soon(
                credential, config.proactive_refresh_window, now
            ):
                await self._log(credential, operation_id, RefreshOutcome.already_valid, started)
                return RefreshOutcome.already_valid
            claim = await self._claim(credential, config, now)
            if not isinstance(claim, _Claim):
                return claim

        grant: TokenGrant | None = None
        error: ClassifiedError | None = None
        try:
            grant = await asyncio.wait_for(
                self._provider_client.refresh_access_token(claim.provider, claim.refresh_token),
                timeout=settings.oauth.request_timeout,
            )
        except Exception as e:
            error = self._error_classifier.describe(e, operation="token refresh")
            self._logger.warning(
                f"Token refresh for user {claim.user_id} ({claim.provider.value}) failed as {error.type.value}: "
                f"{error.message}"
            )

        async with self._session_scope():
            return await self._apply(claim, grant, error, config, operation_id, started, now)

    async def _claim(
        self, credential: Credential, config: ConfigSnapshot, now: datetime
    ) -> _Claim | RefreshOutcome | None:
        if not can_be_refreshed(credential, config.max_retry_attempts):
            return None
        if credential.refresh_locked_until is not None and credential.refresh_locked_until > now:
            self._logger.debug(f"Credential {credential.id} is being refreshed by another worker")
            return None

        refresh_token = self._token_store.refresh_token(credential)
        if refresh_token is None:
            return None

        credential.refresh_locked_until = now + config.lock_ttl
        credential.last_refresh_attempt_at = now
        if not await self._credential_repo.try_commit():
            self._logger.info(f"Credential {credential.id} was claimed by another worker")
            return RefreshOutcome.lost_race

        return _Claim(
            credential_id=credential.id,
            user_id=credential.user_id,
            provider=credential.provider,
            version=credential.version,
            refresh_token=refresh_token,
            had_failures=credential.refresh_failure_count > 0,
        )

    async def _apply(
        self,
        claim: _Claim,
        grant: TokenGrant | None,
        error: ClassifiedError | None,
        config: ConfigSnapshot,
        operation_id: str,
        started: float,
        now: datetime,
    ) -> RefreshOutcome:
        credential = await self._credential_repo.get(claim.credential_id)
        if credential is None or credential.version != claim.version:
            self._logger.info(f"Credential {claim.credential_id} changed during refresh; discarding result")
            return RefreshOutcome.lost_race

        if grant is not None:
            self._token_store.mark_refreshed(credential, grant, config, now)
        else:
            assert error is not None
            self._token_store.mark_refresh_failed(credential, error.message, error.type, config, now)

        if not await self._credential_repo.try_commit():
            self._logger.info(f"Credential {claim.credential_id} changed during refresh; discarding result")
            return RefreshOutcome.lost_race

        outcome = RefreshOutcome.refreshed if grant is not None else RefreshOutcome.failed
        await self._log(credential, operation_id, outcome, started, error)

        try:
            if grant is not None:
                await self._after_success(claim, now)
            else:
                assert error is not None
                await self._after_failure(claim, credential, error, now)
        except ConcurrencyError as e:
            self._logger.warning(f"Health update after refresh of credential {claim.credential_id} gave up: {e}")
        return outcome

    async def _after_success(self, claim: _Claim, now: datetime) -> None:
        self._logger.info(f"Refreshed token for user {claim.user_id} ({claim.provider.value})")
        await self._health_tracker.record_refresh_success(claim.user_id, claim.provider, now)
        if claim.had_failures:
            await self._notification_throttler.notify(
                claim.user_id, claim.provider, NotificationCondition.connection_restored, now=now
            )

    async def _after_failure(self, claim: _Claim, credential: Credential, error: ClassifiedError, now: datetime) -> None:
        await self._health_tracker.record_refresh_failure(claim.user_id, claim.provider, error, now)

        if credential.requires_reconnection:
            condition = NotificationCondition.reconnection_required
        elif credential.refresh_failure_count >= settings.health.refresh_failure_threshold:
            condition = NotificationCondition.refresh_failed
        else:
            return

        context = {
            "error_type": error.type.value,
            "message": self._error_classifier.render_message(error.type, claim.provider, error.context),
            "failure_count": credential.refresh_failure_count,
        }
        await self._notification_throttler.notify(claim.user_id, claim.provider, condition, context, now)

    async def _log(
        self,
        credential: Credential,
        operation_id: str,
        outcome: RefreshOutcome,
        started: float,
        error: ClassifiedError | None = None,
    ) -> None:
        entry = RefreshLog(
            user_id=credential.user_id,
            provider=credential.provider,
            operation_id=operation_id,
            outcome=outcome,
            error_type=error.type if error else None,
            message=error.message if error else None,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        await self._refresh_log_repo.add(entry, commit=True)
