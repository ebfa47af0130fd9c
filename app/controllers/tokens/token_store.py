import logging
from datetime import datetime, timedelta

from app.controllers.config.config_service import ConfigSnapshot
from app.controllers.providers.client import TokenGrant
from app.models import CloudStorageErrorType, Credential, StorageProvider
from app.repos.credential import CredentialRepo
from app.utils.crypto import TokenCipher

MAX_REFRESH_BACKOFF = timedelta(minutes=5)


def is_expired(credential: Credential, now: datetime) -> bool:
    if credential.access_token is None:
        return True
    if credential.expires_at is None:
        return False
    return credential.expires_at <= now


def is_expiring_soon(credential: Credential, window: timedelta, now: datetime) -> bool:
    """True when the access token expires within ``window``. A credential without expiry never expires soon."""
    if credential.expires_at is None:
        return False
    return credential.expires_at - now <= window


def can_be_refreshed(credential: Credential, max_retry_attempts: int) -> bool:
    return (
        credential.refresh_token is not None
        and not credential.requires_reconnection
        and credential.refresh_failure_count < max_retry_attempts
    )


def has_valid_connection(credential: Credential, max_retry_attempts: int, now: datetime) -> bool:
    return not is_expired(credential, now) or can_be_refreshed(credential, max_retry_attempts)


def refresh_backoff(failure_count: int, base_delay_seconds: int) -> timedelta:
    delay = timedelta(seconds=base_delay_seconds * 2 ** max(failure_count - 1, 0))
    return min(delay, MAX_REFRESH_BACKOFF)


class TokenStore:
    """Reads and mutates the OAuth credential of a (user, provider) connection.

    The ``mark_*`` methods only change the loaded row; callers persist it through the repo so they
    can decide which transaction the change belongs to.
    """

    def __init__(self, credential_repo: CredentialRepo) -> None:
        self._logger = logging.getLogger(__name__)
        self._credential_repo = credential_repo

    async def get(self, user_id: int, provider: StorageProvider) -> Credential | None:
        return await self._credential_repo.get_for_user(user_id, provider)

    async def save(self, credential: Credential) -> bool:
        return await self._credential_repo.try_commit()

    async def connect(
        self, user_id: int, provider: StorageProvider, grant: TokenGrant, config: ConfigSnapshot, now: datetime
    ) -> Credential:
        """Store the result of a fresh OAuth authorization."""
        credential = await self._credential_repo.get_for_user(user_id, provider)
        if credential is None:
            credential = self._new_credential(user_id, provider)
            await self._credential_repo.add(credential)

        self._apply_grant(credential, grant, config, now)
        credential.connected_at = now
        credential.disconnected_at = None
        credential.notification_failure_count = 0
        await self._credential_repo.commit()

        self._logger.info(f"Connected {provider.value} for user {user_id}; token expires at {credential.expires_at}")
        return credential

    async def disconnect(self, user_id: int, provider: StorageProvider, now: datetime) -> Credential | None:
        """Forget the tokens but keep the record so history and health survive."""
        credential = await self._credential_repo.get_for_user(user_id, provider)
        if credential is None:
            return None

        credential.access_token = None
        credential.refresh_token = None
        credential.expires_at = None
        credential.proactive_refresh_at = None
        credential.refresh_locked_until = None
        credential.refresh_failure_count = 0
        credential.health_check_failures = 0
        credential.requires_reconnection = False
        credential.disconnected_at = now
        await self._credential_repo.commit()

        self._logger.info(f"Disconnected {provider.value} for user {user_id}")
        return credential

    def mark_refreshed(self, credential: Credential, grant: TokenGrant, config: ConfigSnapshot, now: datetime) -> None:
        self._apply_grant(credential, grant, config, now)
        credential.last_refresh_attempt_at = now

    def mark_refresh_failed(
        self,
        credential: Credential,
        reason: str,
        error_type: CloudStorageErrorType,
        config: ConfigSnapshot,
        now: datetime,
    ) -> None:
        credential.refresh_failure_count += 1
        credential.last_refresh_attempt_at = now
        credential.last_refresh_error = reason
        credential.refresh_locked_until = None
        credential.proactive_refresh_at = now + refresh_backoff(
            credential.refresh_failure_count, config.retry_base_delay_seconds
        )

        if error_type.requires_intervention or credential.refresh_failure_count >= config.max_retry_attempts:
            if not credential.requires_reconnection:
                self._logger.warning(
                    f"Credential {credential.id} for user {credential.user_id} now requires reconnection "
                    f"after {credential.refresh_failure_count} failures ({error_type.value})"
                )
            credential.requires_reconnection = True

    def access_token(self, credential: Credential) -> str | None:
        return TokenCipher.decrypt(credential.access_token)

    def refresh_token(self, credential: Credential) -> str | None:
        return TokenCipher.decrypt(credential.refresh_token)

    @staticmethod
    def is_expired(credential: Credential, now: datetime) -> bool:
        return is_expired(credential, now)

    @staticmethod
    def is_expiring_soon(credential: Credential, window: timedelta, now: datetime) -> bool:
        return is_expiring_soon(credential, window, now)

    @staticmethod
    def can_be_refreshed(credential: Credential, config: ConfigSnapshot) -> bool:
        return can_be_refreshed(credential, config.max_retry_attempts)

    @staticmethod
    def has_valid_connection(credential: Credential, config: ConfigSnapshot, now: datetime) -> bool:
        return has_valid_connection(credential, config.max_retry_attempts, now)

    @staticmethod
    def _apply_grant(credential: Credential, grant: TokenGrant, config: ConfigSnapshot, now: datetime) -> None:
        credential.access_token = TokenCipher.encrypt(grant.access_token)
        # Providers may omit the refresh token on refresh; the previous one stays valid.
        if grant.refresh_token:
            credential.refresh_token = TokenCipher.encrypt(grant.refresh_token)
        credential.token_type = grant.token_type
        if grant.scopes:
            credential.scopes = list(grant.scopes)
        credential.expires_at = now + timedelta(seconds=grant.expires_in)
        credential.refresh_failure_count = 0
        credential.health_check_failures = 0
        credential.last_successful_refresh_at = now
        credential.last_refresh_error = None
        credential.requires_reconnection = False
        credential.refresh_locked_until = None
        credential.proactive_refresh_at = None

    @staticmethod
    def _new_credential(user_id: int, provider: StorageProvider) -> Credential:
        return Credential(
            user_id=user_id,
            provider=provider,
            access_token=None,
            refresh_token=None,
            token_type="Bearer",
            expires_at=None,
            scopes=[],
            last_refresh_attempt_at=None,
            refresh_failure_count=0,
            last_successful_refresh_at=None,
            last_refresh_error=None,
            proactive_refresh_at=None,
            refresh_locked_until=None,
            health_check_failures=0,
            requires_reconnection=False,
            last_notification_at=None,
            notification_failure_count=0,
            connected_at=None,
            disconnected_at=None,
        )
