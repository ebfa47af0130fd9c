"""In-memory stand-ins for the repositories, the provider client and the delivery boundaries.

All fake repos commit through one ``FakeSession`` the way the real repos share the ambient
SQLAlchemy session: a commit bumps ``version`` on every changed versioned row, a rollback puts
every row back to its last committed state.
"""

import asyncio
import copy
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

from app.controllers.providers.client import TokenGrant
from app.models import (
    ConfigOverride,
    ConnectionHealth,
    ConsolidatedStatus,
    Credential,
    ManualTestAllowance,
    NotificationCondition,
    NotificationRecord,
    PendingTransfer,
    RefreshLog,
    RefreshOutcome,
    StorageProvider,
    TransferStatus,
)
from app.repos.refresh_log import RefreshStats
from app.utils.crypto import TokenCipher

GOOGLE = StorageProvider.google_drive


class FakeSession:
    def __init__(self) -> None:
        self.repos: list["FakeRepo"] = []
        self.fail_commits = 0
        self.unavailable = False
        self.commits = 0
        self.rollbacks = 0

    def check(self) -> None:
        if self.unavailable:
            raise ConnectionRefusedError("could not connect to server: Connection refused")

    async def commit(self) -> None:
        self.check()
        for repo in self.repos:
            repo.flush_versions()
        self.commits += 1

    async def try_commit(self) -> bool:
        self.check()
        if self.fail_commits > 0:
            self.fail_commits -= 1
            await self.rollback()
            return False
        await self.commit()
        return True

    async def rollback(self) -> None:
        for repo in self.repos:
            repo.restore()
        self.rollbacks += 1


def _state(row: Any) -> dict[str, Any]:
    return copy.deepcopy({column.name: getattr(row, column.name) for column in row.__table__.columns})


class FakeRepo:
    def __init__(self, session: FakeSession) -> None:
        self.session = session
        self.rows: dict[int, Any] = {}
        self._committed: dict[int, dict[str, Any]] = {}
        self._next_id = 1
        session.repos.append(self)

    def seed(self, row: Any) -> Any:
        """Store ``row`` as if it had been committed earlier."""
        if row.id is None:
            row.id = self._next_id
        self._next_id = max(self._next_id, row.id) + 1
        if hasattr(row, "version") and row.version is None:
            row.version = 1
        if hasattr(row, "created_at") and row.created_at is None:
            row.created_at = datetime.now(UTC)
        self.rows[row.id] = row
        self._committed[row.id] = _state(row)
        return row

    def concurrent_update(self, row_id: int, **changes: Any) -> None:
        """Apply a write committed by another worker."""
        row = self.rows[row_id]
        for name, value in changes.items():
            setattr(row, name, value)
        row.version += 1
        self._committed[row_id] = _state(row)

    def flush_versions(self) -> None:
        for row_id, row in self.rows.items():
            current = _state(row)
            if current != self._committed.get(row_id):
                if hasattr(row, "version"):
                    row.version += 1
                self._committed[row_id] = _state(row)

    def restore(self) -> None:
        for row_id, committed in self._committed.items():
            row = self.rows[row_id]
            for name, value in copy.deepcopy(committed).items():
                setattr(row, name, value)

    async def get(self, id: Any) -> Any:
        self.session.check()
        return self.rows.get(id)

    async def add(self, row: Any, commit: bool = False) -> None:
        self.session.check()
        if row.id is None:
            row.id = self._next_id
            self._next_id += 1
        if hasattr(row, "version") and row.version is None:
            row.version = 1
        if hasattr(row, "created_at") and row.created_at is None:
            row.created_at = datetime.now(UTC)
        self.rows[row.id] = row
        self._committed[row.id] = _state(row)
        if commit:
            await self.commit()

    async def commit(self) -> None:
        await self.session.commit()

    async def try_commit(self) -> bool:
        return await self.session.try_commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def flush(self) -> None:
        self.session.check()


class FakeCredentialRepo(FakeRepo):
    async def get_for_user(self, user_id: int, provider: StorageProvider) -> Credential | None:
        self.session.check()
        for credential in self.rows.values():
            if credential.user_id == user_id and credential.provider == provider:
                return credential
        return None

    async def get_due_for_refresh(
        self, refresh_before: datetime, now: datetime, max_failures: int, limit: int
    ) -> list[Credential]:
        self.session.check()
        due = [
            credential
            for credential in self.rows.values()
            if credential.refresh_token is not None
            and not credential.requires_reconnection
            and credential.refresh_failure_count < max_failures
            and credential.expires_at is not None
            and credential.expires_at <= refresh_before
            and (credential.refresh_locked_until is None or credential.refresh_locked_until <= now)
            and (credential.proactive_refresh_at is None or credential.proactive_refresh_at <= now)
        ]
        return sorted(due, key=lambda credential: credential.expires_at)[:limit]

    async def count_expiring_between(self, provider: StorageProvider, start: datetime, end: datetime) -> int:
        self.session.check()
        return sum(
            1
            for credential in self.rows.values()
            if credential.provider == provider
            and credential.refresh_token is not None
            and credential.expires_at is not None
            and start < credential.expires_at <= end
        )

    async def count_requiring_reconnection(self, provider: StorageProvider) -> int:
        self.session.check()
        return sum(
            1 for credential in self.rows.values() if credential.provider == provider and credential.requires_reconnection
        )

    async def list_for_provider(self, provider: StorageProvider, after_id: int, limit: int) -> list[Credential]:
        self.session.check()
        rows = [row for row_id, row in sorted(self.rows.items()) if row.provider == provider and row_id > after_id]
        return rows[:limit]

    async def record_notification_state(
        self,
        user_id: int,
        provider: StorageProvider,
        failure_count: int,
        last_notification_at: datetime | None = None,
    ) -> None:
        """Unversioned write: updates the committed state directly so ``version`` stays put."""
        credential = await self.get_for_user(user_id, provider)
        if credential is None:
            return
        changes: dict[str, Any] = {"notification_failure_count": failure_count}
        if last_notification_at is not None:
            changes["last_notification_at"] = last_notification_at
        for name, value in changes.items():
            setattr(credential, name, value)
            self._committed[credential.id][name] = value


class FakeConnectionHealthRepo(FakeRepo):
    async def get_for_user(self, user_id: int, provider: StorageProvider) -> ConnectionHealth | None:
        self.session.check()
        for health in self.rows.values():
            if health.user_id == user_id and health.provider == provider:
                return health
        return None

    async def get_or_create(self, user_id: int, provider: StorageProvider) -> ConnectionHealth:
        health = await self.get_for_user(user_id, provider)
        if health is None:
            health = self.seed(ConnectionHealth.new(user_id, provider))
        return health

    async def count_by_consolidated_status(self, provider: StorageProvider) -> dict[ConsolidatedStatus, int]:
        self.session.check()
        counts: dict[ConsolidatedStatus, int] = {}
        for health in self.rows.values():
            if health.provider == provider:
                counts[health.consolidated_status] = counts.get(health.consolidated_status, 0) + 1
        return counts


class FakePendingTransferRepo(FakeRepo):
    async def get_active(self, limit: int, after_id: int = 0) -> list[PendingTransfer]:
        self.session.check()
        rows = [
            row
            for row_id, row in sorted(self.rows.items())
            if row_id > after_id and row.status in (TransferStatus.pending, TransferStatus.retrying)
        ]
        return rows[:limit]

    async def count_by_status(self, provider: StorageProvider | None = None) -> dict[TransferStatus, int]:
        self.session.check()
        counts: dict[TransferStatus, int] = {}
        for row in self.rows.values():
            if provider is None or row.provider == provider:
                counts[row.status] = counts.get(row.status, 0) + 1
        return counts

    async def count_stuck(self, stuck_before: datetime, provider: StorageProvider | None = None) -> int:
        self.session.check()
        return sum(
            1
            for row in self.rows.values()
            if (provider is None or row.provider == provider)
            and row.status in (TransferStatus.pending, TransferStatus.retrying)
            and (row.last_processed_at or row.created_at) < stuck_before
        )


class FakeNotificationRecordRepo(FakeRepo):
    async def get_for(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition
    ) -> NotificationRecord | None:
        self.session.check()
        for record in self.rows.values():
            if record.user_id == user_id and record.provider == provider and record.condition == condition:
                return record
        return None

    async def get_or_create(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition
    ) -> NotificationRecord:
        record = await self.get_for(user_id, provider, condition)
        if record is None:
            record = self.seed(
                NotificationRecord(
                    user_id=user_id,
                    provider=provider,
                    condition=condition,
                    last_sent_at=None,
                    failure_count=0,
                    last_failure_at=None,
                    last_failure_message=None,
                )
            )
        return record


class FakeRefreshLogRepo(FakeRepo):
    async def recent(self, provider: StorageProvider, limit: int) -> list[RefreshLog]:
        self.session.check()
        rows = [row for row in self.rows.values() if row.provider == provider]
        rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
        return rows[:limit]

    async def stats_since(self, provider: StorageProvider, since: datetime) -> RefreshStats:
        self.session.check()
        attempted = [
            row
            for row in self.rows.values()
            if row.provider == provider
            and row.created_at >= since
            and row.outcome in (RefreshOutcome.refreshed, RefreshOutcome.failed)
        ]
        succeeded = sum(1 for row in attempted if row.outcome == RefreshOutcome.refreshed)
        return RefreshStats(
            attempts=len(attempted),
            succeeded=succeeded,
            failed=len(attempted) - succeeded,
            average_duration_ms=sum(row.duration_ms for row in attempted) / len(attempted) if attempted else 0.0,
        )


class FakeConfigOverrideRepo(FakeRepo):
    async def get_all(self) -> list[ConfigOverride]:
        self.session.check()
        return sorted(self.rows.values(), key=lambda row: row.key)

    async def upsert(self, key: str, value: str, updated_by: str | None = None) -> None:
        self.session.check()
        for row in self.rows.values():
            if row.key == key:
                row.value = value
                row.updated_by = updated_by
                return
        await self.add(ConfigOverride(key=key, value=value, updated_by=updated_by))


class FakeManualTestAllowanceRepo(FakeRepo):
    async def get_for(self, identity: str) -> ManualTestAllowance | None:
        self.session.check()
        for allowance in self.rows.values():
            if allowance.identity == identity:
                return allowance
        return None

    async def get_or_create(self, identity: str, now: datetime) -> ManualTestAllowance:
        allowance = await self.get_for(identity)
        if allowance is None:
            allowance = self.seed(
                ManualTestAllowance(
                    identity=identity, used=0.0, decayed_at=now, last_completed_at=None, in_flight_until=None
                )
            )
        return allowance

    async def delete_idle(self, idle_before: datetime, now: datetime) -> int:
        self.session.check()
        idle = [
            row_id
            for row_id, row in self.rows.items()
            if row.decayed_at < idle_before
            and (row.last_completed_at is None or row.last_completed_at < idle_before)
            and (row.in_flight_until is None or row.in_flight_until <= now)
        ]
        for row_id in idle:
            del self.rows[row_id]
            del self._committed[row_id]
        return len(idle)


class FakeProviderClient:
    """Returns queued grants or raises queued exceptions, in order."""

    def __init__(self) -> None:
        self.refresh_results: list[TokenGrant | BaseException] = []
        self.validate_results: list[BaseException | None] = []
        self.refresh_calls: list[tuple[StorageProvider, str]] = []
        self.validate_calls: list[tuple[StorageProvider, str]] = []
        self.on_refresh: Callable[[], None] | None = None
        self.closed = False

    async def refresh_access_token(self, provider: StorageProvider, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append((provider, refresh_token))
        if self.on_refresh is not None:
            self.on_refresh()
        result = self.refresh_results.pop(0) if self.refresh_results else TokenGrant(access_token="new-access", expires_in=3600)
        if isinstance(result, BaseException):
            raise result
        await asyncio.sleep(0)
        return result

    async def validate_access(self, provider: StorageProvider, access_token: str) -> None:
        self.validate_calls.append((provider, access_token))
        result = self.validate_results.pop(0) if self.validate_results else None
        if result is not None:
            raise result

    async def close_session(self) -> None:
        self.closed = True


class RecordingNotificationDispatcher:
    def __init__(self) -> None:
        self.sent: list[tuple[int, StorageProvider, NotificationCondition, dict[str, Any]]] = []
        self.escalations: list[tuple[int, StorageProvider, NotificationCondition, dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    @property
    def conditions(self) -> list[NotificationCondition]:
        return [condition for _, _, condition, _ in self.sent]

    async def notify(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition, context: dict[str, Any]
    ) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((user_id, provider, condition, context))

    async def escalate(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition, context: dict[str, Any]
    ) -> None:
        self.escalations.append((user_id, provider, condition, context))


class RecordingUploadDispatcher:
    def __init__(self) -> None:
        self.dispatched: list[int] = []
        self.fail_with: Exception | None = None

    async def dispatch(self, transfer: PendingTransfer) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.dispatched.append(transfer.id)


def make_credential(
    user_id: int = 1,
    provider: StorageProvider = GOOGLE,
    expires_at: datetime | None = None,
    access_token: str | None = "access-token",
    refresh_token: str | None = "refresh-token",
    **overrides: Any,
) -> Credential:
    fields: dict[str, Any] = dict(
        user_id=user_id,
        provider=provider,
        access_token=TokenCipher.encrypt(access_token),
        refresh_token=TokenCipher.encrypt(refresh_token),
        token_type="Bearer",
        expires_at=expires_at,
        scopes=["https://www.googleapis.com/auth/drive.file"],
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
    fields.update(overrides)
    return Credential(**fields)


def make_health(
    user_id: int = 1, provider: StorageProvider = GOOGLE, last_successful_operation_at: datetime | None = None, **overrides: Any
) -> ConnectionHealth:
    health = ConnectionHealth.new(user_id, provider)
    health.last_successful_operation_at = last_successful_operation_at
    for name, value in overrides.items():
        setattr(health, name, value)
    return health


def make_transfer(
    user_id: int = 1,
    provider: StorageProvider = GOOGLE,
    created_at: datetime | None = None,
    status: TransferStatus = TransferStatus.pending,
    **overrides: Any,
) -> PendingTransfer:
    fields: dict[str, Any] = dict(
        user_id=user_id,
        provider=provider,
        original_filename="contract.pdf",
        local_path="/var/spool/uploads/contract.pdf",
        status=status,
        retry_count=0,
        recovery_attempts=0,
        last_error=None,
        error_type=None,
        error_context=None,
        error_details=[],
        health_snapshot=None,
        last_processed_at=None,
        retry_recommended_at=None,
        completed_at=None,
        remote_file_id=None,
        created_at=created_at,
    )
    fields.update(overrides)
    return PendingTransfer(**fields)


def make_refresh_log(
    outcome: RefreshOutcome,
    created_at: datetime,
    user_id: int = 1,
    provider: StorageProvider = GOOGLE,
    duration_ms: int = 200,
    **overrides: Any,
) -> RefreshLog:
    fields: dict[str, Any] = dict(
        user_id=user_id,
        provider=provider,
        operation_id=f"op-{user_id}-{created_at.timestamp():.0f}",
        outcome=outcome,
        error_type=None,
        message=None,
        duration_ms=duration_ms,
        created_at=created_at,
    )
    fields.update(overrides)
    return RefreshLog(**fields)


def minutes(value: int) -> timedelta:
    return timedelta(minutes=value)
