import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from app.controllers.config.config_service import ConfigService
from app.controllers.errors.classifier import ClassifiedError, ErrorClassifier
from app.controllers.health.tracker import HealthStatusTracker
from app.controllers.notifications.throttler import NotificationThrottler
from app.controllers.uploads.dispatcher import UploadDispatcher
from app.exceptions import ConcurrencyError
from app.models import (
    CloudStorageErrorType,
    ConsolidatedStatus,
    NotificationCondition,
    PendingTransfer,
    StorageProvider,
    TransferStatus,
)
from app.repos.pending_transfer import PendingTransferRepo
from settings import settings


class RecoveryDecision(Enum):
    retry = "retry"
    wait = "wait"
    defer = "defer"
    await_reconnection = "await_reconnection"
    fail = "fail"
    skip = "skip"


@dataclass
class RecoveryReport:
    examined: int = 0
    dispatched: int = 0
    waiting: int = 0
    deferred: int = 0
    awaiting_reconnection: int = 0
    failed: int = 0
    skipped: int = 0

    def count(self, decision: RecoveryDecision) -> None:
        if decision == RecoveryDecision.retry:
            self.dispatched += 1
        elif decision == RecoveryDecision.wait:
            self.waiting += 1
        elif decision == RecoveryDecision.defer:
            self.deferred += 1
        elif decision == RecoveryDecision.await_reconnection:
            self.awaiting_reconnection += 1
        elif decision == RecoveryDecision.fail:
            self.failed += 1
        else:
            self.skipped += 1


class UploadRecoveryCoordinator:
    """Decides, per pending transfer, whether to retry now, wait, or give up.

    Retries are gated on the connection's consolidated health: nothing is re-queued while the
    user has to reconnect, and recoverable failures are held back while the connection has issues.
    """

    def __init__(
        self,
        pending_transfer_repo: PendingTransferRepo,
        health_tracker: HealthStatusTracker,
        notification_throttler: NotificationThrottler,
        error_classifier: ErrorClassifier,
        config_service: ConfigService,
        dispatcher: UploadDispatcher,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._pending_transfer_repo = pending_transfer_repo
        self._health_tracker = health_tracker
        self._notification_throttler = notification_throttler
        self._error_classifier = error_classifier
        self._config_service = config_service
        self._dispatcher = dispatcher

    @staticmethod
    def is_stuck(transfer: PendingTransfer, now: datetime) -> bool:
        last_progress = transfer.last_processed_at or transfer.created_at
        if last_progress is None:
            return False
        return now - last_progress >= timedelta(minutes=settings.upload_recovery.stuck_threshold_minutes)

    @staticmethod
    def can_retry(transfer: PendingTransfer) -> bool:
        if transfer.retry_count >= settings.upload_recovery.max_retry_attempts:
            return False
        if transfer.recovery_attempts >= settings.upload_recovery.max_recovery_attempts:
            return False
        return transfer.error_type is None or transfer.error_type.is_recoverable

    def decide(
        self, transfer: PendingTransfer, consolidated_status: ConsolidatedStatus, now: datetime
    ) -> RecoveryDecision:
        if transfer.status.is_terminal:
            return RecoveryDecision.skip
        if not self.can_retry(transfer):
            return RecoveryDecision.fail
        if consolidated_status in (ConsolidatedStatus.authentication_required, ConsolidatedStatus.not_connected):
            return RecoveryDecision.await_reconnection
        if consolidated_status == ConsolidatedStatus.connection_issues and transfer.error_type is not None:
            return RecoveryDecision.defer
        if transfer.retry_recommended_at is not None:
            if transfer.retry_recommended_at > now:
                return RecoveryDecision.wait
            return RecoveryDecision.retry
        if not self.is_stuck(transfer, now):
            return RecoveryDecision.wait
        return RecoveryDecision.retry

    async def record_failure(
        self, transfer: PendingTransfer, error: BaseException, now: datetime | None = None
    ) -> ClassifiedError:
        """Classify an upload failure and schedule (or stop) the next attempt."""
        now = now or datetime.now(UTC)
        classified = self._error_classifier.describe(error, file_name=transfer.original_filename, operation="upload")
        health_snapshot = await self._health_snapshot(transfer.user_id, transfer.provider)

        transfer.retry_count += 1
        transfer.last_error = classified.message
        transfer.error_type = classified.type
        transfer.error_context = classified.context
        transfer.error_details = self._append_history(transfer, classified, now)
        transfer.health_snapshot = health_snapshot
        transfer.last_processed_at = now

        delay = self._error_classifier.retry_delay(classified.type, transfer.retry_count, classified.context)
        transfer.retry_recommended_at = now + timedelta(seconds=delay) if delay is not None else None

        failed = not self.can_retry(transfer)
        if failed:
            self._mark_failed(transfer, now)
        else:
            transfer.status = TransferStatus.retrying

        if not await self._pending_transfer_repo.try_commit():
            self._logger.warning(f"Transfer {transfer.id} changed concurrently; failure not recorded")
            return classified

        self._logger.info(
            f"Transfer {transfer.id} failed with {classified.type.value} "
            f"(retry {transfer.retry_count}, {'terminal' if failed else 'will retry'})"
        )
        try:
            await self._health_tracker.record_operation_failure(transfer.user_id, transfer.provider, classified, now)
        except ConcurrencyError as e:
            self._logger.warning(f"Health not updated after transfer {transfer.id} failure: {e}")
        if failed:
            await self._notify_failed(transfer, now)
        return classified

    async def record_success(
        self, transfer: PendingTransfer, remote_file_id: str, now: datetime | None = None
    ) -> None:
        now = now or datetime.now(UTC)
        transfer.status = TransferStatus.uploaded
        transfer.remote_file_id = remote_file_id
        transfer.completed_at = now
        transfer.last_processed_at = now
        transfer.retry_recommended_at = None
        if not await self._pending_transfer_repo.try_commit():
            self._logger.warning(f"Transfer {transfer.id} changed concurrently; success not recorded")
            return

        self._logger.info(f"Transfer {transfer.id} uploaded as {remote_file_id}")
        try:
            await self._health_tracker.record_operation_success(transfer.user_id, transfer.provider, now)
        except ConcurrencyError as e:
            self._logger.warning(f"Health not updated after transfer {transfer.id} upload: {e}")

    def terminal_message(self, transfer: PendingTransfer) -> str:
        error_type = transfer.error_type or CloudStorageErrorType.unknown_error
        context = dict(transfer.error_context or {})
        context.setdefault("file_name", transfer.original_filename)
        context.setdefault("operation", "upload")
        return self._error_classifier.render_message(error_type, transfer.provider, context)

    async def process_pending(self, now: datetime | None = None) -> RecoveryReport:
        """One recovery pass over every non-terminal transfer."""
        now = now or datetime.now(UTC)
        report = RecoveryReport()
        config = await self._config_service.ensure_loaded()
        if not config.feature("automatic_recovery"):
            self._logger.info("Automatic recovery disabled; skipping pass")
            return report

        statuses: dict[tuple[int, StorageProvider], ConsolidatedStatus] = {}
        after_id = 0
        while True:
            transfers = await self._pending_transfer_repo.get_active(
                limit=settings.upload_recovery.batch_size, after_id=after_id
            )
            if not transfers:
                break
            for transfer in transfers:
                after_id = transfer.id
                key = (transfer.user_id, transfer.provider)
                if key not in statuses:
                    statuses[key] = await self._health_tracker.get_consolidated_status(*key, now=now)
                decision = self.decide(transfer, statuses[key], now)
                await self._act(transfer, decision, now)
                report.examined += 1
                report.count(decision)

        self._logger.info(
            f"Recovery pass done: examined={report.examined} dispatched={report.dispatched} "
            f"waiting={report.waiting} deferred={report.deferred} "
            f"awaiting_reconnection={report.awaiting_reconnection} failed={report.failed}"
        )
        return report

    async def get_statistics(self, provider: StorageProvider | None = None, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(UTC)
        counts = await self._pending_transfer_repo.count_by_status(provider)
        stuck_before = now - timedelta(minutes=settings.upload_recovery.stuck_threshold_minutes)
        return {
            "by_status": {status.value: counts.get(status, 0) for status in TransferStatus},
            "stuck": await self._pending_transfer_repo.count_stuck(stuck_before, provider),
        }

    async def _act(self, transfer: PendingTransfer, decision: RecoveryDecision, now: datetime) -> None:
        if decision == RecoveryDecision.fail:
            self._mark_failed(transfer, now)
            if await self._pending_transfer_repo.try_commit():
                await self._notify_failed(transfer, now)
        elif decision == RecoveryDecision.retry:
            transfer.recovery_attempts += 1
            transfer.last_processed_at = now
            transfer.retry_recommended_at = None
            transfer.status = TransferStatus.retrying
            if not await self._pending_transfer_repo.try_commit():
                self._logger.info(f"Transfer {transfer.id} picked up elsewhere; not dispatching")
                return
            try:
                await self._dispatcher.dispatch(transfer)
            except Exception as e:
                self._logger.warning(f"Dispatch of transfer {transfer.id} failed: {e}")
                await self.record_failure(transfer, e, now)

    def _mark_failed(self, transfer: PendingTransfer, now: datetime) -> None:
        transfer.status = TransferStatus.failed
        transfer.completed_at = now
        # An API quota failure keeps the provider's hint for when a manual retry can succeed.
        if transfer.error_type != CloudStorageErrorType.api_quota_exceeded:
            transfer.retry_recommended_at = None
        transfer.error_context = {**(transfer.error_context or {}), "user_message": self.terminal_message(transfer)}

    async def _notify_failed(self, transfer: PendingTransfer, now: datetime) -> None:
        await self._notification_throttler.notify(
            transfer.user_id,
            transfer.provider,
            NotificationCondition.upload_failed,
            {
                "transfer_id": transfer.id,
                "file_name": transfer.original_filename,
                "error_type": transfer.error_type.value if transfer.error_type else None,
                "message": self.terminal_message(transfer),
            },
            now,
        )

    async def _health_snapshot(self, user_id: int, provider: StorageProvider) -> dict[str, Any]:
        summary = await self._health_tracker.get_health_summary(user_id, provider)
        return {
            "consolidated_status": summary.consolidated_status.value,
            "status": summary.status.value,
            "consecutive_failures": summary.consecutive_failures,
            "last_error_type": summary.last_error_type.value if summary.last_error_type else None,
            "requires_reconnection": summary.requires_reconnection,
        }

    @staticmethod
    def _append_history(
        transfer: PendingTransfer, classified: ClassifiedError, now: datetime
    ) -> list[dict[str, Any]]:
        entry = {
            "at": now.isoformat(),
            "attempt": transfer.retry_count,
            "error_type": classified.type.value,
            "message": classified.message,
        }
        history = [*(transfer.error_details or []), entry]
        return history[-settings.upload_recovery.history_limit :]
