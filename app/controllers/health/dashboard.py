import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from app.controllers.uploads.recovery import UploadRecoveryCoordinator
from app.models import ConsolidatedStatus, RefreshLog, StorageProvider, TransferStatus
from app.repos.connection_health import ConnectionHealthRepo
from app.repos.credential import CredentialRepo
from app.repos.refresh_log import RefreshLogRepo, RefreshStats
from settings import settings


class DashboardService:
    """Operational overview of one provider's connections, refreshes and pending uploads."""

    def __init__(
        self,
        connection_health_repo: ConnectionHealthRepo,
        credential_repo: CredentialRepo,
        refresh_log_repo: RefreshLogRepo,
        upload_recovery: UploadRecoveryCoordinator,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._connection_health_repo = connection_health_repo
        self._credential_repo = credential_repo
        self._refresh_log_repo = refresh_log_repo
        self._upload_recovery = upload_recovery

    async def get_dashboard_snapshot(
        self, provider: StorageProvider, window_hours: int = 24, now: datetime | None = None
    ) -> dict[str, Any]:
        now = now or datetime.now(UTC)
        if window_hours < 1:
            window_hours = 1

        by_status = await self._connection_health_repo.count_by_consolidated_status(provider)
        requiring_reconnection = await self._credential_repo.count_requiring_reconnection(provider)
        expiring_soon = await self._credential_repo.count_expiring_between(
            provider, now, now + timedelta(minutes=settings.monitoring.expiring_soon_minutes)
        )
        stats = await self._refresh_log_repo.stats_since(provider, now - timedelta(hours=window_hours))
        transfers = await self._upload_recovery.get_statistics(provider, now)
        recent = await self._refresh_log_repo.recent(provider, settings.monitoring.recent_operations_limit)

        by_transfer_status = transfers["by_status"]
        pending = by_transfer_status[TransferStatus.pending.value] + by_transfer_status[TransferStatus.retrying.value]
        summary = {
            "provider": provider.value,
            "window_hours": window_hours,
            "connections": {status.value: by_status.get(status, 0) for status in ConsolidatedStatus},
            "total_connections": sum(by_status.values()),
            "requiring_reconnection": requiring_reconnection,
            "expiring_soon": expiring_soon,
            "refresh_attempts": stats.attempts,
            "refresh_successes": stats.succeeded,
            "refresh_failures": stats.failed,
            "success_rate": self.success_rate(stats),
            "average_refresh_ms": round(stats.average_duration_ms, 1),
            "pending_uploads": pending,
            "failed_uploads": by_transfer_status[TransferStatus.failed.value],
            "stuck_uploads": transfers["stuck"],
        }

        return {
            "summary": summary,
            "recent_operations": [self._operation(entry) for entry in recent],
            "active_alerts": self.alerts(stats, pending, requiring_reconnection),
            "generated_at": now.isoformat(),
        }

    @staticmethod
    def success_rate(stats: RefreshStats) -> float:
        if stats.attempts == 0:
            return 100.0
        return round(stats.succeeded / stats.attempts * 100, 1)

    @staticmethod
    def alerts(stats: RefreshStats, pending_uploads: int, requiring_reconnection: int) -> list[dict[str, Any]]:
        thresholds = settings.monitoring
        alerts: list[dict[str, Any]] = []

        if stats.attempts:
            failure_rate = stats.failed / stats.attempts * 100
            if failure_rate > thresholds.failure_rate_threshold:
                alerts.append(
                    {
                        "type": "high_failure_rate",
                        "severity": "high",
                        "message": f"Token refresh failure rate is {failure_rate:.1f}%",
                        "value": round(failure_rate, 1),
                        "threshold": thresholds.failure_rate_threshold,
                    }
                )

        average_seconds = stats.average_duration_ms / 1000
        if average_seconds > thresholds.avg_refresh_time_threshold:
            alerts.append(
                {
                    "type": "slow_refresh",
                    "severity": "medium",
                    "message": f"Average token refresh takes {average_seconds:.1f}s",
                    "value": round(average_seconds, 1),
                    "threshold": thresholds.avg_refresh_time_threshold,
                }
            )

        if pending_uploads > thresholds.pending_uploads_threshold:
            alerts.append(
                {
                    "type": "pending_uploads",
                    "severity": "medium",
                    "message": f"{pending_uploads} uploads are waiting to be retried",
                    "value": pending_uploads,
                    "threshold": thresholds.pending_uploads_threshold,
                }
            )

        if requiring_reconnection:
            alerts.append(
                {
                    "type": "reconnection_required",
                    "severity": "high",
                    "message": f"{requiring_reconnection} connections need the user to reconnect",
                    "value": requiring_reconnection,
                    "threshold": 0,
                }
            )
        return alerts

    @staticmethod
    def _operation(entry: RefreshLog) -> dict[str, Any]:
        return {
            "operation_id": entry.operation_id,
            "user_id": entry.user_id,
            "outcome": entry.outcome.value,
            "error_type": entry.error_type.value if entry.error_type else None,
            "message": entry.message,
            "duration_ms": entry.duration_ms,
            "at": entry.created_at.isoformat() if entry.created_at else None,
        }
