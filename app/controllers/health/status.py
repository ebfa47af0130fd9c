"""
Derivation of the consolidated connection status.

``determine_consolidated_status`` is the single source of the status stored on
``ConnectionHealth``: the tracker, the backfill job and the API all call it, so the same inputs
always give the same answer.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from app.controllers.tokens.token_store import can_be_refreshed, is_expired
from app.models import (
    ConnectionHealth,
    ConsolidatedStatus,
    Credential,
    ErrorSeverity,
    HealthStatus,
    StorageProvider,
)
from settings import settings

_RAW_STATUS = {
    ConsolidatedStatus.healthy: HealthStatus.healthy,
    ConsolidatedStatus.authentication_required: HealthStatus.unhealthy,
    ConsolidatedStatus.connection_issues: HealthStatus.degraded,
    ConsolidatedStatus.not_connected: HealthStatus.disconnected,
}

_BLOCKING_SEVERITIES = (ErrorSeverity.high, ErrorSeverity.medium)


@dataclass(frozen=True)
class HealthThresholds:
    freshness: timedelta
    auth_failure_threshold: int
    refresh_failure_threshold: int
    max_retry_attempts: int

    @classmethod
    def from_settings(cls, max_retry_attempts: int) -> "HealthThresholds":
        return cls(
            freshness=timedelta(hours=settings.health.freshness_hours),
            auth_failure_threshold=settings.health.auth_failure_threshold,
            refresh_failure_threshold=settings.health.refresh_failure_threshold,
            max_retry_attempts=max_retry_attempts,
        )


def determine_consolidated_status(
    credential: Credential | None,
    health: ConnectionHealth | None,
    now: datetime,
    thresholds: HealthThresholds,
) -> ConsolidatedStatus:
    """Most severe matching condition wins."""
    if credential is None or not credential.is_connected:
        return ConsolidatedStatus.not_connected

    if credential.requires_reconnection or (health is not None and health.requires_reconnection):
        return ConsolidatedStatus.authentication_required
    if (
        health is not None
        and health.last_error_type is not None
        and health.last_error_type.is_auth_error
        and health.consecutive_failures >= thresholds.auth_failure_threshold
    ):
        return ConsolidatedStatus.authentication_required

    if is_expired(credential, now) and not can_be_refreshed(credential, thresholds.max_retry_attempts):
        return ConsolidatedStatus.connection_issues
    if credential.refresh_failure_count >= thresholds.refresh_failure_threshold:
        return ConsolidatedStatus.connection_issues

    if health is not None and health.last_successful_operation_at is not None:
        fresh = now - health.last_successful_operation_at <= thresholds.freshness
        unresolved = health.last_error_type is not None and health.last_error_type.severity in _BLOCKING_SEVERITIES
        if fresh and not unresolved:
            return ConsolidatedStatus.healthy

    return ConsolidatedStatus.not_connected


def raw_status_for(status: ConsolidatedStatus) -> HealthStatus:
    return _RAW_STATUS[status]


def status_message(status: ConsolidatedStatus, provider: StorageProvider) -> str:
    name = provider.display_name
    if status == ConsolidatedStatus.healthy:
        return f"Connected to {name} and working properly"
    elif status == ConsolidatedStatus.authentication_required:
        return f"Authentication required - please reconnect your {name} account"
    elif status == ConsolidatedStatus.connection_issues:
        return f"Connection issues detected with {name} - please check your network and try again"
    return f"{name} not connected - please set up your cloud storage connection"
