import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class DashboardSummary(BaseModel):
    provider: str
    window_hours: int
    connections: dict[str, int]
    total_connections: int
    requiring_reconnection: int
    expiring_soon: int
    refresh_attempts: int
    refresh_successes: int
    refresh_failures: int
    success_rate: float
    average_refresh_ms: float
    pending_uploads: int
    failed_uploads: int
    stuck_uploads: int


class RecentOperation(BaseModel):
    operation_id: str
    user_id: int
    outcome: str
    error_type: str | None = None
    message: str | None = None
    duration_ms: int
    at: datetime | None = None


class DashboardAlert(BaseModel):
    type: str
    severity: str
    message: str
    value: float
    threshold: float


class DashboardSnapshot(BaseModel):
    summary: DashboardSummary
    recent_operations: list[RecentOperation]
    active_alerts: list[DashboardAlert]
    generated_at: datetime


class DashboardResponse(BaseModel):
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    data: DashboardSnapshot
