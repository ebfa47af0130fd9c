import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from app.models import CloudStorageErrorType, ConsolidatedStatus, HealthStatus, StorageProvider


class ConnectionStatus(BaseModel):
    user_id: int
    provider: StorageProvider
    consolidated_status: ConsolidatedStatus
    message: str


class ConnectionStatusResponse(BaseModel):
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    data: ConnectionStatus


class ConnectionHealthSummary(BaseModel):
    """Health of one user's connection, as shown on the connection page."""

    user_id: int
    provider: StorageProvider
    status: HealthStatus
    consolidated_status: ConsolidatedStatus
    message: str
    consecutive_failures: int
    last_successful_operation_at: datetime | None = None
    last_error_type: CloudStorageErrorType | None = None
    last_error_message: str | None = None
    token_expires_at: datetime | None = None
    requires_reconnection: bool
    last_validation_result: bool | None = None
    last_validated_at: datetime | None = None


class ConnectionHealthResponse(BaseModel):
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    data: ConnectionHealthSummary


class ConnectionTest(BaseModel):
    user_id: int
    provider: StorageProvider
    consolidated_status: ConsolidatedStatus
    message: str
    refreshed: bool
    validated: bool | None = None
    tested_at: datetime


class ConnectionTestResponse(BaseModel):
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    data: ConnectionTest
