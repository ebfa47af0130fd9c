from datetime import datetime
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin
from .decorators.types import EnumStringType
from .error_type import CloudStorageErrorType
from .provider import StorageProvider


class HealthStatus(Enum):
    healthy = "healthy"
    degraded = "degraded"
    unhealthy = "unhealthy"
    disconnected = "disconnected"


class ConsolidatedStatus(Enum):
    healthy = "healthy"
    authentication_required = "authentication_required"
    connection_issues = "connection_issues"
    not_connected = "not_connected"


class ConnectionHealth(Base, TimestampMixin):
    """Cached health of one user's storage connection.

    ``consolidated_status`` is derived from the other columns plus the credential and is
    rewritten on every recompute; it is never set on its own.
    """

    __tablename__ = "connection_health"
    _repr_fields = ("user_id", "provider", "consolidated_status", "consecutive_failures")

    user_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, index=True)
    provider: Mapped[StorageProvider] = mapped_column(EnumStringType(StorageProvider), nullable=False)
    status: Mapped[HealthStatus] = mapped_column(
        EnumStringType(HealthStatus), nullable=False, server_default=HealthStatus.disconnected.name
    )
    consolidated_status: Mapped[ConsolidatedStatus] = mapped_column(
        EnumStringType(ConsolidatedStatus), nullable=False, server_default=ConsolidatedStatus.not_connected.name
    )

    consecutive_failures: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    last_successful_operation_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    last_error_type: Mapped[CloudStorageErrorType | None] = mapped_column(
        EnumStringType(CloudStorageErrorType, missing_fails_on_load=False), nullable=True
    )
    last_error_message: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    last_error_context: Mapped[dict[str, Any] | None] = mapped_column(JSONB(), nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    token_expires_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    requires_reconnection: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false()
    )
    last_token_refresh_attempt_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    token_refresh_failures: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    last_validation_result: Mapped[bool | None] = mapped_column(sa.Boolean, nullable=True)
    last_validated_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __table_args__ = (sa.UniqueConstraint("user_id", "provider", name="uq_connection_health_user_provider"),)
    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def new(cls, user_id: int, provider: StorageProvider) -> "ConnectionHealth":
        """Build an unsaved record with every counter and flag at its initial value."""
        return cls(
            user_id=user_id,
            provider=provider,
            status=HealthStatus.disconnected,
            consolidated_status=ConsolidatedStatus.not_connected,
            consecutive_failures=0,
            last_successful_operation_at=None,
            last_error_type=None,
            last_error_message=None,
            last_error_context=None,
            last_error_at=None,
            token_expires_at=None,
            requires_reconnection=False,
            last_token_refresh_attempt_at=None,
            token_refresh_failures=0,
            last_validation_result=None,
            last_validated_at=None,
        )

    def clear_error(self) -> None:
        self.last_error_type = None
        self.last_error_message = None
        self.last_error_context = None
        self.last_error_at = None
