from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin
from .decorators.types import EnumStringType
from .error_type import CloudStorageErrorType
from .provider import StorageProvider


class RefreshOutcome(Enum):
    refreshed = "refreshed"
    already_valid = "already_valid"
    failed = "failed"
    lost_race = "lost_race"


class RefreshLog(Base, TimestampMixin):
    """Model for logging token refresh attempts."""

    __tablename__ = "refresh_logs"
    _repr_fields = ("user_id", "provider", "outcome", "duration_ms")

    user_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, index=True)
    provider: Mapped[StorageProvider] = mapped_column(EnumStringType(StorageProvider), nullable=False)
    operation_id: Mapped[str] = mapped_column(sa.String(36), nullable=False)
    outcome: Mapped[RefreshOutcome] = mapped_column(EnumStringType(RefreshOutcome), nullable=False, index=True)
    error_type: Mapped[CloudStorageErrorType | None] = mapped_column(
        EnumStringType(CloudStorageErrorType, missing_fails_on_load=False), nullable=True
    )
    message: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    __table_args__ = (sa.Index("ix_refresh_logs_provider_created_at", "provider", "created_at"),)
