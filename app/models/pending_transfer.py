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


class TransferStatus(Enum):
    pending = "pending"
    retrying = "retrying"
    uploaded = "uploaded"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.uploaded, TransferStatus.failed)


class PendingTransfer(Base, TimestampMixin):
    """A queued file waiting to be pushed to the user's cloud storage."""

    __tablename__ = "pending_transfers"
    _repr_fields = ("user_id", "provider", "status", "retry_count", "recovery_attempts")

    user_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, index=True)
    provider: Mapped[StorageProvider] = mapped_column(EnumStringType(StorageProvider), nullable=False)
    original_filename: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    local_path: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[TransferStatus] = mapped_column(
        EnumStringType(TransferStatus), nullable=False, index=True, server_default=TransferStatus.pending.name
    )

    retry_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    recovery_attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    last_error: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    error_type: Mapped[CloudStorageErrorType | None] = mapped_column(
        EnumStringType(CloudStorageErrorType, missing_fails_on_load=False), nullable=True
    )
    error_context: Mapped[dict[str, Any] | None] = mapped_column(JSONB(), nullable=True)
    error_details: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB(), nullable=False, default=list, server_default=sa.text("'[]'")
    )
    health_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSONB(), nullable=True)

    last_processed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    retry_recommended_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    remote_file_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
