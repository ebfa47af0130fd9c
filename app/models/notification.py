from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin
from .decorators.types import EnumStringType
from .provider import StorageProvider


class NotificationCondition(Enum):
    reconnection_required = "reconnection_required"
    refresh_failed = "refresh_failed"
    connection_restored = "connection_restored"
    upload_failed = "upload_failed"


class NotificationRecord(Base, TimestampMixin):
    """Last delivery of one notification condition for a user's connection."""

    __tablename__ = "notification_records"
    _repr_fields = ("user_id", "provider", "condition", "last_sent_at", "failure_count")

    user_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, index=True)
    provider: Mapped[StorageProvider] = mapped_column(EnumStringType(StorageProvider), nullable=False)
    condition: Mapped[NotificationCondition] = mapped_column(EnumStringType(NotificationCondition), nullable=False)
    last_sent_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    failure_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    last_failure_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    last_failure_message: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("user_id", "provider", "condition", name="uq_notification_records_user_provider_condition"),
    )
    __mapper_args__ = {"version_id_col": version}
