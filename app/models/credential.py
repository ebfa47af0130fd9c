from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin
from .decorators.types import EnumStringType
from .provider import StorageProvider


class Credential(Base, TimestampMixin):
    """OAuth credential for one user's cloud storage connection. Token columns hold ciphertext."""

    __tablename__ = "credentials"
    _repr_fields = ("user_id", "provider", "expires_at", "refresh_failure_count", "requires_reconnection")

    user_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, index=True)
    provider: Mapped[StorageProvider] = mapped_column(EnumStringType(StorageProvider), nullable=False)
    access_token: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    token_type: Mapped[str] = mapped_column(sa.String(50), nullable=False, default="Bearer", server_default="Bearer")
    expires_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True, index=True)
    scopes: Mapped[list[str]] = mapped_column(JSONB(), nullable=False, default=list, server_default=sa.text("'[]'"))

    last_refresh_attempt_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    refresh_failure_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    last_successful_refresh_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    last_refresh_error: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    proactive_refresh_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    refresh_locked_until: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    health_check_failures: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    requires_reconnection: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false()
    )
    last_notification_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    notification_failure_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")

    connected_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    disconnected_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __table_args__ = (sa.UniqueConstraint("user_id", "provider", name="uq_credentials_user_provider"),)
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_connected(self) -> bool:
        return self.access_token is not None or self.refresh_token is not None
