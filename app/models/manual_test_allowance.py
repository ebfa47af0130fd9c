from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class ManualTestAllowance(Base, TimestampMixin):
    """Shared rate limit state for manual connection tests, one row per caller identity."""

    __tablename__ = "manual_test_allowances"
    _repr_fields = ("identity", "used", "in_flight_until", "last_completed_at")

    identity: Mapped[str] = mapped_column(sa.String(255), nullable=False, unique=True)
    used: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0.0, server_default="0")
    decayed_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    last_completed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    in_flight_until: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True, index=True)

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
