import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class ConfigOverride(Base, TimestampMixin):
    """Runtime override of one token refresh setting, stored as text and coerced on load."""

    __tablename__ = "config_overrides"
    _repr_fields = ("key", "value")

    key: Mapped[str] = mapped_column(sa.String(255), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(sa.Text, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
