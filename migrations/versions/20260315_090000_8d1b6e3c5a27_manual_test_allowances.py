"""manual_test_allowances

Revision ID: 8d1b6e3c5a27
Revises: 4c2e1f9a7b3d
Create Date: 2026-03-15 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8d1b6e3c5a27"
down_revision: Union[str, Sequence[str], None] = "4c2e1f9a7b3d"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "manual_test_allowances",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("identity", sa.String(length=255), nullable=False),
        sa.Column("used", sa.Float(), server_default="0", nullable=False),
        sa.Column("decayed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("in_flight_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("identity"),
    )
    op.create_index(
        op.f("ix_manual_test_allowances_in_flight_until"), "manual_test_allowances", ["in_flight_until"], unique=False
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_manual_test_allowances_in_flight_until"), table_name="manual_test_allowances")
    op.drop_table("manual_test_allowances")
