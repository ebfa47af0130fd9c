"""initial_migration

Revision ID: 4c2e1f9a7b3d
Revises:
Create Date: 2026-03-01 12:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "4c2e1f9a7b3d"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "credentials",
        sa.Column("id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True, comment="Encrypted"),
        sa.Column("refresh_token", sa.Text(), nullable=True, comment="Encrypted"),
        sa.Column("token_type", sa.String(length=50), server_default="Bearer", nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scopes", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'"), nullable=False),
        sa.Column("last_refresh_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refresh_failure_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_successful_refresh_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_refresh_error", sa.Text(), nullable=True),
        sa.Column("proactive_refresh_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refresh_locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("health_check_failures", sa.Integer(), server_default="0", nullable=False),
        sa.Column("requires_reconnection", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("last_notification_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notification_failure_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("connected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disconnected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "provider", name="uq_credentials_user_provider"),
    )
    op.create_index(op.f("ix_credentials_user_id"), "credentials", ["user_id"], unique=False)
    op.create_index(op.f("ix_credentials_expires_at"), "credentials", ["expires_at"], unique=False)

    op.create_table(
        "connection_health",
        sa.Column("id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=50), server_default="disconnected", nullable=False),
        sa.Column("consolidated_status", sa.String(length=50), server_default="not_connected", nullable=False),
        sa.Column("consecutive_failures", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_successful_operation_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error_type", sa.String(length=50), nullable=True),
        sa.Column("last_error_message", sa.Text(), nullable=True),
        sa.Column("last_error_context", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requires_reconnection", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("last_token_refresh_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("token_refresh_failures", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_validation_result", sa.Boolean(), nullable=True),
        sa.Column("last_validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "provider", name="uq_connection_health_user_provider"),
    )
    op.create_index(op.f("ix_connection_health_user_id"), "connection_health", ["user_id"], unique=False)

    op.create_table(
        "pending_transfers",
        sa.Column("id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("original_filename", sa.String(length=255), nullable=False),
        sa.Column("local_path", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=50), server_default="pending", nullable=False),
        sa.Column("retry_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("recovery_attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("error_type", sa.String(length=50), nullable=True),
        sa.Column("error_context", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "error_details", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'"), nullable=False
        ),
        sa.Column("health_snapshot", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("last_processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_recommended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("remote_file_id", sa.String(length=255), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_pending_transfers_user_id"), "pending_transfers", ["user_id"], unique=False)
    op.create_index(op.f("ix_pending_transfers_status"), "pending_transfers", ["status"], unique=False)

    op.create_table(
        "notification_records",
        sa.Column("id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("condition", sa.String(length=50), nullable=False),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_failure_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_failure_message", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "provider", "condition", name="uq_notification_records_user_provider_condition"
        ),
    )
    op.create_index(op.f("ix_notification_records_user_id"), "notification_records", ["user_id"], unique=False)

    op.create_table(
        "refresh_logs",
        sa.Column("id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("operation_id", sa.String(length=36), nullable=False),
        sa.Column("outcome", sa.String(length=50), nullable=False),
        sa.Column("error_type", sa.String(length=50), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_refresh_logs_user_id"), "refresh_logs", ["user_id"], unique=False)
    op.create_index(op.f("ix_refresh_logs_outcome"), "refresh_logs", ["outcome"], unique=False)
    op.create_index("ix_refresh_logs_provider_created_at", "refresh_logs", ["provider", "created_at"], unique=False)

    op.create_table(
        "config_overrides",
        sa.Column("id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("config_overrides")
    op.drop_index("ix_refresh_logs_provider_created_at", table_name="refresh_logs")
    op.drop_index(op.f("ix_refresh_logs_outcome"), table_name="refresh_logs")
    op.drop_index(op.f("ix_refresh_logs_user_id"), table_name="refresh_logs")
    op.drop_table("refresh_logs")
    op.drop_index(op.f("ix_notification_records_user_id"), table_name="notification_records")
    op.drop_table("notification_records")
    op.drop_index(op.f("ix_pending_transfers_status"), table_name="pending_transfers")
    op.drop_index(op.f("ix_pending_transfers_user_id"), table_name="pending_transfers")
    op.drop_table("pending_transfers")
    op.drop_index(op.f("ix_connection_health_user_id"), table_name="connection_health")
    op.drop_table("connection_health")
    op.drop_index(op.f("ix_credentials_expires_at"), table_name="credentials")
    op.drop_index(op.f("ix_credentials_user_id"), table_name="credentials")
    op.drop_table("credentials")
