"""Initial schema: templates, notifications, notification_logs.

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # -- Templates --
    op.create_table(
        "templates",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("subject", sa.String(512), nullable=True),
        sa.Column("status", sa.String(16), server_default="ACTIVE"),
        sa.Column("language", sa.String(8), server_default="en"),
        sa.Column("scope", sa.String(64), nullable=True),
        sa.Column("sections", _JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("name", "type", "scope", name="uq_templates_name_type_scope"),
    )
    op.create_index("ix_templates_name", "templates", ["name"])

    # -- Notifications --
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("template_id", sa.String(64), nullable=True),
        sa.Column("priority", sa.String(16), server_default="LOW"),
        sa.Column("correlation_ids", _JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])

    # -- Notification Logs --
    op.create_table(
        "notification_logs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "notification_id",
            sa.String(64),
            sa.ForeignKey("notifications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("recipient", sa.String(256), nullable=False),
        sa.Column("template_name", sa.String(128), nullable=True),
        sa.Column("parameters", _JSON, nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("subject", sa.String(512), nullable=True),
        sa.Column("sections", _JSON, nullable=True),
        sa.Column("status", sa.String(24), server_default="PENDING"),
        sa.Column("retry_count", sa.Integer, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("message_id", sa.String(128), nullable=True),
        sa.Column("lease_token", sa.String(64), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_notification_logs_status_next_retry",
        "notification_logs",
        ["status", "next_retry_at"],
    )
    op.create_index("ix_notification_logs_notification_id", "notification_logs", ["notification_id"])
    op.create_index("ix_notification_logs_message_id", "notification_logs", ["message_id"])
    op.create_index("ix_notification_logs_recipient", "notification_logs", ["recipient"])
    op.create_index("ix_notification_logs_created_at", "notification_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("notification_logs")
    op.drop_table("notifications")
    op.drop_table("templates")
