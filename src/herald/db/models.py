"""SQLAlchemy ORM models for all persistent tables."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from herald.db.base import Base


def _jsonb() -> type:
    """Return JSONB for Postgres, plain JSON for SQLite."""
    return JSON().with_variant(PG_JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TemplateRow(Base):
    __tablename__ = "templates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128))
    type: Mapped[str] = mapped_column(String(16))
    content: Mapped[str] = mapped_column(Text)
    subject: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE")
    language: Mapped[str] = mapped_column(String(8), default="en")
    scope: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sections: Mapped[dict | None] = mapped_column(_jsonb(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("name", "type", "scope", name="uq_templates_name_type_scope"),
        Index("ix_templates_name", "name"),
    )


# ---------------------------------------------------------------------------
# Notifications & delivery logs
# ---------------------------------------------------------------------------


class NotificationRow(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(32))
    recipient_id: Mapped[str] = mapped_column(String(64))
    template_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    priority: Mapped[str] = mapped_column(String(16), default="LOW")
    correlation_ids: Mapped[dict] = mapped_column(_jsonb(), default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    logs: Mapped[list[NotificationLogRow]] = relationship(back_populates="notification")

    __table_args__ = (
        Index("ix_notifications_recipient_id", "recipient_id"),
    )


class NotificationLogRow(Base):
    __tablename__ = "notification_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    notification_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("notifications.id", ondelete="CASCADE")
    )
    type: Mapped[str] = mapped_column(String(16))
    recipient: Mapped[str] = mapped_column(String(256))
    template_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    parameters: Mapped[dict] = mapped_column(_jsonb(), default=dict)
    content: Mapped[str] = mapped_column(Text, default="")
    subject: Mapped[str | None] = mapped_column(String(512), nullable=True)
    sections: Mapped[dict | None] = mapped_column(_jsonb(), nullable=True)
    status: Mapped[str] = mapped_column(String(24), default="PENDING")
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    message_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    lease_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    notification: Mapped[NotificationRow] = relationship(back_populates="logs")

    __table_args__ = (
        Index("ix_notification_logs_status_next_retry", "status", "next_retry_at"),
        Index("ix_notification_logs_notification_id", "notification_id"),
        Index("ix_notification_logs_message_id", "message_id"),
        Index("ix_notification_logs_recipient", "recipient"),
        Index("ix_notification_logs_created_at", "created_at"),
    )
