"""Notification data models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from herald.core.types import (
    ChannelType,
    DeliveryStatus,
    NotificationPriority,
    TemplateStatus,
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Template(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    type: ChannelType
    content: str
    subject: str | None = None
    status: TemplateStatus = TemplateStatus.ACTIVE
    language: str = "en"
    scope: str | None = None
    sections: dict[str, Any] | None = None


class Recipient(BaseModel):
    """Who a notification is for, with one address per kind of channel."""

    id: str
    phone: str | None = None
    email: str | None = None


class DispatchRequest(BaseModel):
    recipient: Recipient
    template_name: str | None = None
    raw_content: str | None = None
    subject: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.LOW
    channels: list[ChannelType] = Field(default_factory=list)
    correlation_ids: dict[str, str] = Field(default_factory=dict)
    scope: str | None = None


class ChannelPayload(BaseModel):
    """Rendered, channel-formatted message body."""

    body: str
    subject: str | None = None
    sections: dict[str, Any] | None = None


class Notification(BaseModel):
    """A logical request to inform a recipient. Status lives on its logs."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    type: str
    recipient_id: str
    template_id: str | None = None
    priority: NotificationPriority = NotificationPriority.LOW
    correlation_ids: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class NotificationLog(BaseModel):
    """Mutable tracker of one channel's delivery lineage, including retries."""

    id: str = Field(default_factory=_new_id)
    notification_id: str
    type: ChannelType
    recipient: str
    template_name: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    content: str = ""
    subject: str | None = None
    sections: dict[str, Any] | None = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    retry_count: int = 0
    next_retry_at: datetime | None = None
    error: str | None = None
    message_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def payload(self) -> ChannelPayload:
        return ChannelPayload(body=self.content, subject=self.subject, sections=self.sections)


class PendingRetry(BaseModel):
    """A failed log selected by a sweep, with its owning notification's priority."""

    log: NotificationLog
    priority: NotificationPriority


class ChannelOutcome(BaseModel):
    channel: ChannelType
    log_id: str
    status: DeliveryStatus
    message_id: str | None = None
    error: str | None = None
    next_retry_at: datetime | None = None


class DispatchResult(BaseModel):
    """The created notification plus first-attempt outcomes per channel."""

    notification: Notification
    outcomes: list[ChannelOutcome] = Field(default_factory=list)

    @property
    def all_sent(self) -> bool:
        return all(o.status == DeliveryStatus.SENT for o in self.outcomes)

    def outcome_for(self, channel: ChannelType) -> ChannelOutcome | None:
        for outcome in self.outcomes:
            if outcome.channel == channel:
                return outcome
        return None


class SweepReport(BaseModel):
    """Counts from a single retry sweep."""

    selected: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    permanently_failed: int = 0
    skipped: int = 0


class DeliveryStat(BaseModel):
    type: ChannelType
    status: DeliveryStatus
    count: int
    avg_retries: float


class FailureReason(BaseModel):
    error: str | None
    count: int


class DeliveryAnalytics(BaseModel):
    start: datetime
    end: datetime
    delivery_stats: list[DeliveryStat] = Field(default_factory=list)
    failure_analysis: list[FailureReason] = Field(default_factory=list)
