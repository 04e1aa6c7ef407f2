"""Core type definitions shared across all Herald modules."""

from __future__ import annotations

from enum import StrEnum


class ChannelType(StrEnum):
    """Transports a notification can be delivered over."""

    WHATSAPP = "WHATSAPP"
    SMS = "SMS"
    EMAIL = "EMAIL"


class NotificationPriority(StrEnum):
    """Priority tier of a notification. Determines its retry policy."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class DeliveryStatus(StrEnum):
    """Status of a single channel delivery lineage."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    PERMANENTLY_FAILED = "PERMANENTLY_FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.SENT, DeliveryStatus.PERMANENTLY_FAILED)


class TemplateStatus(StrEnum):
    """Lifecycle status of a message template."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DEPRECATED = "DEPRECATED"
