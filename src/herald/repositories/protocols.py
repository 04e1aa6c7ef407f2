"""Protocol definitions for repository interfaces.

Template stores may be sync (in-memory, YAML-seeded) or async (SQL); callers
go through ``resolve()``. The notification repository is async only: the
retry engine relies on its conditional updates for claiming rows.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Awaitable, Protocol, runtime_checkable

from herald.core.types import ChannelType, DeliveryStatus, NotificationPriority
from herald.notifications.models import (
    DeliveryStat,
    FailureReason,
    Notification,
    NotificationLog,
    PendingRetry,
    Template,
)


@runtime_checkable
class TemplateRepository(Protocol):
    """Protocol for template lookup."""

    def find_active_by_name(
        self, name: str, channel: ChannelType, scope: str | None = None
    ) -> Template | None | Awaitable[Template | None]: ...


@runtime_checkable
class NotificationRepository(Protocol):
    """Protocol for notification and delivery log storage."""

    async def create_notification(self, notification: Notification) -> Notification: ...

    async def get_notification(self, notification_id: str) -> Notification | None: ...

    async def create_log(self, log: NotificationLog) -> NotificationLog: ...

    async def get_log(self, log_id: str) -> NotificationLog | None: ...

    async def list_logs_for_notification(self, notification_id: str) -> list[NotificationLog]: ...

    async def find_retry_candidates(
        self,
        now: datetime,
        max_attempts: Mapping[NotificationPriority, int],
        limit: int = 100,
    ) -> list[PendingRetry]: ...

    async def claim_log(
        self,
        log_id: str,
        expected_retry_count: int,
        token: str,
        now: datetime,
        lease_until: datetime,
    ) -> bool: ...

    async def finish_retry(
        self, log_id: str, token: str, now: datetime, **changes: Any
    ) -> NotificationLog | None: ...

    async def release_claim(self, log_id: str, token: str) -> None: ...

    async def delivery_stats(self, start: datetime, end: datetime) -> list[DeliveryStat]: ...

    async def failure_reasons(self, start: datetime, end: datetime) -> list[FailureReason]: ...

    async def channel_stats(
        self, channel: ChannelType, start: datetime, end: datetime
    ) -> dict[DeliveryStatus, int]: ...
