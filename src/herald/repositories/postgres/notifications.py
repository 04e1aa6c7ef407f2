"""PostgreSQL notification and delivery log repository."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, case, func, or_, select, update

from herald.core.types import ChannelType, DeliveryStatus, NotificationPriority
from herald.db.engine import DatabaseManager
from herald.db.models import NotificationLogRow, NotificationRow
from herald.notifications.models import (
    DeliveryStat,
    FailureReason,
    Notification,
    NotificationLog,
    PendingRetry,
)

_MUTABLE_LOG_FIELDS = frozenset(
    {"status", "retry_count", "next_retry_at", "error", "message_id"}
)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; all stored timestamps are UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class PostgresNotificationRepository:
    """Postgres-backed storage for notifications and their delivery logs."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # -- notifications -------------------------------------------------------

    async def create_notification(self, notification: Notification) -> Notification:
        async with self._db.session() as db:
            db.add(
                NotificationRow(
                    id=notification.id,
                    type=notification.type,
                    recipient_id=notification.recipient_id,
                    template_id=notification.template_id,
                    priority=notification.priority.value,
                    correlation_ids=notification.correlation_ids,
                    created_at=notification.created_at,
                )
            )
            await db.commit()
        return notification

    async def get_notification(self, notification_id: str) -> Notification | None:
        async with self._db.session() as db:
            row = await db.get(NotificationRow, notification_id)
            if row is None:
                return None
            return self._row_to_notification(row)

    # -- delivery logs -------------------------------------------------------

    async def create_log(self, log: NotificationLog) -> NotificationLog:
        async with self._db.session() as db:
            db.add(
                NotificationLogRow(
                    id=log.id,
                    notification_id=log.notification_id,
                    type=log.type.value,
                    recipient=log.recipient,
                    template_name=log.template_name,
                    parameters=log.parameters,
                    content=log.content,
                    subject=log.subject,
                    sections=log.sections,
                    status=log.status.value,
                    retry_count=log.retry_count,
                    next_retry_at=log.next_retry_at,
                    error=log.error,
                    message_id=log.message_id,
                    created_at=log.created_at,
                    updated_at=log.updated_at,
                )
            )
            await db.commit()
        return log

    async def get_log(self, log_id: str) -> NotificationLog | None:
        async with self._db.session() as db:
            row = await db.get(NotificationLogRow, log_id)
            if row is None:
                return None
            return self._row_to_log(row)

    async def list_logs_for_notification(self, notification_id: str) -> list[NotificationLog]:
        async with self._db.session() as db:
            result = await db.execute(
                select(NotificationLogRow)
                .where(NotificationLogRow.notification_id == notification_id)
                .order_by(NotificationLogRow.created_at)
            )
            return [self._row_to_log(r) for r in result.scalars().all()]

    async def list_logs(self, status: DeliveryStatus | None = None) -> list[NotificationLog]:
        async with self._db.session() as db:
            stmt = select(NotificationLogRow).order_by(NotificationLogRow.created_at)
            if status is not None:
                stmt = stmt.where(NotificationLogRow.status == status.value)
            result = await db.execute(stmt)
            return [self._row_to_log(r) for r in result.scalars().all()]

    # -- retry sweep ---------------------------------------------------------

    async def find_retry_candidates(
        self,
        now: datetime,
        max_attempts: Mapping[NotificationPriority, int],
        limit: int = 100,
    ) -> list[PendingRetry]:
        """Select FAILED logs that are due for a retry or have exhausted their budget.

        Logs currently leased by another sweep are left out. Exhausted logs
        are included regardless of ``next_retry_at`` so they can be moved to
        PERMANENTLY_FAILED instead of lingering.
        """
        budget = case(
            *[
                (NotificationRow.priority == priority.value, attempts)
                for priority, attempts in max_attempts.items()
            ],
            else_=min(max_attempts.values()),
        )
        due = and_(
            NotificationLogRow.retry_count < budget,
            NotificationLogRow.next_retry_at <= now,
        )
        exhausted = NotificationLogRow.retry_count >= budget

        stmt = (
            select(NotificationLogRow, NotificationRow.priority)
            .join(NotificationRow, NotificationLogRow.notification_id == NotificationRow.id)
            .where(
                NotificationLogRow.status == DeliveryStatus.FAILED.value,
                or_(due, exhausted),
                or_(
                    NotificationLogRow.lease_expires_at.is_(None),
                    NotificationLogRow.lease_expires_at <= now,
                ),
            )
            .order_by(NotificationLogRow.next_retry_at, NotificationLogRow.created_at)
            .limit(limit)
        )
        async with self._db.session() as db:
            result = await db.execute(stmt)
            return [
                PendingRetry(log=self._row_to_log(row), priority=NotificationPriority(priority))
                for row, priority in result.all()
            ]

    async def claim_log(
        self,
        log_id: str,
        expected_retry_count: int,
        token: str,
        now: datetime,
        lease_until: datetime,
    ) -> bool:
        """Take a short-lived lease on a FAILED log.

        The update only matches when the row is still FAILED, still at the
        retry count the caller saw, and not leased by anyone else, so at most
        one caller wins.
        """
        stmt = (
            update(NotificationLogRow)
            .where(
                NotificationLogRow.id == log_id,
                NotificationLogRow.status == DeliveryStatus.FAILED.value,
                NotificationLogRow.retry_count == expected_retry_count,
                or_(
                    NotificationLogRow.lease_expires_at.is_(None),
                    NotificationLogRow.lease_expires_at <= now,
                ),
            )
            .values(lease_token=token, lease_expires_at=lease_until)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as db:
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount == 1

    async def finish_retry(
        self, log_id: str, token: str, now: datetime, **changes: Any
    ) -> NotificationLog | None:
        """Apply a retry outcome and release the lease.

        Returns None if the lease identified by *token* is no longer held.
        """
        unknown = set(changes) - _MUTABLE_LOG_FIELDS
        if unknown:
            raise ValueError(f"Cannot update log fields: {', '.join(sorted(unknown))}")
        values = {
            key: value.value if isinstance(value, DeliveryStatus) else value
            for key, value in changes.items()
        }
        stmt = (
            update(NotificationLogRow)
            .where(NotificationLogRow.id == log_id, NotificationLogRow.lease_token == token)
            .values(**values, lease_token=None, lease_expires_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as db:
            result = await db.execute(stmt)
            await db.commit()
            if result.rowcount != 1:
                return None
            row = await db.get(NotificationLogRow, log_id, populate_existing=True)
            return self._row_to_log(row) if row else None

    async def release_claim(self, log_id: str, token: str) -> None:
        stmt = (
            update(NotificationLogRow)
            .where(NotificationLogRow.id == log_id, NotificationLogRow.lease_token == token)
            .values(lease_token=None, lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as db:
            await db.execute(stmt)
            await db.commit()

    # -- analytics -----------------------------------------------------------

    async def delivery_stats(self, start: datetime, end: datetime) -> list[DeliveryStat]:
        stmt = (
            select(
                NotificationLogRow.type,
                NotificationLogRow.status,
                func.count(NotificationLogRow.id),
                func.avg(NotificationLogRow.retry_count),
            )
            .where(NotificationLogRow.created_at.between(start, end))
            .group_by(NotificationLogRow.type, NotificationLogRow.status)
            .order_by(NotificationLogRow.type, NotificationLogRow.status)
        )
        async with self._db.session() as db:
            result = await db.execute(stmt)
            return [
                DeliveryStat(
                    type=ChannelType(channel),
                    status=DeliveryStatus(status),
                    count=count,
                    avg_retries=float(avg or 0),
                )
                for channel, status, count, avg in result.all()
            ]

    async def failure_reasons(self, start: datetime, end: datetime) -> list[FailureReason]:
        stmt = (
            select(NotificationLogRow.error, func.count(NotificationLogRow.id))
            .where(
                NotificationLogRow.status == DeliveryStatus.PERMANENTLY_FAILED.value,
                NotificationLogRow.created_at.between(start, end),
            )
            .group_by(NotificationLogRow.error)
            .order_by(func.count(NotificationLogRow.id).desc())
        )
        async with self._db.session() as db:
            result = await db.execute(stmt)
            return [FailureReason(error=error, count=count) for error, count in result.all()]

    async def channel_stats(
        self, channel: ChannelType, start: datetime, end: datetime
    ) -> dict[DeliveryStatus, int]:
        stmt = (
            select(NotificationLogRow.status, func.count(NotificationLogRow.id))
            .where(
                NotificationLogRow.type == channel.value,
                NotificationLogRow.created_at.between(start, end),
            )
            .group_by(NotificationLogRow.status)
        )
        async with self._db.session() as db:
            result = await db.execute(stmt)
            return {DeliveryStatus(status): count for status, count in result.all()}

    # -- mapping -------------------------------------------------------------

    @staticmethod
    def _row_to_notification(row: NotificationRow) -> Notification:
        return Notification(
            id=row.id,
            type=row.type,
            recipient_id=row.recipient_id,
            template_id=row.template_id,
            priority=NotificationPriority(row.priority),
            correlation_ids=row.correlation_ids or {},
            created_at=_as_utc(row.created_at),
        )

    @staticmethod
    def _row_to_log(row: NotificationLogRow) -> NotificationLog:
        return NotificationLog(
            id=row.id,
            notification_id=row.notification_id,
            type=ChannelType(row.type),
            recipient=row.recipient,
            template_name=row.template_name,
            parameters=row.parameters or {},
            content=row.content,
            subject=row.subject,
            sections=row.sections,
            status=DeliveryStatus(row.status),
            retry_count=row.retry_count,
            next_retry_at=_as_utc(row.next_retry_at),
            error=row.error,
            message_id=row.message_id,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )
