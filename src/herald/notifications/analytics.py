"""Delivery analytics over notification logs."""

from __future__ import annotations

from datetime import datetime, timezone

from herald.core.errors import UnsupportedChannelType
from herald.core.types import ChannelType, DeliveryStatus
from herald.notifications.models import DeliveryAnalytics
from herald.repositories.protocols import NotificationRepository


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DeliveryAnalyticsService:
    """Aggregates delivery outcomes for a created-at window (inclusive)."""

    def __init__(self, repository: NotificationRepository) -> None:
        self._repo = repository

    async def get_delivery_analytics(self, start: datetime, end: datetime) -> DeliveryAnalytics:
        """Counts and average retries per (channel, status), plus permanent failure reasons.

        Naive datetimes are taken to be UTC.
        """
        start, end = _as_utc(start), _as_utc(end)
        if start > end:
            raise ValueError("start must not be after end")
        return DeliveryAnalytics(
            start=start,
            end=end,
            delivery_stats=await self._repo.delivery_stats(start, end),
            failure_analysis=await self._repo.failure_reasons(start, end),
        )

    async def get_channel_stats(
        self, channel: ChannelType | str, start: datetime, end: datetime
    ) -> dict[DeliveryStatus, int]:
        """Per-status log counts for one channel. Statuses with no logs report 0."""
        try:
            channel = ChannelType(channel)
        except ValueError:
            raise UnsupportedChannelType(str(channel)) from None
        counts = await self._repo.channel_stats(channel, _as_utc(start), _as_utc(end))
        return {status: counts.get(status, 0) for status in DeliveryStatus}
