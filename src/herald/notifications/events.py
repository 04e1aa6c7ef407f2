"""Real-time status events: a best-effort, at-most-once side channel.

Publishing never blocks or fails the caller. Each sink call runs as a
background task; sink errors are logged and dropped. Delivery guarantees
belong to the notification logs, not to these events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import httpx

from herald.core.config import EventsConfig

logger = logging.getLogger(__name__)

NOTIFICATION_DISPATCHED = "notification.dispatched"
RETRY_SUCCESS = "notification.retry.success"
RETRY_FAILED = "notification.retry.failed"
PERMANENTLY_FAILED = "notification.permanently_failed"


@runtime_checkable
class EventSink(Protocol):
    """Destination for published events."""

    async def publish(self, event: str, payload: dict[str, Any]) -> None: ...


class InMemoryEventSink:
    """Keeps published events in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def of_type(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


class WebhookEventSink:
    """POSTs each event as JSON to a subscriber URL."""

    def __init__(self, url: str, timeout_seconds: float = 5.0, http: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._http = http or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        resp = await self._http.post(
            self._url,
            json={
                "event": event,
                "payload": payload,
                "published_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        resp.raise_for_status()

    async def close(self) -> None:
        await self._http.aclose()


class EventPublisher:
    """Fans events out to sinks without letting them affect the caller."""

    def __init__(self, sinks: Iterable[EventSink] = ()) -> None:
        self._sinks = list(sinks)
        self._background_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: EventsConfig) -> EventPublisher:
        sinks: list[EventSink] = []
        if config.webhook_url:
            sinks.append(WebhookEventSink(config.webhook_url, config.timeout_seconds))
        return cls(sinks)

    @property
    def sinks(self) -> list[EventSink]:
        return list(self._sinks)

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        """Schedule delivery of *event* to every sink and return immediately."""
        for sink in self._sinks:
            task = asyncio.create_task(self._deliver(sink, event, payload))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight deliveries. Used at shutdown and in tests."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks))

    async def close(self) -> None:
        await self.drain()
        for sink in self._sinks:
            close = getattr(sink, "close", None)
            if close is not None:
                await close()

    @staticmethod
    async def _deliver(sink: EventSink, event: str, payload: dict[str, Any]) -> None:
        try:
            await sink.publish(event, payload)
        except Exception:
            logger.exception("Event sink %s failed to publish %s", type(sink).__name__, event)
