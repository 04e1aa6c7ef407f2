"""Tests for the best-effort event publisher and its sinks."""

from __future__ import annotations

import json

import pytest

from herald.core.config import EventsConfig
from herald.notifications import events
from herald.notifications.events import (
    EventPublisher,
    EventSink,
    InMemoryEventSink,
    WebhookEventSink,
)

WEBHOOK_URL = "https://hooks.example.com/herald"


class _BrokenSink:
    async def publish(self, event, payload):
        raise RuntimeError("socket server down")


class TestEventPublisher:
    async def test_publish_reaches_every_sink(self) -> None:
        first, second = InMemoryEventSink(), InMemoryEventSink()
        publisher = EventPublisher([first, second])
        publisher.publish(events.RETRY_SUCCESS, {"log_id": "l-1"})
        await publisher.drain()
        assert first.of_type(events.RETRY_SUCCESS) == [{"log_id": "l-1"}]
        assert second.events == [(events.RETRY_SUCCESS, {"log_id": "l-1"})]

    async def test_sink_failure_is_swallowed(self, caplog) -> None:
        healthy = InMemoryEventSink()
        publisher = EventPublisher([_BrokenSink(), healthy])
        publisher.publish(events.PERMANENTLY_FAILED, {"log_id": "l-1"})
        await publisher.drain()
        assert len(healthy.events) == 1
        assert "failed to publish" in caplog.text

    async def test_no_sinks(self) -> None:
        publisher = EventPublisher()
        publisher.publish(events.NOTIFICATION_DISPATCHED, {})
        await publisher.drain()

    def test_from_config_without_webhook(self) -> None:
        assert EventPublisher.from_config(EventsConfig()).sinks == []

    async def test_from_config_with_webhook(self) -> None:
        publisher = EventPublisher.from_config(EventsConfig(webhook_url=WEBHOOK_URL))
        assert isinstance(publisher.sinks[0], WebhookEventSink)
        await publisher.close()

    def test_sinks_satisfy_protocol(self) -> None:
        assert isinstance(InMemoryEventSink(), EventSink)
        assert isinstance(WebhookEventSink(WEBHOOK_URL), EventSink)


class TestWebhookEventSink:
    async def test_posts_event(self, httpx_mock) -> None:
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", json={"ok": True})
        sink = WebhookEventSink(WEBHOOK_URL)
        try:
            await sink.publish(events.RETRY_FAILED, {"log_id": "l-1", "retry_count": 1})
            body = json.loads(httpx_mock.get_request().content)
            assert body["event"] == "notification.retry.failed"
            assert body["payload"] == {"log_id": "l-1", "retry_count": 1}
            assert "published_at" in body
        finally:
            await sink.close()

    async def test_http_error_raises(self, httpx_mock) -> None:
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=503)
        sink = WebhookEventSink(WEBHOOK_URL)
        try:
            with pytest.raises(Exception):
                await sink.publish(events.RETRY_FAILED, {})
        finally:
            await sink.close()

    async def test_publisher_absorbs_webhook_errors(self, httpx_mock) -> None:
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=500)
        publisher = EventPublisher([WebhookEventSink(WEBHOOK_URL)])
        publisher.publish(events.RETRY_FAILED, {"log_id": "l-1"})
        await publisher.close()
