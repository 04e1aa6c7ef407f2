"""Shared test fixtures and helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from herald.channels.mock import MockChannelAdapter
from herald.channels.registry import ChannelRegistry
from herald.core.types import ChannelType
from herald.db.engine import DatabaseManager
from herald.notifications.events import EventPublisher, InMemoryEventSink
from herald.notifications.store import InMemoryTemplateStore
from herald.notifications.templates import TemplateCache, TemplateProcessor
from herald.repositories.postgres.notifications import PostgresNotificationRepository

TEMPLATES_PATH = Path(__file__).resolve().parents[1] / "config" / "notification_templates.yml"

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock for deterministic retry schedules."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def mock_channels(**overrides: MockChannelAdapter) -> ChannelRegistry:
    """A registry with a succeeding mock adapter per channel.

    Keyword arguments (``whatsapp=``, ``sms=``, ``email=``) replace the
    adapter for that channel.
    """
    adapters = {channel: MockChannelAdapter(channel) for channel in ChannelType}
    for name, adapter in overrides.items():
        adapters[ChannelType(name.upper())] = adapter
    return ChannelRegistry(list(adapters.values()))


@pytest.fixture
async def db(tmp_path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'herald.db'}")
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def repo(db):
    return PostgresNotificationRepository(db)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def template_store():
    return InMemoryTemplateStore.from_yaml(TEMPLATES_PATH)


@pytest.fixture
def processor(template_store):
    return TemplateProcessor(TemplateCache(template_store))


@pytest.fixture
def sink():
    return InMemoryEventSink()


@pytest.fixture
def publisher(sink):
    return EventPublisher([sink])
