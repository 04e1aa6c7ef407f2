"""Component wiring for the notification engine."""

from __future__ import annotations

from dataclasses import dataclass

from herald.channels.registry import ChannelRegistry, create_channel_registry
from herald.core.config import Settings
from herald.core.types import ChannelType
from herald.db.engine import DatabaseManager
from herald.notifications.analytics import DeliveryAnalyticsService
from herald.notifications.dispatcher import Dispatcher
from herald.notifications.events import EventPublisher
from herald.notifications.policy import BackoffSchedule
from herald.notifications.retry import RetryEngine, Sweeper
from herald.notifications.store import InMemoryTemplateStore
from herald.notifications.templates import TemplateCache, TemplateProcessor
from herald.repositories.postgres.notifications import PostgresNotificationRepository
from herald.repositories.protocols import NotificationRepository, TemplateRepository


@dataclass
class Herald:
    """The assembled engine: dispatch, retry sweeps and analytics."""

    settings: Settings
    db: DatabaseManager
    repository: NotificationRepository
    processor: TemplateProcessor
    channels: ChannelRegistry
    publisher: EventPublisher
    dispatcher: Dispatcher
    retry_engine: RetryEngine
    sweeper: Sweeper
    analytics: DeliveryAnalyticsService

    async def close(self) -> None:
        await self.sweeper.stop()
        await self.publisher.close()
        await self.channels.close()
        await self.db.close()


def create_herald(
    settings: Settings | None = None,
    db: DatabaseManager | None = None,
    template_store: TemplateRepository | None = None,
    channels: ChannelRegistry | None = None,
    publisher: EventPublisher | None = None,
) -> Herald:
    """Build the engine from settings.

    Uses the factory pattern so tests can swap in an in-memory database,
    mock channels or a recording publisher.

    Args:
        settings: Application settings. Defaults to Settings().
        db: Optional pre-built DatabaseManager.
        template_store: Optional template source. Defaults to the YAML file
            at ``settings.notification.templates_path``.
        channels: Optional pre-built channel registry.
        publisher: Optional pre-built event publisher.
    """
    if settings is None:
        settings = Settings()

    db = db or DatabaseManager.from_config(settings.database)
    repository = PostgresNotificationRepository(db)

    if template_store is None:
        template_store = InMemoryTemplateStore.from_yaml(settings.notification.templates_path)
    cache = TemplateCache(template_store, ttl_seconds=settings.notification.template_cache_ttl_seconds)
    processor = TemplateProcessor(cache)

    channels = channels or create_channel_registry(settings.channels)
    publisher = publisher or EventPublisher.from_config(settings.events)
    backoff = BackoffSchedule(jitter_ratio=settings.retry.jitter_ratio)
    send_timeout = settings.channels.send_timeout_seconds

    dispatcher = Dispatcher(
        repository=repository,
        processor=processor,
        channels=channels,
        publisher=publisher,
        backoff=backoff,
        send_timeout=send_timeout,
        default_channel=ChannelType(settings.notification.default_channel.upper()),
    )
    retry_engine = RetryEngine(
        repository=repository,
        channels=channels,
        publisher=publisher,
        backoff=backoff,
        send_timeout=send_timeout,
        max_concurrency=settings.retry.max_concurrency,
        batch_size=settings.retry.batch_size,
        lease_seconds=settings.retry.lease_seconds,
    )
    return Herald(
        settings=settings,
        db=db,
        repository=repository,
        processor=processor,
        channels=channels,
        publisher=publisher,
        dispatcher=dispatcher,
        retry_engine=retry_engine,
        sweeper=Sweeper(retry_engine, interval_seconds=settings.retry.sweep_interval_seconds),
        analytics=DeliveryAnalyticsService(repository),
    )
