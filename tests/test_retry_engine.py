"""Tests for the retry engine and the periodic sweeper."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from herald.channels.mock import MockChannelAdapter
from herald.channels.registry import ChannelRegistry
from herald.core.types import ChannelType, DeliveryStatus, NotificationPriority
from herald.notifications import events
from herald.notifications.dispatcher import Dispatcher
from herald.notifications.models import DispatchRequest, Notification, NotificationLog, Recipient
from herald.notifications.retry import RetryEngine, RetryOutcome, Sweeper

from tests.conftest import mock_channels

RECIPIENT = Recipient(id="cust-1", phone="+254712345678", email="amina@example.com")


class RetryHarness:
    """Dispatcher and retry engine sharing one repository, clock and channels."""

    def __init__(self, repo, processor, publisher, clock, **adapters: MockChannelAdapter) -> None:
        self.repo = repo
        self.clock = clock
        self.publisher = publisher
        self.channels = mock_channels(**adapters)
        self.dispatcher = Dispatcher(repo, processor, self.channels, publisher=publisher, clock=clock)
        self.engine = self.make_engine()

    def make_engine(self, channels: ChannelRegistry | None = None, **kwargs) -> RetryEngine:
        return RetryEngine(
            self.repo,
            channels or self.channels,
            publisher=self.publisher,
            clock=self.clock,
            **kwargs,
        )

    async def dispatch(
        self,
        channel: ChannelType,
        priority: NotificationPriority = NotificationPriority.LOW,
        **kwargs,
    ) -> NotificationLog:
        request = {"raw_content": "Your order is ready", "subject": "Order update"}
        request.update(kwargs)
        result = await self.dispatcher.dispatch(
            DispatchRequest(recipient=RECIPIENT, channels=[channel], priority=priority, **request)
        )
        return await self.repo.get_log(result.outcomes[0].log_id)


class TestRetryEngine:
    @pytest.fixture(autouse=True)
    def _setup(self, repo, processor, publisher, sink, clock) -> None:
        self.repo = repo
        self.processor = processor
        self.publisher = publisher
        self.sink = sink
        self.clock = clock

    def harness(self, **adapters: MockChannelAdapter) -> RetryHarness:
        return RetryHarness(self.repo, self.processor, self.publisher, self.clock, **adapters)

    async def test_low_priority_exhausts_after_two_retries(self) -> None:
        sms = MockChannelAdapter(ChannelType.SMS, fail_always=True)
        h = self.harness(sms=sms)
        log = await h.dispatch(ChannelType.SMS)
        assert log.status == DeliveryStatus.FAILED
        assert log.next_retry_at == self.clock.now + timedelta(minutes=15)

        self.clock.advance(minutes=16)
        report = await h.engine.process_failed_notifications()
        assert report.selected == 1
        assert report.rescheduled == 1
        log = await self.repo.get_log(log.id)
        assert log.status == DeliveryStatus.FAILED
        assert log.retry_count == 1
        assert log.next_retry_at == self.clock.now + timedelta(minutes=15)

        self.clock.advance(minutes=16)
        report = await h.engine.process_failed_notifications()
        assert report.permanently_failed == 1
        log = await self.repo.get_log(log.id)
        assert log.status == DeliveryStatus.PERMANENTLY_FAILED
        assert log.retry_count == 2
        assert log.next_retry_at is None
        assert log.error == "Max retry attempts (2) reached"
        assert log.status.is_terminal
        assert sms.attempts == 3
        assert await h.engine.retry_notification(log) == RetryOutcome.SKIPPED

        self.clock.advance(days=1)
        report = await h.engine.process_failed_notifications()
        assert report.selected == 0
        assert sms.attempts == 3

        await self.publisher.drain()
        assert len(self.sink.of_type(events.RETRY_FAILED)) == 2
        permanent = self.sink.of_type(events.PERMANENTLY_FAILED)
        assert len(permanent) == 1
        assert permanent[0]["log_id"] == log.id

    async def test_critical_recovers_on_first_retry(self) -> None:
        whatsapp = MockChannelAdapter(ChannelType.WHATSAPP, fail_times=1)
        h = self.harness(whatsapp=whatsapp)
        log = await h.dispatch(ChannelType.WHATSAPP, NotificationPriority.CRITICAL)
        assert log.next_retry_at == self.clock.now + timedelta(minutes=2)

        self.clock.advance(minutes=3)
        report = await h.engine.process_failed_notifications()
        assert report.succeeded == 1

        log = await self.repo.get_log(log.id)
        assert log.status == DeliveryStatus.SENT
        assert log.retry_count == 1
        assert log.next_retry_at is None
        assert log.error is None
        assert log.message_id == whatsapp.sent[0]["message_id"]

        await self.publisher.drain()
        success = self.sink.of_type(events.RETRY_SUCCESS)
        assert len(success) == 1
        assert success[0]["status"] == "SENT"

    async def test_retry_resends_stored_content(self) -> None:
        sms = MockChannelAdapter(ChannelType.SMS, fail_times=1)
        h = self.harness(sms=sms)
        log = await h.dispatch(
            ChannelType.SMS,
            raw_content=None,
            template_name="driver_assigned",
            variables={"orderNumber": "A1", "merchantName": "Kitchen", "pickupAddress": "Main St"},
        )
        self.clock.advance(minutes=20)
        await h.engine.process_failed_notifications()
        assert sms.sent[0]["body"] == log.content
        assert sms.sent[0]["template_name"] == "driver_assigned"
        assert sms.sent[0]["parameters"]["orderNumber"] == "A1"

    async def test_not_due_not_selected(self) -> None:
        sms = MockChannelAdapter(ChannelType.SMS, fail_always=True)
        h = self.harness(sms=sms)
        await h.dispatch(ChannelType.SMS)
        self.clock.advance(minutes=5)
        report = await h.engine.process_failed_notifications()
        assert report.selected == 0
        assert sms.attempts == 1

    async def test_sent_logs_never_selected(self) -> None:
        h = self.harness()
        await h.dispatch(ChannelType.WHATSAPP)
        self.clock.advance(days=1)
        report = await h.engine.process_failed_notifications()
        assert report.selected == 0

    async def test_concurrent_sweeps_retry_once(self) -> None:
        whatsapp = MockChannelAdapter(ChannelType.WHATSAPP, fail_times=1, delay_seconds=0.05)
        h = self.harness(whatsapp=whatsapp)
        log = await h.dispatch(ChannelType.WHATSAPP, NotificationPriority.HIGH)
        self.clock.advance(minutes=6)

        other = h.make_engine()
        first, second = await asyncio.gather(
            h.engine.process_failed_notifications(),
            other.process_failed_notifications(),
        )
        assert first.succeeded + second.succeeded == 1
        assert whatsapp.attempts == 2

        log = await self.repo.get_log(log.id)
        assert log.status == DeliveryStatus.SENT
        assert log.retry_count == 1

    async def test_leased_log_skipped(self) -> None:
        sms = MockChannelAdapter(ChannelType.SMS, fail_always=True)
        h = self.harness(sms=sms)
        log = await h.dispatch(ChannelType.SMS)
        self.clock.advance(minutes=16)
        claimed = await self.repo.claim_log(
            log.id, 0, "other-worker", self.clock.now, self.clock.now + timedelta(minutes=5)
        )
        assert claimed

        report = await h.engine.process_failed_notifications()
        assert report.selected == 0
        assert await h.engine.retry_notification(log) == RetryOutcome.SKIPPED
        assert sms.attempts == 1

    async def test_expired_lease_reclaimed(self) -> None:
        sms = MockChannelAdapter(ChannelType.SMS, fail_times=1)
        h = self.harness(sms=sms)
        log = await h.dispatch(ChannelType.SMS)
        self.clock.advance(minutes=16)
        await self.repo.claim_log(
            log.id, 0, "crashed-worker", self.clock.now, self.clock.now + timedelta(minutes=5)
        )
        self.clock.advance(minutes=6)
        report = await h.engine.process_failed_notifications()
        assert report.succeeded == 1

    async def test_stale_exhausted_log_marked_permanent(self) -> None:
        sms = MockChannelAdapter(ChannelType.SMS)
        h = self.harness(sms=sms)
        notification = Notification(type="SMS", recipient_id="cust-1", created_at=self.clock.now)
        await self.repo.create_notification(notification)
        log = NotificationLog(
            notification_id=notification.id,
            type=ChannelType.SMS,
            recipient="+254712345678",
            content="Hi",
            status=DeliveryStatus.FAILED,
            retry_count=2,
            next_retry_at=self.clock.now + timedelta(days=1),
            error="provider down",
            created_at=self.clock.now,
            updated_at=self.clock.now,
        )
        await self.repo.create_log(log)

        report = await h.engine.process_failed_notifications()
        assert report.permanently_failed == 1
        stored = await self.repo.get_log(log.id)
        assert stored.status == DeliveryStatus.PERMANENTLY_FAILED
        assert stored.retry_count == 2
        assert stored.next_retry_at is None
        assert stored.error == "Max retry attempts (2) reached"
        assert sms.attempts == 0

    async def test_one_failure_does_not_stop_others(self) -> None:
        h = self.harness(
            whatsapp=MockChannelAdapter(ChannelType.WHATSAPP, fail_times=1),
            email=MockChannelAdapter(ChannelType.EMAIL, fail_times=1),
        )
        whatsapp_log = await h.dispatch(ChannelType.WHATSAPP)
        email_log = await h.dispatch(ChannelType.EMAIL)

        engine = h.make_engine(channels=ChannelRegistry([h.channels.get(ChannelType.WHATSAPP)]))
        self.clock.advance(minutes=16)
        report = await engine.process_failed_notifications()
        assert report.selected == 2
        assert report.succeeded == 1
        assert report.rescheduled == 1

        assert (await self.repo.get_log(whatsapp_log.id)).status == DeliveryStatus.SENT
        email = await self.repo.get_log(email_log.id)
        assert email.status == DeliveryStatus.FAILED
        assert email.retry_count == 1
        assert "Unsupported notification type" in email.error

    async def test_slow_send_does_not_block_other_rows(self) -> None:
        whatsapp = MockChannelAdapter(ChannelType.WHATSAPP, fail_times=1)
        email = MockChannelAdapter(ChannelType.EMAIL, fail_times=1)
        h = self.harness(whatsapp=whatsapp, email=email)
        await h.dispatch(ChannelType.WHATSAPP)
        email_log = await h.dispatch(ChannelType.EMAIL)
        whatsapp._delay = 2.0

        engine = h.make_engine(max_concurrency=2, send_timeout=None)
        self.clock.advance(minutes=16)
        sweep = asyncio.create_task(engine.process_failed_notifications())

        async def _fast_row_sent() -> None:
            while not email.sent or whatsapp.attempts < 2:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_fast_row_sent(), timeout=1.5)
        assert not sweep.done()
        assert whatsapp.sent == []

        report = await sweep
        assert report.succeeded == 2
        assert (await self.repo.get_log(email_log.id)).status == DeliveryStatus.SENT

    async def test_retry_looks_up_priority(self) -> None:
        h = self.harness(sms=MockChannelAdapter(ChannelType.SMS, fail_always=True))
        log = await h.dispatch(ChannelType.SMS, NotificationPriority.MEDIUM)
        self.clock.advance(minutes=11)
        assert await h.engine.retry_notification(log) == RetryOutcome.RESCHEDULED
        stored = await self.repo.get_log(log.id)
        assert stored.next_retry_at == self.clock.now + timedelta(minutes=10)

    async def test_backoff_follows_incremented_retry_count(self) -> None:
        h = self.harness(sms=MockChannelAdapter(ChannelType.SMS, fail_always=True))
        log = await h.dispatch(ChannelType.SMS, NotificationPriority.MEDIUM)
        assert log.next_retry_at == self.clock.now + timedelta(minutes=10)

        gaps = []
        for _ in range(2):
            self.clock.advance(minutes=25)
            await h.engine.process_failed_notifications()
            stored = await self.repo.get_log(log.id)
            gaps.append((stored.retry_count, stored.next_retry_at - self.clock.now))
        assert gaps == [(1, timedelta(minutes=10)), (2, timedelta(minutes=20))]

        self.clock.advance(minutes=25)
        await h.engine.process_failed_notifications()
        stored = await self.repo.get_log(log.id)
        assert stored.status == DeliveryStatus.PERMANENTLY_FAILED
        assert stored.retry_count == 3

    async def test_retry_count_never_exceeds_budget(self) -> None:
        h = self.harness(whatsapp=MockChannelAdapter(ChannelType.WHATSAPP, fail_always=True))
        log = await h.dispatch(ChannelType.WHATSAPP, NotificationPriority.CRITICAL)
        for _ in range(10):
            self.clock.advance(hours=2)
            await h.engine.process_failed_notifications()
        stored = await self.repo.get_log(log.id)
        assert stored.status == DeliveryStatus.PERMANENTLY_FAILED
        assert stored.retry_count == 5

    async def test_mark_as_permanently_failed(self) -> None:
        h = self.harness(sms=MockChannelAdapter(ChannelType.SMS, fail_always=True))
        log = await h.dispatch(ChannelType.SMS, NotificationPriority.HIGH)
        updated = await h.engine.mark_as_permanently_failed(log)
        assert updated.status == DeliveryStatus.PERMANENTLY_FAILED
        assert updated.error == "Max retry attempts (4) reached"
        assert updated.next_retry_at is None
        assert await h.engine.mark_as_permanently_failed(log) is None

        await self.publisher.drain()
        assert len(self.sink.of_type(events.PERMANENTLY_FAILED)) == 1

    async def test_engine_rejects_zero_concurrency(self) -> None:
        with pytest.raises(ValueError):
            RetryEngine(self.repo, mock_channels(), max_concurrency=0)


class _StubEngine:
    def __init__(self, fail: bool = False) -> None:
        self.calls = 0
        self.fail = fail

    async def process_failed_notifications(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("database unavailable")


class TestSweeper:
    async def test_runs_requested_sweeps(self) -> None:
        engine = _StubEngine()
        sweeper = Sweeper(engine, interval_seconds=0)
        await sweeper.run(max_sweeps=3)
        assert engine.calls == 3
        assert sweeper.sweeps == 3

    async def test_errors_do_not_stop_loop(self) -> None:
        engine = _StubEngine(fail=True)
        sweeper = Sweeper(engine, interval_seconds=0)
        await sweeper.run(max_sweeps=2)
        assert engine.calls == 2
        assert sweeper.consecutive_failures == 2

    async def test_start_and_stop(self) -> None:
        engine = _StubEngine()
        sweeper = Sweeper(engine, interval_seconds=60)
        sweeper.start()
        await asyncio.sleep(0.01)
        await sweeper.stop()
        assert engine.calls == 1
