"""Delivery tracking and retry engine.

State machine for a delivery log::

    PENDING -> SENT                 first attempt succeeded
    PENDING -> FAILED               first attempt failed
    FAILED  -> SENT                 retry succeeded
    FAILED  -> FAILED               retry failed, budget left (new next_retry_at)
    FAILED  -> PERMANENTLY_FAILED   budget exhausted

SENT and PERMANENTLY_FAILED are terminal. A sweep only ever picks up FAILED
logs, and every retry first takes a lease on its log with a conditional
update, so concurrent sweeps (in one process or across instances) never
retry the same attempt twice.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import StrEnum

from herald.channels.base import send_payload
from herald.channels.registry import ChannelRegistry
from herald.core.errors import SendError, UnsupportedChannelType
from herald.core.types import DeliveryStatus, NotificationPriority
from herald.notifications import events
from herald.notifications.events import EventPublisher
from herald.notifications.models import NotificationLog, SweepReport
from herald.notifications.policy import BackoffSchedule, RetryPolicy
from herald.repositories.protocols import NotificationRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetryOutcome(StrEnum):
    SENT = "sent"
    RESCHEDULED = "rescheduled"
    PERMANENTLY_FAILED = "permanently_failed"
    SKIPPED = "skipped"


class RetryEngine:
    """Retries failed deliveries according to their priority's policy.

    Args:
        repository: Notification and delivery log storage.
        channels: Adapter per channel type.
        publisher: Best-effort real-time event publisher.
        backoff: Policy table and backoff schedule.
        send_timeout: Upper bound in seconds for each adapter call.
        max_concurrency: Retries in flight at once within a sweep.
        batch_size: Maximum logs selected per sweep.
        lease_seconds: How long a claimed log stays reserved for this worker.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: NotificationRepository,
        channels: ChannelRegistry,
        publisher: EventPublisher | None = None,
        backoff: BackoffSchedule | None = None,
        send_timeout: float | None = 15.0,
        max_concurrency: int = 10,
        batch_size: int = 100,
        lease_seconds: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._repo = repository
        self._channels = channels
        self._publisher = publisher or EventPublisher()
        self._backoff = backoff or BackoffSchedule()
        self._send_timeout = send_timeout
        self._max_concurrency = max_concurrency
        self._batch_size = batch_size
        self._lease = timedelta(seconds=lease_seconds)
        self._clock = clock

    async def process_failed_notifications(self) -> SweepReport:
        """Run one sweep over FAILED logs that are due or out of budget.

        Each selected log is retried independently with bounded concurrency;
        one log's failure never stops the others. Safe to call more often than
        the backoff granularity and from several instances at once.
        """
        now = self._clock()
        candidates = await self._repo.find_retry_candidates(
            now, self._backoff.max_attempts(), self._batch_size
        )
        report = SweepReport(selected=len(candidates))
        if not candidates:
            return report

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _run(log: NotificationLog, priority: NotificationPriority) -> RetryOutcome:
            async with semaphore:
                try:
                    return await self.retry_notification(log, priority)
                except Exception:
                    logger.exception("Retry of notification log %s aborted", log.id)
                    return RetryOutcome.SKIPPED

        outcomes = await asyncio.gather(*(_run(c.log, c.priority) for c in candidates))
        for outcome in outcomes:
            if outcome == RetryOutcome.SENT:
                report.succeeded += 1
            elif outcome == RetryOutcome.RESCHEDULED:
                report.rescheduled += 1
            elif outcome == RetryOutcome.PERMANENTLY_FAILED:
                report.permanently_failed += 1
            else:
                report.skipped += 1

        logger.info(
            "Retry sweep: %d selected, %d sent, %d rescheduled, %d permanently failed, %d skipped",
            report.selected,
            report.succeeded,
            report.rescheduled,
            report.permanently_failed,
            report.skipped,
        )
        return report

    async def retry_notification(
        self, log: NotificationLog, priority: NotificationPriority | None = None
    ) -> RetryOutcome:
        """Make one retry attempt for a FAILED log.

        Content is resent exactly as rendered at dispatch time. Send errors
        are recorded on the log rather than raised.
        """
        if log.status.is_terminal:
            return RetryOutcome.SKIPPED
        if priority is None:
            priority = await self._priority_of(log)
        policy = self._backoff.policy(priority)

        token = await self._claim(log)
        if token is None:
            return RetryOutcome.SKIPPED

        if log.retry_count >= policy.max_attempts:
            await self._finish_permanently_failed(log, policy, token)
            return RetryOutcome.PERMANENTLY_FAILED

        try:
            adapter = self._channels.get(log.type)
            result = await send_payload(
                adapter,
                log.recipient,
                log.payload,
                template_name=log.template_name,
                parameters=log.parameters,
                timeout=self._send_timeout,
            )
        except (SendError, UnsupportedChannelType) as exc:
            return await self._record_failure(log, priority, policy, token, str(exc))
        except BaseException:
            await self._repo.release_claim(log.id, token)
            raise

        retry_count = log.retry_count + 1
        updated = await self._repo.finish_retry(
            log.id,
            token,
            self._clock(),
            status=DeliveryStatus.SENT,
            retry_count=retry_count,
            next_retry_at=None,
            error=None,
            message_id=result.message_id,
        )
        if updated is None:
            logger.warning("Lease on notification log %s lost before recording success", log.id)
            return RetryOutcome.SKIPPED

        logger.info(
            "Retry %d of %s notification log %s succeeded (message %s)",
            retry_count,
            log.type,
            log.id,
            result.message_id,
        )
        self._publish(events.RETRY_SUCCESS, updated)
        return RetryOutcome.SENT

    async def mark_as_permanently_failed(
        self, log: NotificationLog, priority: NotificationPriority | None = None
    ) -> NotificationLog | None:
        """Move a FAILED log to the terminal PERMANENTLY_FAILED state.

        Returns the updated log, or None if another worker holds the log or it
        is no longer FAILED.
        """
        if priority is None:
            priority = await self._priority_of(log)
        token = await self._claim(log)
        if token is None:
            return None
        return await self._finish_permanently_failed(log, self._backoff.policy(priority), token)

    async def _record_failure(
        self,
        log: NotificationLog,
        priority: NotificationPriority,
        policy: RetryPolicy,
        token: str,
        error: str,
    ) -> RetryOutcome:
        retry_count = log.retry_count + 1
        now = self._clock()

        if retry_count >= policy.max_attempts:
            logger.warning(
                "Retry %d of %s notification log %s failed, budget exhausted: %s",
                retry_count,
                log.type,
                log.id,
                error,
            )
            updated = await self._repo.finish_retry(
                log.id,
                token,
                now,
                status=DeliveryStatus.PERMANENTLY_FAILED,
                retry_count=retry_count,
                next_retry_at=None,
                error=_exhausted_message(policy),
            )
            if updated is None:
                return RetryOutcome.SKIPPED
            self._publish(events.RETRY_FAILED, updated, error=error)
            self._publish(events.PERMANENTLY_FAILED, updated)
            return RetryOutcome.PERMANENTLY_FAILED

        next_retry_at = self._backoff.next_retry_at(priority, retry_count, now)
        updated = await self._repo.finish_retry(
            log.id,
            token,
            now,
            retry_count=retry_count,
            next_retry_at=next_retry_at,
            error=error,
        )
        if updated is None:
            return RetryOutcome.SKIPPED

        logger.warning(
            "Retry %d of %s notification log %s failed, next attempt at %s: %s",
            retry_count,
            log.type,
            log.id,
            next_retry_at.isoformat(),
            error,
        )
        self._publish(events.RETRY_FAILED, updated, error=error)
        return RetryOutcome.RESCHEDULED

    async def _finish_permanently_failed(
        self, log: NotificationLog, policy: RetryPolicy, token: str
    ) -> NotificationLog | None:
        updated = await self._repo.finish_retry(
            log.id,
            token,
            self._clock(),
            status=DeliveryStatus.PERMANENTLY_FAILED,
            next_retry_at=None,
            error=_exhausted_message(policy),
        )
        if updated is None:
            return None
        logger.warning(
            "Notification log %s (%s to %s) permanently failed after %d retries",
            log.id,
            log.type,
            log.recipient,
            updated.retry_count,
        )
        self._publish(events.PERMANENTLY_FAILED, updated)
        return updated

    async def _claim(self, log: NotificationLog) -> str | None:
        now = self._clock()
        token = uuid.uuid4().hex
        claimed = await self._repo.claim_log(log.id, log.retry_count, token, now, now + self._lease)
        if not claimed:
            logger.debug("Notification log %s already claimed or changed; skipping", log.id)
            return None
        return token

    async def _priority_of(self, log: NotificationLog) -> NotificationPriority:
        notification = await self._repo.get_notification(log.notification_id)
        if notification is None:
            raise KeyError(f"Notification {log.notification_id!r} not found")
        return notification.priority

    def _publish(self, event: str, log: NotificationLog, **extra: str) -> None:
        payload = {
            "log_id": log.id,
            "notification_id": log.notification_id,
            "type": log.type.value,
            "recipient": log.recipient,
            "status": log.status.value,
            "retry_count": log.retry_count,
            "next_retry_at": log.next_retry_at.isoformat() if log.next_retry_at else None,
            "error": log.error,
            **extra,
        }
        self._publisher.publish(event, payload)


def _exhausted_message(policy: RetryPolicy) -> str:
    return f"Max retry attempts ({policy.max_attempts}) reached"


class Sweeper:
    """Drives ``process_failed_notifications`` on a fixed interval.

    A failing sweep is logged and the loop carries on with the next tick.
    """

    def __init__(self, engine: RetryEngine, interval_seconds: float = 60.0) -> None:
        self._engine = engine
        self.interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.consecutive_failures = 0
        self.sweeps = 0

    def start(self) -> None:
        """Start the sweep loop as a background task."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="herald-retry-sweeper")
        logger.info("Retry sweeper started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        """Signal the loop to stop and wait for the current sweep to finish."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
            logger.info("Retry sweeper stopped")

    async def run(self, max_sweeps: int | None = None) -> None:
        """Sweep until stopped, or until *max_sweeps* sweeps have run."""
        while not self._stop_event.is_set():
            try:
                await self._engine.process_failed_notifications()
                self.consecutive_failures = 0
            except Exception:
                self.consecutive_failures += 1
                logger.exception(
                    "Retry sweep error (consecutive failures: %d)", self.consecutive_failures
                )
            self.sweeps += 1
            if max_sweeps is not None and self.sweeps >= max_sweeps:
                return
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                pass
