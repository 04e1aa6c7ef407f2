"""Dispatch core: the single entry point that turns a request into deliveries.

Everything that can be rejected (templates, variables, channels, addresses)
is checked before the first record is written. After that, each requested
channel gets exactly one delivery log reflecting its first attempt; failures
are left to the retry engine.

A request is rejected for its recipient only when none of the requested
channels resolves to an address. Channels that do not resolve get a
PERMANENTLY_FAILED log saying why, and the rest are sent as usual.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from herald.channels.addresses import normalize_address
from herald.channels.base import ChannelAdapter, send_payload
from herald.channels.registry import ChannelRegistry
from herald.core.errors import InvalidRecipientError, SendError, ValidationError
from herald.core.types import ChannelType, DeliveryStatus
from herald.notifications import events
from herald.notifications.events import EventPublisher
from herald.notifications.models import (
    ChannelOutcome,
    ChannelPayload,
    DispatchRequest,
    DispatchResult,
    Notification,
    NotificationLog,
    Template,
)
from herald.notifications.policy import BackoffSchedule
from herald.notifications.templates import TemplateProcessor
from herald.repositories.protocols import NotificationRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(variables: dict[str, Any]) -> dict[str, Any]:
    """Coerce template variables into something the JSON column accepts."""
    return json.loads(json.dumps(variables, default=str))


@dataclass
class _DeliveryPlan:
    channel: ChannelType
    address: str
    adapter: ChannelAdapter
    payload: ChannelPayload
    template: Template | None
    address_error: InvalidRecipientError | None = None


class Dispatcher:
    """Creates notifications and makes the first delivery attempt per channel.

    Args:
        repository: Notification and delivery log storage.
        processor: Template resolution and rendering.
        channels: Adapter per channel type.
        publisher: Best-effort real-time event publisher.
        backoff: Schedule used to set ``next_retry_at`` on first failures.
        send_timeout: Upper bound in seconds for each adapter call.
        default_channel: Channel used when a request names none.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: NotificationRepository,
        processor: TemplateProcessor,
        channels: ChannelRegistry,
        publisher: EventPublisher | None = None,
        backoff: BackoffSchedule | None = None,
        send_timeout: float | None = 15.0,
        default_channel: ChannelType = ChannelType.WHATSAPP,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repository
        self._processor = processor
        self._channels = channels
        self._publisher = publisher or EventPublisher()
        self._backoff = backoff or BackoffSchedule()
        self._send_timeout = send_timeout
        self._default_channel = ChannelType(default_channel)
        self._clock = clock

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        """Send a notification over every requested channel.

        Steps:
            1. Resolve, validate, render and format the content per channel.
            2. Create the Notification record.
            3. Send per channel and record one NotificationLog each.
            4. Publish a ``notification.dispatched`` event (best effort).

        Returns:
            The notification with its first-attempt outcome per channel.

        Raises:
            ValidationError: If the request cannot be delivered as given.
                Nothing is persisted or sent in that case.
        """
        if not request.template_name and request.raw_content is None:
            raise ValidationError("Either template_name or raw_content is required")

        channels = list(dict.fromkeys(request.channels)) or [self._default_channel]
        plans = [await self._prepare(request, channel) for channel in channels]
        if all(p.address_error is not None for p in plans):
            raise plans[0].address_error

        template_ids = [p.template.id for p in plans if p.template is not None]
        notification = Notification(
            type=channels[0].value if len(channels) == 1 else "MULTICHANNEL",
            recipient_id=request.recipient.id,
            template_id=template_ids[0] if template_ids else None,
            priority=request.priority,
            correlation_ids=request.correlation_ids,
            created_at=self._clock(),
        )
        await self._repo.create_notification(notification)

        outcomes = await asyncio.gather(
            *(self._deliver(notification, request, plan) for plan in plans)
        )
        result = DispatchResult(notification=notification, outcomes=list(outcomes))

        logger.info(
            "Dispatched notification %s (%s) to %s: %s",
            notification.id,
            notification.priority,
            notification.recipient_id,
            ", ".join(f"{o.channel}={o.status}" for o in outcomes),
        )
        self._publisher.publish(
            events.NOTIFICATION_DISPATCHED,
            {
                "notification_id": notification.id,
                "recipient_id": notification.recipient_id,
                "priority": notification.priority.value,
                "outcomes": [o.model_dump(mode="json") for o in outcomes],
            },
        )
        return result

    async def _prepare(self, request: DispatchRequest, channel: ChannelType) -> _DeliveryPlan:
        adapter = self._channels.get(channel)
        address_error = None
        try:
            address = self._resolve_address(request, channel)
        except InvalidRecipientError as exc:
            recipient = request.recipient
            address = (recipient.email if channel == ChannelType.EMAIL else recipient.phone) or ""
            address_error = exc

        template: Template | None = None
        if request.template_name:
            template = await self._processor.resolve(request.template_name, channel, request.scope)
            payload = self._processor.process(template, request.variables)
        else:
            payload = self._processor.format_for_channel(
                channel,
                request.raw_content or "",
                request.variables,
                subject=request.subject,
            )
        return _DeliveryPlan(
            channel=channel,
            address=address,
            adapter=adapter,
            payload=payload,
            template=template,
            address_error=address_error,
        )

    @staticmethod
    def _resolve_address(request: DispatchRequest, channel: ChannelType) -> str:
        recipient = request.recipient
        raw = recipient.email if channel == ChannelType.EMAIL else recipient.phone
        if not raw:
            kind = "email address" if channel == ChannelType.EMAIL else "phone number"
            raise InvalidRecipientError(
                f"Recipient {recipient.id!r} has no {kind} for {channel}"
            )
        address = normalize_address(channel, raw)
        if address is None:
            raise InvalidRecipientError(f"Malformed {channel} address for recipient {recipient.id!r}: {raw!r}")
        return address

    async def _deliver(
        self, notification: Notification, request: DispatchRequest, plan: _DeliveryPlan
    ) -> ChannelOutcome:
        template_name = plan.template.name if plan.template else None
        log = NotificationLog(
            notification_id=notification.id,
            type=plan.channel,
            recipient=plan.address,
            template_name=template_name,
            parameters=_jsonable(request.variables),
            content=plan.payload.body,
            subject=plan.payload.subject,
            sections=plan.payload.sections,
        )

        if plan.address_error is not None:
            # Unresolvable address: terminal from the start.
            log.status = DeliveryStatus.PERMANENTLY_FAILED
            log.error = str(plan.address_error)
            log.created_at = log.updated_at = self._clock()
            logger.warning(
                "%s delivery for notification %s skipped: %s",
                plan.channel,
                notification.id,
                plan.address_error,
            )
            await self._repo.create_log(log)
            return self._outcome(log)

        try:
            result = await send_payload(
                plan.adapter,
                plan.address,
                plan.payload,
                template_name=template_name,
                parameters=log.parameters,
                timeout=self._send_timeout,
            )
        except SendError as exc:
            now = self._clock()
            log.status = DeliveryStatus.FAILED
            log.error = str(exc)
            log.next_retry_at = self._backoff.next_retry_at(notification.priority, 1, now)
            log.created_at = log.updated_at = now
            logger.warning(
                "%s delivery for notification %s failed, retry at %s: %s",
                plan.channel,
                notification.id,
                log.next_retry_at.isoformat(),
                exc,
            )
        else:
            now = self._clock()
            log.status = DeliveryStatus.SENT
            log.message_id = result.message_id
            log.created_at = log.updated_at = now

        await self._repo.create_log(log)
        return self._outcome(log)

    @staticmethod
    def _outcome(log: NotificationLog) -> ChannelOutcome:
        return ChannelOutcome(
            channel=log.type,
            log_id=log.id,
            status=log.status,
            message_id=log.message_id,
            error=log.error,
            next_retry_at=log.next_retry_at,
        )
