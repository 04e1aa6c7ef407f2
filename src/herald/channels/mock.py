"""Mock channel adapter for development and tests."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

from herald.channels.base import BaseChannelAdapter, SendResult
from herald.core.errors import SendError
from herald.core.types import ChannelType
from herald.notifications.models import ChannelPayload


class MockChannelAdapter(BaseChannelAdapter):
    """Records every message instead of sending it.

    Args:
        channel: The channel this adapter serves.
        fail_times: Number of initial sends that fail before sends succeed.
        fail_always: Fail every send.
        delay_seconds: Simulated provider latency.
    """

    def __init__(
        self,
        channel: ChannelType,
        fail_times: int = 0,
        fail_always: bool = False,
        delay_seconds: float = 0.0,
    ) -> None:
        self.channel = channel
        self._fail_remaining = fail_times
        self._fail_always = fail_always
        self._delay = delay_seconds
        self.attempts = 0
        self.sent: list[dict[str, Any]] = []

    async def _deliver(
        self,
        address: str,
        payload: ChannelPayload,
        template_name: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> SendResult:
        self.attempts += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._fail_always or self._fail_remaining > 0:
            self._fail_remaining = max(0, self._fail_remaining - 1)
            raise SendError(f"Mock {self.channel} provider rejected message", self.channel)

        message_id = f"mock-{uuid.uuid4().hex[:12]}"
        self.sent.append(
            {
                "message_id": message_id,
                "address": address,
                "body": payload.body,
                "subject": payload.subject,
                "template_name": template_name,
                "parameters": parameters,
            }
        )
        return SendResult(message_id=message_id, status="delivered")
