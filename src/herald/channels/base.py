"""Channel adapter Protocol, base class and the bounded send helper."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

from herald.channels.addresses import normalize_address
from herald.core.errors import SendError
from herald.core.types import ChannelType
from herald.notifications.models import ChannelPayload

logger = logging.getLogger(__name__)


class SendResult(BaseModel):
    """Provider acknowledgement of a handed-off message."""

    message_id: str
    status: str | None = None


@runtime_checkable
class ChannelAdapter(Protocol):
    """Uniform send contract every transport implements.

    Failures must surface as ``SendError``.
    """

    @property
    def channel(self) -> ChannelType: ...

    async def send_template_message(
        self,
        address: str,
        template_name: str,
        parameters: dict[str, Any],
        payload: ChannelPayload,
    ) -> SendResult: ...

    async def send_custom_message(self, address: str, payload: ChannelPayload) -> SendResult: ...


class BaseChannelAdapter(ABC):
    """Abstract base class for channel adapters.

    Normalizes the destination address and converts any unexpected provider
    exception into a ``SendError`` so callers only ever see the typed error.
    """

    channel: ChannelType

    def format_address(self, address: str) -> str | None:
        return normalize_address(self.channel, address)

    @abstractmethod
    async def _deliver(
        self,
        address: str,
        payload: ChannelPayload,
        template_name: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> SendResult:
        """Hand the message to the provider. Subclasses implement this."""

    async def send_template_message(
        self,
        address: str,
        template_name: str,
        parameters: dict[str, Any],
        payload: ChannelPayload,
    ) -> SendResult:
        return await self._send(address, payload, template_name, parameters)

    async def send_custom_message(self, address: str, payload: ChannelPayload) -> SendResult:
        return await self._send(address, payload)

    async def close(self) -> None:
        """Clean up resources. Override if the adapter holds connections."""

    async def _send(
        self,
        address: str,
        payload: ChannelPayload,
        template_name: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> SendResult:
        formatted = self.format_address(address)
        if formatted is None:
            raise SendError(f"Invalid {self.channel} address: {address!r}", self.channel)
        try:
            result = await self._deliver(formatted, payload, template_name, parameters)
        except SendError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise SendError(f"{self.channel} provider error: {exc}", self.channel) from exc
        logger.debug("%s message %s accepted for %s", self.channel, result.message_id, formatted)
        return result


async def send_payload(
    adapter: ChannelAdapter,
    address: str,
    payload: ChannelPayload,
    *,
    template_name: str | None = None,
    parameters: dict[str, Any] | None = None,
    timeout: float | None = None,
) -> SendResult:
    """Send through *adapter*, bounded by *timeout* seconds.

    Templated logs go through ``send_template_message``, ad-hoc ones through
    ``send_custom_message``. Timeouts and stray exceptions are reported as
    ``SendError``.
    """
    if template_name:
        call = adapter.send_template_message(address, template_name, parameters or {}, payload)
    else:
        call = adapter.send_custom_message(address, payload)

    try:
        return await asyncio.wait_for(call, timeout)
    except SendError:
        raise
    except TimeoutError:
        raise SendError(
            f"{adapter.channel} send timed out after {timeout}s", adapter.channel
        ) from None
    except Exception as exc:
        raise SendError(str(exc) or exc.__class__.__name__, adapter.channel) from exc
