"""WhatsApp adapter using the Twilio Messages REST API."""

from __future__ import annotations

from typing import Any

import httpx

from herald.channels.base import BaseChannelAdapter, SendResult
from herald.core.config import ChannelConfig
from herald.core.errors import SendError
from herald.core.types import ChannelType
from herald.notifications.models import ChannelPayload


class TwilioWhatsAppAdapter(BaseChannelAdapter):
    """Sends WhatsApp messages through Twilio.

    Template messages are sent as their locally rendered body, so a retry
    delivers exactly the content produced at dispatch time.
    """

    channel = ChannelType.WHATSAPP

    def __init__(self, config: ChannelConfig, http: httpx.AsyncClient | None = None) -> None:
        if not (config.twilio_account_sid and config.twilio_auth_token and config.twilio_whatsapp_number):
            raise ValueError("Twilio configuration missing")
        self._account_sid = config.twilio_account_sid
        self._from = f"whatsapp:{config.twilio_whatsapp_number}"
        self._http = http or httpx.AsyncClient(
            base_url=config.twilio_base_url,
            auth=(config.twilio_account_sid, config.twilio_auth_token),
            timeout=httpx.Timeout(config.send_timeout_seconds),
        )

    async def _deliver(
        self,
        address: str,
        payload: ChannelPayload,
        template_name: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> SendResult:
        resp = await self._http.post(
            f"/2010-04-01/Accounts/{self._account_sid}/Messages.json",
            data={"From": self._from, "To": f"whatsapp:{address}", "Body": payload.body},
        )
        if resp.status_code >= 400:
            raise SendError(
                f"Twilio rejected message ({resp.status_code}): {_error_message(resp)}",
                self.channel,
            )
        data = resp.json()
        return SendResult(message_id=data["sid"], status=data.get("status"))

    async def close(self) -> None:
        await self._http.aclose()


def _error_message(resp: httpx.Response) -> str:
    try:
        return resp.json().get("message") or resp.text
    except ValueError:
        return resp.text
