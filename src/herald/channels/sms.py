"""SMS adapter using the Africa's Talking messaging API."""

from __future__ import annotations

from typing import Any

import httpx

from herald.channels.base import BaseChannelAdapter, SendResult
from herald.core.config import ChannelConfig
from herald.core.errors import SendError
from herald.core.types import ChannelType
from herald.notifications.models import ChannelPayload

_ACCEPTED = {"Success", "Sent", "Submitted", "Queued"}


class AfricasTalkingSmsAdapter(BaseChannelAdapter):
    """Sends SMS through Africa's Talking."""

    channel = ChannelType.SMS

    def __init__(self, config: ChannelConfig, http: httpx.AsyncClient | None = None) -> None:
        if not (config.sms_api_key and config.sms_username):
            raise ValueError("SMS provider configuration missing")
        self._username = config.sms_username
        self._sender_id = config.sms_sender_id
        self._http = http or httpx.AsyncClient(
            base_url=config.sms_base_url,
            headers={"apiKey": config.sms_api_key, "Accept": "application/json"},
            timeout=httpx.Timeout(config.send_timeout_seconds),
        )

    async def _deliver(
        self,
        address: str,
        payload: ChannelPayload,
        template_name: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> SendResult:
        form = {"username": self._username, "to": address, "message": payload.body}
        if self._sender_id:
            form["from"] = self._sender_id

        resp = await self._http.post("/version1/messaging", data=form)
        if resp.status_code >= 400:
            raise SendError(f"SMS provider error ({resp.status_code}): {resp.text}", self.channel)

        recipients = resp.json().get("SMSMessageData", {}).get("Recipients", [])
        if not recipients:
            raise SendError("SMS provider returned no recipients", self.channel)
        first = recipients[0]
        if first.get("status") not in _ACCEPTED:
            raise SendError(f"SMS rejected: {first.get('status')}", self.channel)
        return SendResult(message_id=first["messageId"], status=first.get("status"))

    async def close(self) -> None:
        await self._http.aclose()
