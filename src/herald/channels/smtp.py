"""Email adapter sending over SMTP."""

from __future__ import annotations

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any

from herald.channels.base import BaseChannelAdapter, SendResult
from herald.core.config import ChannelConfig
from herald.core.types import ChannelType
from herald.notifications.models import ChannelPayload


class SmtpEmailAdapter(BaseChannelAdapter):
    """Sends HTML email over SMTP.

    Uses a connection per message; the blocking SMTP conversation runs in a
    worker thread.
    """

    channel = ChannelType.EMAIL

    def __init__(self, config: ChannelConfig) -> None:
        self._config = config

    async def _deliver(
        self,
        address: str,
        payload: ChannelPayload,
        template_name: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> SendResult:
        message_id = make_msgid()
        await asyncio.to_thread(self._send_sync, address, payload, message_id)
        return SendResult(message_id=message_id, status="accepted")

    def _build_message(self, address: str, payload: ChannelPayload, message_id: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self._config.smtp_from_address
        msg["To"] = address
        msg["Subject"] = payload.subject or ""
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(payload.body, "html", "utf-8"))
        return msg

    def _send_sync(self, address: str, payload: ChannelPayload, message_id: str) -> None:
        cfg = self._config
        msg = self._build_message(address, payload, message_id)
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.send_timeout_seconds) as server:
            server.ehlo()
            if cfg.smtp_use_tls:
                server.starttls()
                server.ehlo()
            if cfg.smtp_username:
                server.login(cfg.smtp_username, cfg.smtp_password)
            server.sendmail(cfg.smtp_from_address, [address], msg.as_string())
