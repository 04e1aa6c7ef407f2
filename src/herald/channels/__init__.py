"""Channel adapters: one per transport, behind a uniform send contract."""

from __future__ import annotations

from herald.channels.base import BaseChannelAdapter, ChannelAdapter, SendResult, send_payload
from herald.channels.registry import ChannelRegistry, create_channel_registry

__all__ = [
    "BaseChannelAdapter",
    "ChannelAdapter",
    "ChannelRegistry",
    "SendResult",
    "create_channel_registry",
    "send_payload",
]
