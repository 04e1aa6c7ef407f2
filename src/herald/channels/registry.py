"""Registry mapping each channel type to its adapter."""

from __future__ import annotations

from herald.channels.base import ChannelAdapter
from herald.core.config import ChannelConfig
from herald.core.errors import UnsupportedChannelType
from herald.core.types import ChannelType


class ChannelRegistry:
    """Registry for channel adapters. Provides register/get/list."""

    def __init__(self, adapters: list[ChannelAdapter] | None = None) -> None:
        self._adapters: dict[ChannelType, ChannelAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ChannelAdapter) -> None:
        """Register an adapter, replacing any previous one for its channel."""
        self._adapters[ChannelType(adapter.channel)] = adapter

    def get(self, channel: ChannelType | str) -> ChannelAdapter:
        """Return the adapter for *channel*.

        Raises:
            UnsupportedChannelType: If the channel is unknown or has no adapter.
        """
        try:
            key = ChannelType(channel)
        except ValueError:
            raise UnsupportedChannelType(channel) from None
        adapter = self._adapters.get(key)
        if adapter is None:
            raise UnsupportedChannelType(channel)
        return adapter

    def __contains__(self, channel: object) -> bool:
        return channel in self._adapters

    @property
    def channels(self) -> list[ChannelType]:
        return list(self._adapters.keys())

    async def close(self) -> None:
        for adapter in self._adapters.values():
            close = getattr(adapter, "close", None)
            if close is not None:
                await close()


def create_channel_registry(config: ChannelConfig) -> ChannelRegistry:
    """Factory: build adapters for every channel based on ``config.provider``."""
    provider = config.provider.lower()
    if provider == "mock":
        from herald.channels.mock import MockChannelAdapter

        return ChannelRegistry([MockChannelAdapter(channel) for channel in ChannelType])
    if provider == "live":
        from herald.channels.smtp import SmtpEmailAdapter
        from herald.channels.sms import AfricasTalkingSmsAdapter
        from herald.channels.whatsapp import TwilioWhatsAppAdapter

        return ChannelRegistry(
            [
                TwilioWhatsAppAdapter(config),
                AfricasTalkingSmsAdapter(config),
                SmtpEmailAdapter(config),
            ]
        )
    raise ValueError(f"Unknown channel provider {config.provider!r}. Available: live, mock")
