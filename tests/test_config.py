"""Tests for settings loading."""

from __future__ import annotations

import logging

from herald.core.config import ChannelConfig, RetryConfig, Settings
from herald.core.logging import configure_logging


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.notification.default_channel == "WHATSAPP"
        assert settings.retry.sweep_interval_seconds == 60.0
        assert settings.retry.jitter_ratio == 0.0
        assert settings.channels.provider == "mock"
        assert settings.events.webhook_url is None

    def test_retry_env_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("HERALD_RETRY_MAX_CONCURRENCY", "3")
        monkeypatch.setenv("HERALD_RETRY_LEASE_SECONDS", "30")
        config = RetryConfig()
        assert config.max_concurrency == 3
        assert config.lease_seconds == 30

    def test_channel_env_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("HERALD_CHANNEL_PROVIDER", "live")
        monkeypatch.setenv("HERALD_CHANNEL_SEND_TIMEOUT_SECONDS", "2.5")
        config = ChannelConfig()
        assert config.provider == "live"
        assert config.send_timeout_seconds == 2.5

    def test_nested_configs_read_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("HERALD_DB_URL", "sqlite+aiosqlite:///herald.db")
        monkeypatch.setenv("HERALD_LOG_LEVEL", "DEBUG")
        settings = Settings()
        assert settings.database.url == "sqlite+aiosqlite:///herald.db"
        assert settings.log_level == "DEBUG"


class TestConfigureLogging:
    def test_level_from_settings(self) -> None:
        configure_logging(Settings(log_level="warning"))
        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_debug_overrides_level(self) -> None:
        configure_logging(Settings(debug=True, log_level="ERROR"))
        assert logging.getLogger().level == logging.DEBUG
