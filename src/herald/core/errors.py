"""Exception hierarchy for the notification engine.

Validation errors are raised synchronously from ``dispatch`` before anything
is persisted and are never retried. Send errors come from channel adapters
and are always recoverable through the retry engine; they are recorded on the
delivery log, never raised out of a sweep.
"""

from __future__ import annotations

from collections.abc import Iterable


class HeraldError(Exception):
    """Base class for all engine errors."""


class ValidationError(HeraldError, ValueError):
    """Input rejected before any record was written or any channel contacted."""


class MissingVariablesError(ValidationError):
    """A template references placeholders that were not supplied."""

    def __init__(self, missing: Iterable[str], template_name: str | None = None) -> None:
        self.missing = list(missing)
        self.template_name = template_name
        where = f" for template {template_name!r}" if template_name else ""
        super().__init__(f"Missing required variables{where}: {', '.join(self.missing)}")


class UnsupportedChannelType(ValidationError):
    """No formatter or adapter exists for the requested channel."""

    def __init__(self, channel: object) -> None:
        self.channel = channel
        super().__init__(f"Unsupported notification type: {channel}")


class InvalidRecipientError(ValidationError):
    """The recipient has no usable address for a requested channel."""


class TemplateNotFoundError(ValidationError):
    """No active template matches the requested name and channel."""

    def __init__(self, name: str, channel: object | None = None) -> None:
        self.name = name
        self.channel = channel
        suffix = f" ({channel})" if channel is not None else ""
        super().__init__(f"Template not found: {name}{suffix}")


class TemplateDefinitionError(ValidationError):
    """A template definition is structurally invalid."""


class SendError(HeraldError):
    """A channel adapter failed to hand the message to its provider.

    Timeouts are reported as send errors too.
    """

    def __init__(self, message: str, channel: object | None = None) -> None:
        self.channel = channel
        super().__init__(message)
