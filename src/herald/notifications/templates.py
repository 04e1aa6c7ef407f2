"""Template resolution, validation, rendering and channel formatting.

Placeholders use the ``{{name}}`` syntax. Every placeholder a template
references must be supplied before anything is sent; rendering itself is
lenient and leaves unknown placeholders in place.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Mapping
from typing import Any

from herald.core.errors import (
    MissingVariablesError,
    TemplateDefinitionError,
    TemplateNotFoundError,
    UnsupportedChannelType,
)
from herald.core.types import ChannelType
from herald.notifications.models import ChannelPayload, Template
from herald.repositories import resolve
from herald.repositories.protocols import TemplateRepository

PLACEHOLDER_PATTERN = re.compile(r"\{\{([\w.-]+)\}\}")

SMS_MAX_LENGTH = 160
WHATSAPP_MAX_LENGTH = 4096
TRUNCATION_MARKER = "..."

_SINGLE_NEWLINE = re.compile(r"(?<!\n)\n(?!\n)")


def extract_placeholders(text: str | None) -> list[str]:
    """Return placeholder names in order of first appearance, without duplicates."""
    if not text:
        return []
    return list(dict.fromkeys(PLACEHOLDER_PATTERN.findall(text)))


def _structured_placeholders(value: Any) -> list[str]:
    if isinstance(value, str):
        return extract_placeholders(value)
    if isinstance(value, Mapping):
        items = value.values()
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return []
    names: list[str] = []
    for item in items:
        names.extend(_structured_placeholders(item))
    return names


def render_text(text: str, variables: Mapping[str, Any]) -> str:
    """Substitute every ``{{name}}`` found in *variables*; leave the rest verbatim."""

    def _replace(m: re.Match) -> str:
        key = m.group(1)
        if key not in variables:
            return m.group(0)
        value = variables[key]
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def render_structured(value: Any, variables: Mapping[str, Any]) -> Any:
    """Recursively substitute placeholders in the string leaves of nested data.

    Mappings and sequences are rebuilt; non-string leaves are returned as-is.
    """
    if isinstance(value, str):
        return render_text(value, variables)
    if isinstance(value, Mapping):
        return {k: render_structured(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [render_structured(v, variables) for v in value]
    if isinstance(value, tuple):
        return tuple(render_structured(v, variables) for v in value)
    return value


def validate_template_definition(template: Template) -> None:
    """Check a template is structurally usable for its channel.

    Raises:
        TemplateDefinitionError: On a missing field or a channel limit violation.
    """
    missing = [f for f in ("name", "content") if not getattr(template, f)]
    if missing:
        raise TemplateDefinitionError(f"Missing required fields: {', '.join(missing)}")

    if template.type == ChannelType.EMAIL:
        if not template.subject:
            raise TemplateDefinitionError(
                f"Email template {template.name!r} requires a subject"
            )
    elif template.type == ChannelType.SMS:
        if len(template.content) > SMS_MAX_LENGTH:
            raise TemplateDefinitionError(
                f"SMS template {template.name!r} exceeds {SMS_MAX_LENGTH} characters"
            )
    elif template.type == ChannelType.WHATSAPP:
        if len(template.content) > WHATSAPP_MAX_LENGTH:
            raise TemplateDefinitionError(
                f"WhatsApp template {template.name!r} exceeds {WHATSAPP_MAX_LENGTH} characters"
            )
    else:
        raise UnsupportedChannelType(template.type)


class TemplateCache:
    """Read-through cache of active templates keyed by (name, channel, scope).

    Entries expire after ``ttl_seconds``; misses are not cached so newly
    published templates become visible on the next lookup.
    """

    def __init__(
        self,
        store: TemplateRepository,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, ChannelType, str | None], tuple[float, Template]] = {}

    async def get(
        self, name: str, channel: ChannelType, scope: str | None = None
    ) -> Template | None:
        key = (name, channel, scope)
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and now - entry[0] < self._ttl:
            return entry[1]

        template = await resolve(self._store.find_active_by_name(name, channel, scope))
        if template is None:
            self._entries.pop(key, None)
            return None
        self._entries[key] = (now, template)
        return template

    def invalidate(self, name: str | None = None) -> None:
        """Drop cached entries, all of them or only those for *name*."""
        if name is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k[0] == name]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class TemplateProcessor:
    """Resolves templates and turns them into channel-ready payloads."""

    def __init__(self, cache: TemplateCache) -> None:
        self._cache = cache

    @property
    def cache(self) -> TemplateCache:
        return self._cache

    async def resolve(
        self, name: str, channel: ChannelType, scope: str | None = None
    ) -> Template:
        """Find the active template, falling back to the unscoped one for a scoped lookup."""
        template = await self._cache.get(name, channel, scope)
        if template is None and scope is not None:
            template = await self._cache.get(name, channel, None)
        if template is None:
            raise TemplateNotFoundError(name, channel)
        return template

    def validate(self, template: Template, variables: Mapping[str, Any]) -> None:
        required = extract_placeholders(template.content)
        if template.type == ChannelType.EMAIL:
            required += extract_placeholders(template.subject)
        if template.sections:
            required += _structured_placeholders(template.sections)

        missing = [name for name in dict.fromkeys(required) if name not in variables]
        if missing:
            raise MissingVariablesError(missing, template_name=template.name)

    def render(self, template: Template, variables: Mapping[str, Any]) -> str:
        return render_text(template.content, variables)

    def format_for_channel(
        self,
        channel: ChannelType | str,
        content: str,
        variables: Mapping[str, Any],
        *,
        subject: str | None = None,
        sections: Mapping[str, Any] | None = None,
    ) -> ChannelPayload:
        """Apply channel-specific post-processing to rendered content.

        Raises:
            UnsupportedChannelType: If *channel* is not a known channel.
        """
        try:
            channel = ChannelType(channel)
        except ValueError:
            raise UnsupportedChannelType(channel) from None

        rendered_sections = render_structured(dict(sections), variables) if sections else None

        if channel == ChannelType.SMS:
            return ChannelPayload(body=self._format_sms(content), sections=rendered_sections)
        if channel == ChannelType.EMAIL:
            return ChannelPayload(
                body=content,
                subject=render_text(subject or "", variables),
                sections=rendered_sections,
            )
        if channel == ChannelType.WHATSAPP:
            return ChannelPayload(body=self._format_whatsapp(content), sections=rendered_sections)
        raise UnsupportedChannelType(channel)

    def process(self, template: Template, variables: Mapping[str, Any]) -> ChannelPayload:
        """Validate, render and format a template in one step."""
        self.validate(template, variables)
        content = self.render(template, variables)
        return self.format_for_channel(
            template.type,
            content,
            variables,
            subject=template.subject,
            sections=template.sections,
        )

    @staticmethod
    def _format_sms(content: str) -> str:
        if len(content) <= SMS_MAX_LENGTH:
            return content
        return content[: SMS_MAX_LENGTH - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER

    @staticmethod
    def _format_whatsapp(content: str) -> str:
        return _SINGLE_NEWLINE.sub("\n\n", content.replace("\r\n", "\n"))
