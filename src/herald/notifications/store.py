"""In-memory template store, optionally seeded from a YAML file."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from herald.core.types import ChannelType, TemplateStatus
from herald.notifications.models import Template
from herald.notifications.templates import validate_template_definition

logger = logging.getLogger(__name__)


class InMemoryTemplateStore:
    """In-memory store for message templates.

    Templates are keyed by ``(name, channel, scope)``; saving a template with
    an existing key replaces it.
    """

    def __init__(self) -> None:
        self._templates: dict[tuple[str, ChannelType, str | None], Template] = {}

    @classmethod
    def from_yaml(cls, path: str | Path) -> InMemoryTemplateStore:
        """Load templates from a YAML file.

        The file holds a ``templates`` mapping of name to definition, where a
        definition is either a single template or a mapping of channel to
        template body. A missing file yields an empty store.
        """
        store = cls()
        path = Path(path)
        if not path.exists():
            logger.warning("Template file %s not found; starting with no templates", path)
            return store
        with open(path) as fh:
            data = yaml.safe_load(fh) or {}

        for name, definition in (data.get("templates") or {}).items():
            variants = definition.get("channels") or {definition.get("type", "WHATSAPP"): definition}
            for channel, body in variants.items():
                store.save(
                    Template(
                        name=name,
                        type=ChannelType(str(channel).upper()),
                        content=body.get("content", ""),
                        subject=body.get("subject"),
                        status=TemplateStatus(body.get("status", definition.get("status", "ACTIVE"))),
                        language=body.get("language", definition.get("language", "en")),
                        scope=definition.get("scope"),
                        sections=body.get("sections"),
                    )
                )
        logger.info("Loaded %d templates from %s", store.count, path)
        return store

    def save(self, template: Template) -> Template:
        validate_template_definition(template)
        self._templates[(template.name, template.type, template.scope)] = template
        return template

    def find_active_by_name(
        self, name: str, channel: ChannelType, scope: str | None = None
    ) -> Template | None:
        template = self._templates.get((name, ChannelType(channel), scope))
        if template is None or template.status != TemplateStatus.ACTIVE:
            return None
        return template

    def list_all(self) -> list[Template]:
        return list(self._templates.values())

    @property
    def count(self) -> int:
        return len(self._templates)
