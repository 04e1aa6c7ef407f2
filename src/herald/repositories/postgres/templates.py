"""PostgreSQL template repository."""

from __future__ import annotations

from sqlalchemy import select

from herald.core.types import ChannelType, TemplateStatus
from herald.db.engine import DatabaseManager
from herald.db.models import TemplateRow
from herald.notifications.models import Template
from herald.notifications.templates import validate_template_definition


class PostgresTemplateRepository:
    """Postgres-backed template storage."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def save(self, template: Template) -> Template:
        validate_template_definition(template)
        async with self._db.session() as db:
            existing = await db.get(TemplateRow, template.id)
            if existing:
                existing.name = template.name
                existing.type = template.type.value
                existing.content = template.content
                existing.subject = template.subject
                existing.status = template.status.value
                existing.language = template.language
                existing.scope = template.scope
                existing.sections = template.sections
            else:
                db.add(
                    TemplateRow(
                        id=template.id,
                        name=template.name,
                        type=template.type.value,
                        content=template.content,
                        subject=template.subject,
                        status=template.status.value,
                        language=template.language,
                        scope=template.scope,
                        sections=template.sections,
                    )
                )
            await db.commit()
        return template

    async def find_active_by_name(
        self, name: str, channel: ChannelType, scope: str | None = None
    ) -> Template | None:
        stmt = select(TemplateRow).where(
            TemplateRow.name == name,
            TemplateRow.type == ChannelType(channel).value,
            TemplateRow.status == TemplateStatus.ACTIVE.value,
        )
        if scope is None:
            stmt = stmt.where(TemplateRow.scope.is_(None))
        else:
            stmt = stmt.where(TemplateRow.scope == scope)
        async with self._db.session() as db:
            result = await db.execute(stmt.limit(1))
            row = result.scalars().first()
            return self._row_to_template(row) if row else None

    async def list_all(self) -> list[Template]:
        async with self._db.session() as db:
            result = await db.execute(select(TemplateRow).order_by(TemplateRow.name))
            return [self._row_to_template(r) for r in result.scalars().all()]

    @staticmethod
    def _row_to_template(row: TemplateRow) -> Template:
        return Template(
            id=row.id,
            name=row.name,
            type=ChannelType(row.type),
            content=row.content,
            subject=row.subject,
            status=TemplateStatus(row.status),
            language=row.language,
            scope=row.scope,
            sections=row.sections,
        )
