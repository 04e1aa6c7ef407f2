#!/usr/bin/env python3
"""Load the YAML seed templates into the SQL template table.

Usage:
    # Seed from config/notification_templates.yml into HERALD_DB_URL:
    python3 scripts/seed_templates.py

    # Seed from another file, creating tables first (development only):
    python3 scripts/seed_templates.py --file my_templates.yml --create-tables

Templates that already exist with the same (name, type, scope) keep their id
and are updated in place.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure the project source is importable when running the script directly.
_project_root = Path(__file__).resolve().parent.parent
_src = _project_root / "src"
if str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from herald.core.config import Settings  # noqa: E402
from herald.db.engine import DatabaseManager  # noqa: E402
from herald.notifications.store import InMemoryTemplateStore  # noqa: E402
from herald.repositories.postgres.templates import PostgresTemplateRepository  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed notification templates into the database.")
    parser.add_argument(
        "--file",
        type=str,
        default=None,
        help="YAML template file (defaults to HERALD_NOTIFICATION_TEMPLATES_PATH).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create tables before seeding instead of relying on alembic.",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    settings = Settings()
    path = Path(args.file or settings.notification.templates_path)
    if not path.is_absolute():
        path = _project_root / path

    store = InMemoryTemplateStore.from_yaml(path)
    if store.count == 0:
        print(f"No templates found in {path}")
        sys.exit(1)

    db = DatabaseManager.from_config(settings.database)
    try:
        if args.create_tables:
            await db.create_all()
        repo = PostgresTemplateRepository(db)
        for template in store.list_all():
            existing = await repo.find_active_by_name(template.name, template.type, template.scope)
            if existing is not None:
                template = template.model_copy(update={"id": existing.id})
            await repo.save(template)
            print(f"  {template.type:<9} {template.name}")
    finally:
        await db.close()

    print(f"\nDone! Seeded {store.count} templates.")


if __name__ == "__main__":
    asyncio.run(main())
