"""Database layer for Herald: SQLAlchemy 2.0 async."""

from __future__ import annotations

from herald.db.base import Base
from herald.db.engine import DatabaseManager

__all__ = ["Base", "DatabaseManager"]
