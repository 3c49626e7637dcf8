"""Dialect-aware INSERT constructs for ON CONFLICT upserts.

PostgreSQL runs in production, SQLite locally and in tests. Both support
``on_conflict_do_update`` / ``on_conflict_do_nothing`` with ``index_elements``.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(db: AsyncSession, model: Any) -> Any:
    """Return a dialect-specific ``insert(model)`` for the session's bind."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Unsupported dialect for upserts: {dialect}")
