"""Versioned schema migrations for the SQLite document store."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from .models import Base

logger = logging.getLogger(__name__)

Migration = Callable[[AsyncConnection], Awaitable[None]]


async def _create_documents(conn: AsyncConnection) -> None:
    await conn.run_sync(Base.metadata.create_all)


async def _index_collection_order(conn: AsyncConnection) -> None:
    # collection scans return documents in insertion order
    await conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS ix_documents_collection_seq "
            "ON documents (collection, seq)"
        )
    )


MIGRATIONS: tuple[Migration, ...] = (_create_documents, _index_collection_order)


async def apply_migrations(engine: AsyncEngine) -> int:
    """Apply pending migrations in order and return the resulting schema version."""

    async with engine.begin() as conn:
        await conn.execute(
            text("CREATE TABLE IF NOT EXISTS cosa_schema_migrations (version INTEGER PRIMARY KEY)")
        )
        result = await conn.execute(text("SELECT MAX(version) FROM cosa_schema_migrations"))
        current = result.scalar() or 0
        for version, migration in enumerate(MIGRATIONS, start=1):
            if version <= current:
                continue
            await migration(conn)
            await conn.execute(
                text("INSERT INTO cosa_schema_migrations (version) VALUES (:version)"),
                {"version": version},
            )
            logger.debug("Applied SQLite document store migration %s", version)
            current = version
    return current


__all__ = ["MIGRATIONS", "apply_migrations"]
