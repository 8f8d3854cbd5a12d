from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path

import pytest
from bson import ObjectId
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from cosa.db.interfaces import ConnectionStatus
from cosa.db.sqlite import SQLiteDatabase
from cosa.db.sqlite.migrations import MIGRATIONS, apply_migrations
from cosa.errors import DuplicateKeyError


def _db_url(tmp_path: Path) -> str:
    db_file = tmp_path / "cosa.db"
    return f"sqlite+aiosqlite:///{db_file}"


def test_sqlite_document_round_trip(tmp_path: Path) -> None:
    database = SQLiteDatabase(name="cosa", url=_db_url(tmp_path))
    created = datetime(2024, 2, 3, 4, 5, 6, 789000, tzinfo=UTC)
    ref = ObjectId()

    async def _run() -> dict:
        await database.connect()
        assert database.status is ConnectionStatus.CONNECTED
        result = await database.insert(
            "things", {"name": "a", "created": created, "ref": ref, "blob": b"\x01\x02"}
        )
        loaded = await database.find("things", {"_id": result.inserted_id}, find_one=True)
        await database.close()
        return loaded

    loaded = asyncio.run(_run())

    assert loaded["name"] == "a"
    assert loaded["created"] == created
    assert loaded["ref"] == ref
    assert bytes(loaded["blob"]) == b"\x01\x02"
    assert database.status is ConnectionStatus.DISCONNECTED


def test_sqlite_persists_between_connections(tmp_path: Path) -> None:
    url = _db_url(tmp_path)

    async def _write() -> None:
        database = SQLiteDatabase(url=url)
        await database.connect()
        await database.insert("things", [{"n": 1}, {"n": 2}])
        await database.update("things", {"n": 1}, {"$set": {"flag": True}})
        await database.remove("things", {"n": 2})
        await database.close()

    async def _read() -> list:
        database = SQLiteDatabase(url=url)
        await database.connect()
        documents = await (await database.find("things", {})).to_list()
        await database.close()
        return documents

    asyncio.run(_write())
    documents = asyncio.run(_read())

    assert len(documents) == 1
    assert documents[0]["n"] == 1
    assert documents[0]["flag"] is True


def test_sqlite_transactions_and_duplicates(tmp_path: Path) -> None:
    database = SQLiteDatabase(url=_db_url(tmp_path))

    async def _run() -> None:
        await database.connect()
        session = await database.start_session()
        await session.start_transaction()
        await database.insert("things", {"n": 1}, session=session)
        assert await database.find("things", {}, count=True, session=session) == 1
        await session.abort_transaction()
        assert await database.find("things", {}, count=True) == 0

        result = await database.insert("things", {"n": 2})
        with pytest.raises(DuplicateKeyError):
            await database.insert("things", {"_id": result.inserted_id, "n": 3})
        assert await database.find("things", {}, count=True) == 1
        await session.end_session()
        await database.close()

    asyncio.run(_run())


def test_migrations_are_versioned_and_idempotent(tmp_path: Path) -> None:
    engine = create_async_engine(_db_url(tmp_path))

    async def _run() -> tuple[int, int, list[int]]:
        first = await apply_migrations(engine)
        second = await apply_migrations(engine)
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT version FROM cosa_schema_migrations"))
            versions = sorted(row[0] for row in result)
        await engine.dispose()
        return first, second, versions

    first, second, versions = asyncio.run(_run())

    assert first == second == len(MIGRATIONS)
    assert versions == list(range(1, len(MIGRATIONS) + 1))
