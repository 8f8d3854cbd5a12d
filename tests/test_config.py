from __future__ import annotations

import asyncio
from dataclasses import dataclass

import pytest

import cosa.connection as connection_module
from cosa.config import CosaSettings, database_name_from_url
from cosa.connection import Connection, create_database
from cosa.db.interfaces import ConnectionStatus
from cosa.db.memory import MemoryDatabase
from cosa.db.mongo import MongoDatabase
from cosa.db.sqlite import SQLiteDatabase
from cosa.errors import ConfigurationError, DatabaseError


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COSA_ENV", "test")
    monkeypatch.setenv("COSA_DB_URI", "mongodb://localhost:27017/shop?replicaSet=rs0")
    monkeypatch.setenv("COSA_DB_READ_PREFERENCE", "secondaryPreferred")
    monkeypatch.setenv("COSA_DEFAULT_FIND_LIMIT", "50")
    monkeypatch.setenv("COSA_RECONNECT_DELAY", "0")
    monkeypatch.delenv("COSA_DB_NAME", raising=False)

    settings = CosaSettings.from_env()

    assert settings.environment == "test"
    assert settings.read_preference == "secondaryPreferred"
    assert settings.default_find_limit == 50
    assert settings.reconnect_delay == 0
    assert settings.resolved_database_name == "shop"


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("COSA_ENV", "COSA_DB_URI", "COSA_DB_NAME", "COSA_DEFAULT_FIND_LIMIT"):
        monkeypatch.delenv(name, raising=False)

    settings = CosaSettings.from_env()

    assert settings.database_url == "memory://cosa"
    assert settings.resolved_database_name == "cosa"
    assert settings.default_find_limit == 1000


def test_database_name_from_url() -> None:
    assert database_name_from_url("mongodb://host/app") == "app"
    assert database_name_from_url("mongodb://host/") == "cosa"
    assert database_name_from_url("memory://scratch") == "scratch"
    assert database_name_from_url("memory://") == "cosa"
    assert database_name_from_url("sqlite+aiosqlite:///tmp/data.db") == "data.db"


def test_create_database_by_scheme() -> None:
    settings = CosaSettings(default_find_limit=10, database_name="named")

    memory = create_database("memory://scratch", settings)
    sqlite = create_database("sqlite+aiosqlite:///cosa.db", settings)
    mongo = create_database("mongodb://localhost/app", CosaSettings())

    assert isinstance(memory, MemoryDatabase)
    assert memory.name == "named"
    assert memory.default_limit == 10
    assert isinstance(sqlite, SQLiteDatabase)
    assert isinstance(mongo, MongoDatabase)
    assert mongo.name == "app"
    assert mongo.status is ConnectionStatus.DISCONNECTED
    with pytest.raises(ConfigurationError, match="invalid database uri"):
        create_database("redis://localhost")


@dataclass
class FlakyDatabase(MemoryDatabase):
    failures: int = 0
    attempts: int = 0

    async def connect(self) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise DatabaseError("connection refused")
        await super().connect()


def test_init_retries_transient_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    flaky = FlakyDatabase(failures=2)
    monkeypatch.setattr(connection_module, "create_database", lambda *args, **kwargs: flaky)
    connection = Connection(CosaSettings(reconnect_attempts=3, reconnect_delay=0))

    database = asyncio.run(connection.init("memory://flaky"))

    assert database is flaky
    assert flaky.attempts == 3
    assert connection.status is ConnectionStatus.CONNECTED


def test_init_gives_up_after_attempts(monkeypatch: pytest.MonkeyPatch) -> None:
    flaky = FlakyDatabase(failures=5)
    monkeypatch.setattr(connection_module, "create_database", lambda *args, **kwargs: flaky)
    connection = Connection(CosaSettings(reconnect_attempts=2, reconnect_delay=0))

    with pytest.raises(DatabaseError, match="connection refused"):
        asyncio.run(connection.init())

    assert flaky.attempts == 2
    assert connection.status is ConnectionStatus.DISCONNECTED


def test_get_database_connects_lazily_and_reconnects() -> None:
    connection = Connection(CosaSettings(database_url="memory://lazy"))

    with pytest.raises(DatabaseError, match="has not been initialized"):
        _ = connection.database

    async def _run() -> tuple:
        first = await connection.get_database()
        await connection.close()
        closed = connection.status
        second = await connection.get_database()
        return first, closed, second

    first, closed, second = asyncio.run(_run())

    assert first is second
    assert first.name == "lazy"
    assert closed is ConnectionStatus.DISCONNECTED
    assert connection.status is ConnectionStatus.CONNECTED
