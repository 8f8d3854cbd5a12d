"""Connection lifecycle: backend selection by URL, lazy connect and retries."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

from cosa.config import CosaSettings, database_name_from_url
from cosa.db.interfaces import ConnectionStatus, Database
from cosa.db.memory import MemoryDatabase
from cosa.db.mongo import MongoDatabase
from cosa.db.sqlite import SQLiteDatabase
from cosa.errors import ConfigurationError, DatabaseError

logger = logging.getLogger(__name__)


def create_database(
    url: str,
    settings: CosaSettings | None = None,
    *,
    name: str | None = None,
) -> Database:
    """Instantiate the backend matching the scheme of ``url`` without connecting."""

    settings = settings or CosaSettings()
    scheme = urlsplit(url).scheme.lower()
    name = name or settings.database_name or database_name_from_url(url)
    if scheme in ("mongodb", "mongodb+srv"):
        return MongoDatabase(
            url,
            name=name,
            read_preference=settings.read_preference,
            default_limit=settings.default_find_limit,
        )
    if scheme.startswith("sqlite"):
        return SQLiteDatabase(name=name, default_limit=settings.default_find_limit, url=url)
    if scheme == "memory":
        return MemoryDatabase(name=name, default_limit=settings.default_find_limit)
    msg = f"invalid database uri: {url}"
    raise ConfigurationError(msg)


class Connection:
    """Owns the database a group of models talks to."""

    def __init__(
        self,
        settings: CosaSettings | None = None,
        *,
        database: Database | None = None,
    ) -> None:
        self._settings = settings
        self._database = database
        self._lock: asyncio.Lock | None = None

    @property
    def settings(self) -> CosaSettings:
        if self._settings is None:
            self._settings = CosaSettings.from_env()
        return self._settings

    @property
    def status(self) -> ConnectionStatus:
        if self._database is None:
            return ConnectionStatus.DISCONNECTED
        return self._database.status

    @property
    def database(self) -> Database:
        if self._database is None:
            msg = "Database connection has not been initialized"
            raise DatabaseError(msg)
        return self._database

    async def init(self, url: str | None = None, *, name: str | None = None) -> Database:
        """Connect to ``url`` (default ``COSA_DB_URI``), retrying transient failures."""

        settings = self.settings
        database = create_database(url or settings.database_url, settings, name=name)
        attempts = max(settings.reconnect_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                await database.connect()
                break
            except DatabaseError as exc:
                if attempt == attempts:
                    raise
                logger.warning(
                    "Connection attempt %s/%s to %s failed: %s", attempt, attempts, database.name, exc
                )
                await asyncio.sleep(settings.reconnect_delay)
        if self._database is not None and self._database is not database:
            await self._database.close()
        self._database = database
        logger.info("Database %s connected", database.name)
        return database

    async def get_database(self) -> Database:
        """Return the connected database, connecting on first use."""

        if self._database is not None and self._database.status is ConnectionStatus.CONNECTED:
            return self._database
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._database is None:
                return await self.init()
            if self._database.status is not ConnectionStatus.CONNECTED:
                await self._database.connect()
            return self._database

    async def close(self) -> None:
        if self._database is not None:
            await self._database.close()
            logger.info("Database %s disconnected", self._database.name)
        self._lock = None


connection = Connection()


async def init(url: str | None = None, *, name: str | None = None) -> Database:
    """Initialize the default connection."""

    return await connection.init(url, name=name)


async def close() -> None:
    """Close the default connection."""

    await connection.close()


__all__ = ["Connection", "close", "connection", "create_database", "init"]
