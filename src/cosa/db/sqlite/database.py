"""Async SQLite document store built on SQLAlchemy."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC

from bson import json_util
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cosa.db.interfaces import ConnectionStatus, Document
from cosa.db.store import DocumentStore, id_key
from cosa.errors import DatabaseError, DuplicateKeyError

from .migrations import apply_migrations
from .models import DocumentRecord

logger = logging.getLogger(__name__)

_JSON_OPTIONS = json_util.CANONICAL_JSON_OPTIONS.with_options(tz_aware=True, tzinfo=UTC)

_migration_lock = asyncio.Lock()
_migrated_urls: set[str] = set()


async def _ensure_migrated(engine: AsyncEngine, database_url: str) -> None:
    async with _migration_lock:
        if database_url in _migrated_urls:
            return
        await apply_migrations(engine)
        _migrated_urls.add(database_url)


def encode_document(document: Document) -> str:
    return json_util.dumps(document, json_options=_JSON_OPTIONS)


def decode_document(payload: str) -> Document:
    return json_util.loads(payload, json_options=_JSON_OPTIONS)


@dataclass
class SQLiteDatabase(DocumentStore):
    """Stores every collection in a single ``documents`` table as extended JSON."""

    url: str = "sqlite+aiosqlite:///cosa.db"
    _engine: AsyncEngine | None = None
    _session_factory: async_sessionmaker[AsyncSession] | None = None

    async def connect(self) -> None:
        if self._status is ConnectionStatus.CONNECTED:
            return
        self._status = ConnectionStatus.CONNECTING
        engine = create_async_engine(self.url, future=True)
        try:
            await _ensure_migrated(engine, self.url)
        except SQLAlchemyError as exc:
            self._status = ConnectionStatus.DISCONNECTED
            await engine.dispose()
            msg = f"Unable to open SQLite database {self.url}"
            raise DatabaseError(msg) from exc
        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self._status = ConnectionStatus.CONNECTED
        logger.info("Connected to %s", self.url)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        self._status = ConnectionStatus.DISCONNECTED

    async def _begin(self) -> AsyncSession:
        if self._session_factory is None:
            msg = "SQLite database is not connected"
            raise DatabaseError(msg)
        return self._session_factory()

    async def _commit(self, handle: AsyncSession) -> None:
        try:
            await handle.commit()
        except IntegrityError as exc:
            await handle.rollback()
            raise DuplicateKeyError(str(exc.orig)) from exc
        finally:
            await handle.close()

    async def _rollback(self, handle: AsyncSession) -> None:
        await handle.rollback()
        await handle.close()

    async def _documents(self, handle: AsyncSession, collection: str) -> list[Document]:
        result = await handle.execute(
            select(DocumentRecord.payload)
            .where(DocumentRecord.collection == collection)
            .order_by(DocumentRecord.seq)
        )
        return [decode_document(payload) for payload in result.scalars().all()]

    async def _insert_document(
        self, handle: AsyncSession, collection: str, document: Document
    ) -> None:
        handle.add(
            DocumentRecord(
                collection=collection,
                document_id=id_key(document["_id"]),
                payload=encode_document(document),
            )
        )
        try:
            await handle.flush()
        except IntegrityError as exc:
            msg = f"E11000 duplicate key error collection: {collection} index: _id_"
            raise DuplicateKeyError(msg, key={"_id": document["_id"]}) from exc

    async def _write_document(
        self, handle: AsyncSession, collection: str, document: Document
    ) -> None:
        await handle.execute(
            update(DocumentRecord)
            .where(
                DocumentRecord.collection == collection,
                DocumentRecord.document_id == id_key(document["_id"]),
            )
            .values(payload=encode_document(document))
        )

    async def _delete_document(self, handle: AsyncSession, collection: str, key: str) -> None:
        await handle.execute(
            delete(DocumentRecord).where(
                DocumentRecord.collection == collection,
                DocumentRecord.document_id == key,
            )
        )


__all__ = ["SQLiteDatabase", "decode_document", "encode_document"]
