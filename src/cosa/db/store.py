"""Document store base class shared by the in-memory and SQLite backends."""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from bson import ObjectId, json_util

from cosa.db.interfaces import (
    ConnectionStatus,
    Document,
    SortSpec,
    WriteResult,
    native_session,
    normalize_sort,
)
from cosa.db.query import (
    aggregate,
    apply_update,
    distinct,
    get_value,
    is_update_document,
    matches,
    project,
    seed_from_query,
    sort_documents,
)
from cosa.errors import DatabaseError, DuplicateKeyError, UsageError
from cosa.serialization import deserialize

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[list[Document]]]


def id_key(value: Any) -> str:
    """Canonical string form of an ``_id`` used to key stored documents."""

    return json_util.dumps(value, sort_keys=True)


class StoreCursor:
    """Lazy cursor over documents produced by ``loader``.

    Options may be chained until the first document is read; the loader runs
    once, on first read.
    """

    def __init__(self, loader: Loader, *, limit: int | None = None) -> None:
        self._loader = loader
        self._query: dict[str, Any] = {}
        self._sort: list[tuple[str, int]] = []
        self._skip = 0
        self._limit = limit or None
        self._projection: Mapping[str, Any] | None = None
        self._lower: Mapping[str, Any] | None = None
        self._upper: Mapping[str, Any] | None = None
        self._transforms: list[Callable[[Any], Any]] = []
        self._buffer: list[Any] | None = None
        self._position = 0
        self._closed = False

    def _ensure_pending(self) -> None:
        if self._buffer is not None:
            msg = "Cursor is already started"
            raise UsageError(msg)

    def filter(self, query: Mapping[str, Any]) -> StoreCursor:
        self._ensure_pending()
        self._query = {"$and": [self._query, deserialize(query)]} if self._query else deserialize(query)
        return self

    def limit(self, count: int) -> StoreCursor:
        self._ensure_pending()
        self._limit = count or None
        return self

    def skip(self, count: int) -> StoreCursor:
        self._ensure_pending()
        self._skip = count
        return self

    def sort(self, spec: SortSpec, direction: int | None = None) -> StoreCursor:
        self._ensure_pending()
        self._sort = normalize_sort(spec, direction)
        return self

    def project(self, projection: Mapping[str, Any]) -> StoreCursor:
        self._ensure_pending()
        self._projection = projection
        return self

    def min(self, spec: Mapping[str, Any]) -> StoreCursor:
        self._ensure_pending()
        self._lower = deserialize(spec)
        return self

    def max(self, spec: Mapping[str, Any]) -> StoreCursor:
        self._ensure_pending()
        self._upper = deserialize(spec)
        return self

    def map(self, transform: Callable[[Any], Any]) -> StoreCursor:
        self._transforms.append(transform)
        return self

    def _in_bounds(self, document: Document) -> bool:
        if self._lower and not matches(document, {k: {"$gte": v} for k, v in self._lower.items()}):
            return False
        if self._upper and not matches(document, {k: {"$lt": v} for k, v in self._upper.items()}):
            return False
        return True

    async def _selected(self) -> list[Document]:
        documents = [
            document
            for document in await self._loader()
            if matches(document, self._query) and self._in_bounds(document)
        ]
        if self._sort:
            documents = sort_documents(documents, self._sort)
        documents = documents[self._skip :]
        if self._limit is not None:
            documents = documents[: abs(self._limit)]
        return documents

    async def _load(self) -> list[Any]:
        if self._buffer is None:
            self._buffer = [project(document, self._projection) for document in await self._selected()]
        return self._buffer

    def _transform(self, document: Any) -> Any:
        for transform in self._transforms:
            document = transform(document)
        return document

    async def count(self) -> int:
        return len(await self._selected())

    async def next(self) -> Any | None:
        if self._closed:
            return None
        buffer = await self._load()
        if self._position >= len(buffer):
            return None
        document = buffer[self._position]
        self._position += 1
        return self._transform(document)

    async def to_list(self, length: int | None = None) -> list[Any]:
        items: list[Any] = []
        while length is None or len(items) < length:
            document = await self.next()
            if document is None:
                break
            items.append(document)
        return items

    async def close(self) -> None:
        self._closed = True
        self._buffer = []

    def is_closed(self) -> bool:
        return self._closed or (
            self._buffer is not None and self._position >= len(self._buffer)
        )

    def __aiter__(self) -> StoreCursor:
        return self

    async def __anext__(self) -> Any:
        document = await self.next()
        if document is None:
            raise StopAsyncIteration
        return document


@dataclass
class StoreSession:
    """Native session handed out by a ``DocumentStore``."""

    store: DocumentStore
    handle: Any = None
    ended: bool = False

    @property
    def in_transaction(self) -> bool:
        return self.handle is not None

    async def start_transaction(self) -> None:
        if self.ended:
            msg = "Cannot start a transaction on an ended session"
            raise UsageError(msg)
        if self.handle is not None:
            msg = "Transaction already in progress"
            raise UsageError(msg)
        self.handle = await self.store._begin()

    async def commit_transaction(self) -> None:
        if self.handle is None:
            msg = "No transaction started"
            raise UsageError(msg)
        handle, self.handle = self.handle, None
        await self.store._commit(handle)

    async def abort_transaction(self) -> None:
        if self.handle is None:
            msg = "No transaction started"
            raise UsageError(msg)
        handle, self.handle = self.handle, None
        await self.store._rollback(handle)

    async def end_session(self) -> None:
        if self.handle is not None:
            await self.abort_transaction()
        self.ended = True


@dataclass(frozen=True)
class UniqueIndex:
    name: str
    keys: tuple[str, ...]


@dataclass
class DocumentStore(ABC):
    """Implements every database operation on top of a few storage primitives.

    Subclasses supply transaction handles and raw document access; matching,
    updates, uniqueness and result shaping live here.
    """

    name: str = "cosa"
    default_limit: int = 1000
    _status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    _indexes: dict[str, list[UniqueIndex]] = field(default_factory=dict)

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    async def connect(self) -> None:
        self._status = ConnectionStatus.CONNECTED

    async def close(self) -> None:
        self._status = ConnectionStatus.DISCONNECTED

    @abstractmethod
    async def _begin(self) -> Any: ...

    @abstractmethod
    async def _commit(self, handle: Any) -> None: ...

    @abstractmethod
    async def _rollback(self, handle: Any) -> None: ...

    @abstractmethod
    async def _documents(self, handle: Any, collection: str) -> list[Document]: ...

    @abstractmethod
    async def _insert_document(self, handle: Any, collection: str, document: Document) -> None: ...

    @abstractmethod
    async def _write_document(self, handle: Any, collection: str, document: Document) -> None: ...

    @abstractmethod
    async def _delete_document(self, handle: Any, collection: str, key: str) -> None: ...

    def _require_connection(self) -> None:
        if self._status is not ConnectionStatus.CONNECTED:
            msg = f"Database {self.name} is not connected"
            raise DatabaseError(msg)

    @asynccontextmanager
    async def _transaction(self, session: Any) -> AsyncIterator[Any]:
        self._require_connection()
        native = native_session(session)
        if isinstance(native, StoreSession) and native.in_transaction:
            yield native.handle
            return
        handle = await self._begin()
        try:
            yield handle
        except BaseException:
            await self._rollback(handle)
            raise
        await self._commit(handle)

    def _check_unique(
        self,
        collection: str,
        document: Document,
        existing: Sequence[Document],
    ) -> None:
        key = id_key(document["_id"])
        for index in [UniqueIndex("_id_", ("_id",)), *self._indexes.get(collection, [])]:
            values = tuple(get_value(document, path) for path in index.keys)
            for other in existing:
                if other is document:
                    continue
                if index.name != "_id_" and id_key(other["_id"]) == key:
                    continue
                if tuple(get_value(other, path) for path in index.keys) == values:
                    self._raise_duplicate(collection, index, document)

    @staticmethod
    def _raise_duplicate(collection: str, index: UniqueIndex, document: Document) -> None:
        duplicate = {path: get_value(document, path) for path in index.keys}
        msg = (
            f"E11000 duplicate key error collection: {collection} "
            f"index: {index.name} dup key: {json_util.dumps(duplicate)}"
        )
        raise DuplicateKeyError(msg, key=duplicate)

    async def find(
        self,
        collection: str,
        query: Mapping[str, Any],
        *,
        count: bool = False,
        find_one: bool = False,
        projection: Mapping[str, Any] | None = None,
        sort: SortSpec | None = None,
        skip: int | None = None,
        limit: int | None = None,
        session: Any = None,
    ) -> Any:
        query = deserialize(query or {})
        logger.debug("db.%s.find %s", collection, query)

        async def loader() -> list[Document]:
            async with self._transaction(session) as handle:
                return await self._documents(handle, collection)

        cursor = StoreCursor(loader, limit=self.default_limit if limit is None else limit)
        cursor.filter(query)
        if sort is not None:
            cursor.sort(sort)
        if skip:
            cursor.skip(skip)
        if count:
            if limit is None:
                cursor.limit(0)
            return await cursor.count()
        if projection is not None:
            cursor.project(projection)
        if find_one:
            cursor.limit(1)
            return await cursor.next()
        return cursor

    async def insert(
        self,
        collection: str,
        documents: Document | Sequence[Document],
        *,
        session: Any = None,
    ) -> WriteResult:
        many = not isinstance(documents, Mapping)
        batch = [deserialize(document) for document in (documents if many else [documents])]
        logger.debug("db.%s.insert %d document(s)", collection, len(batch))
        async with self._transaction(session) as handle:
            existing = await self._documents(handle, collection)
            for document in batch:
                document.setdefault("_id", ObjectId())
                self._check_unique(collection, document, existing)
                await self._insert_document(handle, collection, copy.deepcopy(document))
                existing.append(document)
        ids = tuple(document["_id"] for document in batch)
        return WriteResult(
            inserted_id=None if many else ids[0],
            inserted_ids=ids if many else (),
            inserted_count=len(batch),
            ops=tuple(batch),
        )

    async def update(
        self,
        collection: str,
        query: Mapping[str, Any],
        update: Mapping[str, Any],
        *,
        multiple: bool = False,
        upsert: bool = False,
        session: Any = None,
    ) -> WriteResult:
        query, update = deserialize(query), deserialize(update)
        if not is_update_document(update):
            msg = "Update document requires atomic operators"
            raise UsageError(msg)
        logger.debug("db.%s.update %s %s", collection, query, update)
        async with self._transaction(session) as handle:
            existing = await self._documents(handle, collection)
            targets = [document for document in existing if matches(document, query)]
            if not multiple:
                targets = targets[:1]
            modified = 0
            for document in targets:
                before = copy.deepcopy(document)
                apply_update(document, update)
                if document["_id"] != before["_id"]:
                    msg = "Performing an update on the path '_id' would modify the immutable field '_id'"
                    raise UsageError(msg)
                if document != before:
                    self._check_unique(collection, document, existing)
                    await self._write_document(handle, collection, document)
                    modified += 1
            if targets or not upsert:
                return WriteResult(matched_count=len(targets), modified_count=modified)
            document = apply_update(seed_from_query(query), update, inserting=True)
            document.setdefault("_id", ObjectId())
            self._check_unique(collection, document, existing)
            await self._insert_document(handle, collection, document)
        return WriteResult(upserted_id=document["_id"], upserted_count=1)

    async def replace(
        self,
        collection: str,
        query: Mapping[str, Any],
        replacement: Document,
        *,
        upsert: bool = False,
        session: Any = None,
    ) -> WriteResult:
        query, replacement = deserialize(query), deserialize(replacement)
        if is_update_document(replacement):
            msg = "Replacement document must not contain atomic operators"
            raise UsageError(msg)
        logger.debug("db.%s.replace %s", collection, query)
        async with self._transaction(session) as handle:
            existing = await self._documents(handle, collection)
            target = next((document for document in existing if matches(document, query)), None)
            if target is None:
                if not upsert:
                    return WriteResult(matched_count=0, ops=(replacement,))
                document = {**seed_from_query(query), **replacement}
                document.setdefault("_id", ObjectId())
                self._check_unique(collection, document, existing)
                await self._insert_document(handle, collection, document)
                return WriteResult(upserted_id=document["_id"], upserted_count=1, ops=(document,))
            document = {"_id": target["_id"], **replacement}
            if document["_id"] != target["_id"]:
                msg = "The _id field cannot be changed by a replacement"
                raise UsageError(msg)
            existing[existing.index(target)] = document
            self._check_unique(collection, document, existing)
            await self._write_document(handle, collection, document)
        return WriteResult(
            matched_count=1,
            modified_count=int(document != target),
            ops=(document,),
        )

    async def remove(
        self,
        collection: str,
        query: Mapping[str, Any],
        *,
        multiple: bool = False,
        session: Any = None,
    ) -> WriteResult:
        query = deserialize(query)
        logger.debug("db.%s.remove %s", collection, query)
        async with self._transaction(session) as handle:
            targets = [
                document
                for document in await self._documents(handle, collection)
                if matches(document, query)
            ]
            if not multiple:
                targets = targets[:1]
            for document in targets:
                await self._delete_document(handle, collection, id_key(document["_id"]))
        return WriteResult(deleted_count=len(targets))

    async def aggregate(
        self,
        collection: str,
        pipeline: Sequence[Mapping[str, Any]],
        *,
        session: Any = None,
    ) -> StoreCursor:
        pipeline = deserialize(list(pipeline))
        logger.debug("db.%s.aggregate %s", collection, pipeline)

        async def loader() -> list[Document]:
            async with self._transaction(session) as handle:
                return aggregate(await self._documents(handle, collection), pipeline)

        return StoreCursor(loader)

    async def distinct(
        self,
        collection: str,
        key: str,
        query: Mapping[str, Any] | None = None,
        *,
        session: Any = None,
    ) -> list[Any]:
        query = deserialize(query or {})
        async with self._transaction(session) as handle:
            documents = await self._documents(handle, collection)
        return distinct((document for document in documents if matches(document, query)), key)

    async def create_index(
        self,
        collection: str,
        keys: SortSpec,
        *,
        unique: bool = False,
        name: str | None = None,
    ) -> str:
        fields = normalize_sort(keys, 1)
        index_name = name or "_".join(f"{key}_{direction}" for key, direction in fields)
        if unique:
            indexes = self._indexes.setdefault(collection, [])
            if all(index.name != index_name for index in indexes):
                indexes.append(UniqueIndex(index_name, tuple(key for key, _ in fields)))
        return index_name

    async def start_session(self) -> StoreSession:
        self._require_connection()
        return StoreSession(self)


__all__ = ["DocumentStore", "StoreCursor", "StoreSession", "UniqueIndex", "id_key"]
