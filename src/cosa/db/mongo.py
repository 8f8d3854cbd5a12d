"""MongoDB backend on top of Motor."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError
from pymongo.errors import PyMongoError

from cosa.db.interfaces import (
    ConnectionStatus,
    Document,
    SortSpec,
    WriteResult,
    native_session,
    normalize_sort,
)
from cosa.db.store import StoreCursor
from cosa.errors import DatabaseError, DuplicateKeyError, UsageError
from cosa.serialization import deserialize

logger = logging.getLogger(__name__)


def _translate(exc: PyMongoError) -> DatabaseError:
    if isinstance(exc, MongoDuplicateKeyError):
        details = exc.details or {}
        return DuplicateKeyError(str(exc), key=details.get("keyValue"))
    return DatabaseError(str(exc))


class MongoCursor:
    """Lazy wrapper that builds the Motor cursor on first read."""

    def __init__(
        self,
        collection: Any,
        query: Mapping[str, Any],
        *,
        limit: int | None,
        session: Any = None,
    ) -> None:
        self._collection = collection
        self._query: dict[str, Any] = dict(query)
        self._options: dict[str, Any] = {"limit": limit or 0}
        self._session = session
        self._transforms: list[Callable[[Any], Any]] = []
        self._cursor: Any = None
        self._closed = False

    def _set(self, key: str, value: Any) -> MongoCursor:
        if self._cursor is not None:
            msg = "Cursor is already started"
            raise UsageError(msg)
        self._options[key] = value
        return self

    def filter(self, query: Mapping[str, Any]) -> MongoCursor:
        if self._cursor is not None:
            msg = "Cursor is already started"
            raise UsageError(msg)
        query = deserialize(query)
        self._query = {"$and": [self._query, query]} if self._query else query
        return self

    def limit(self, count: int) -> MongoCursor:
        return self._set("limit", count)

    def skip(self, count: int) -> MongoCursor:
        return self._set("skip", count)

    def sort(self, spec: SortSpec, direction: int | None = None) -> MongoCursor:
        return self._set("sort", normalize_sort(spec, direction))

    def project(self, projection: Mapping[str, Any]) -> MongoCursor:
        return self._set("projection", dict(projection))

    def min(self, spec: Mapping[str, Any]) -> MongoCursor:
        return self._set("min", list(deserialize(spec).items()))

    def max(self, spec: Mapping[str, Any]) -> MongoCursor:
        return self._set("max", list(deserialize(spec).items()))

    def map(self, transform: Callable[[Any], Any]) -> MongoCursor:
        self._transforms.append(transform)
        return self

    def _started(self) -> Any:
        if self._cursor is None:
            self._cursor = self._collection.find(self._query, session=self._session, **self._options)
        return self._cursor

    async def count(self) -> int:
        options = {key: self._options[key] for key in ("skip", "limit") if self._options.get(key)}
        try:
            return await self._collection.count_documents(
                self._query, session=self._session, **options
            )
        except PyMongoError as exc:
            raise _translate(exc) from exc

    async def next(self) -> Any | None:
        if self._closed:
            return None
        try:
            document = await self._started().next()
        except StopAsyncIteration:
            return None
        except PyMongoError as exc:
            raise _translate(exc) from exc
        for transform in self._transforms:
            document = transform(document)
        return document

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
        if self._cursor is not None:
            await self._cursor.close()

    def is_closed(self) -> bool:
        return self._closed or (self._cursor is not None and not self._cursor.alive)

    def __aiter__(self) -> MongoCursor:
        return self

    async def __anext__(self) -> Any:
        document = await self.next()
        if document is None:
            raise StopAsyncIteration
        return document


class MongoDatabase:
    """``Database`` implementation for ``mongodb://`` and ``mongodb+srv://`` URLs."""

    def __init__(
        self,
        url: str,
        *,
        name: str = "cosa",
        read_preference: str | None = None,
        default_limit: int = 1000,
    ) -> None:
        self.url = url
        self.name = name
        self.read_preference = read_preference
        self.default_limit = default_limit
        self._client: AsyncIOMotorClient | None = None
        self._db: AsyncIOMotorDatabase | None = None
        self._status = ConnectionStatus.DISCONNECTED

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    async def connect(self) -> None:
        if self._status is ConnectionStatus.CONNECTED:
            return
        self._status = ConnectionStatus.CONNECTING
        options: dict[str, Any] = {}
        if self.read_preference:
            options["readPreference"] = self.read_preference
        try:
            client = AsyncIOMotorClient(self.url, **options)
            await client.admin.command("ping")
        except PyMongoError as exc:
            self._status = ConnectionStatus.DISCONNECTED
            msg = f"Unable to connect to MongoDB database {self.name}"
            raise DatabaseError(msg) from exc
        self._client = client
        self._db = client[self.name]
        self._status = ConnectionStatus.CONNECTED
        logger.info("Connected to MongoDB database %s", self.name)

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._db = None
        self._status = ConnectionStatus.DISCONNECTED

    def _collection(self, name: str) -> Any:
        if self._db is None:
            msg = f"Database {self.name} is not connected"
            raise DatabaseError(msg)
        return self._db[name]

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
        session = native_session(session)
        target = self._collection(collection)
        logger.debug("db.%s.find %s", collection, query)
        try:
            if count:
                if not query and session is None:
                    total = await target.estimated_document_count()
                    total = max(total - (skip or 0), 0)
                    return min(total, limit) if limit else total
                options = {key: value for key, value in (("skip", skip), ("limit", limit)) if value}
                return await target.count_documents(query, session=session, **options)
            if find_one:
                return await target.find_one(
                    query,
                    projection=projection,
                    skip=skip or 0,
                    sort=normalize_sort(sort) or None,
                    session=session,
                )
        except PyMongoError as exc:
            raise _translate(exc) from exc
        cursor = MongoCursor(
            target,
            query,
            limit=self.default_limit if limit is None else limit,
            session=session,
        )
        if projection is not None:
            cursor.project(projection)
        if sort is not None:
            cursor.sort(sort)
        if skip:
            cursor.skip(skip)
        return cursor

    async def insert(
        self,
        collection: str,
        documents: Document | Sequence[Document],
        *,
        session: Any = None,
    ) -> WriteResult:
        many = not isinstance(documents, Mapping)
        batch = deserialize(list(documents) if many else [documents])
        target = self._collection(collection)
        logger.debug("db.%s.insert %d document(s)", collection, len(batch))
        try:
            if many:
                result = await target.insert_many(batch, session=native_session(session))
                ids = tuple(result.inserted_ids)
            else:
                result = await target.insert_one(batch[0], session=native_session(session))
                ids = (result.inserted_id,)
        except PyMongoError as exc:
            raise _translate(exc) from exc
        for document, inserted_id in zip(batch, ids, strict=True):
            document["_id"] = inserted_id
        return WriteResult(
            acknowledged=result.acknowledged,
            inserted_id=None if many else ids[0],
            inserted_ids=ids if many else (),
            inserted_count=len(ids),
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
        target = self._collection(collection)
        action = target.update_many if multiple else target.update_one
        try:
            result = await action(
                deserialize(query), deserialize(update), upsert=upsert, session=native_session(session)
            )
        except PyMongoError as exc:
            raise _translate(exc) from exc
        return WriteResult(
            acknowledged=result.acknowledged,
            matched_count=result.matched_count,
            modified_count=result.modified_count,
            upserted_id=result.upserted_id,
            upserted_count=int(result.upserted_id is not None),
        )

    async def replace(
        self,
        collection: str,
        query: Mapping[str, Any],
        replacement: Document,
        *,
        upsert: bool = False,
        session: Any = None,
    ) -> WriteResult:
        replacement = deserialize(replacement)
        try:
            result = await self._collection(collection).replace_one(
                deserialize(query), replacement, upsert=upsert, session=native_session(session)
            )
        except PyMongoError as exc:
            raise _translate(exc) from exc
        return WriteResult(
            acknowledged=result.acknowledged,
            matched_count=result.matched_count,
            modified_count=result.modified_count,
            upserted_id=result.upserted_id,
            upserted_count=int(result.upserted_id is not None),
            ops=(replacement,),
        )

    async def remove(
        self,
        collection: str,
        query: Mapping[str, Any],
        *,
        multiple: bool = False,
        session: Any = None,
    ) -> WriteResult:
        target = self._collection(collection)
        action = target.delete_many if multiple else target.delete_one
        try:
            result = await action(deserialize(query), session=native_session(session))
        except PyMongoError as exc:
            raise _translate(exc) from exc
        return WriteResult(acknowledged=result.acknowledged, deleted_count=result.deleted_count)

    async def aggregate(
        self,
        collection: str,
        pipeline: Sequence[Mapping[str, Any]],
        *,
        session: Any = None,
    ) -> StoreCursor:
        motor_cursor = self._collection(collection).aggregate(
            deserialize(list(pipeline)), session=native_session(session)
        )

        async def loader() -> list[Document]:
            try:
                return await motor_cursor.to_list(None)
            except PyMongoError as exc:
                raise _translate(exc) from exc

        return StoreCursor(loader)

    async def distinct(
        self,
        collection: str,
        key: str,
        query: Mapping[str, Any] | None = None,
        *,
        session: Any = None,
    ) -> list[Any]:
        try:
            return await self._collection(collection).distinct(
                key, deserialize(query or {}), session=native_session(session)
            )
        except PyMongoError as exc:
            raise _translate(exc) from exc

    async def create_index(
        self,
        collection: str,
        keys: SortSpec,
        *,
        unique: bool = False,
        name: str | None = None,
    ) -> str:
        options: dict[str, Any] = {"unique": unique}
        if name:
            options["name"] = name
        try:
            return await self._collection(collection).create_index(
                normalize_sort(keys, 1), **options
            )
        except PyMongoError as exc:
            raise _translate(exc) from exc

    async def start_session(self) -> Any:
        if self._client is None:
            msg = f"Database {self.name} is not connected"
            raise DatabaseError(msg)
        return await self._client.start_session()


__all__ = ["MongoCursor", "MongoDatabase"]
