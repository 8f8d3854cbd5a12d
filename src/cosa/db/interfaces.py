"""Database collaborator abstractions shared by every backend."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

Document = dict[str, Any]
SortSpec = Mapping[str, int] | Sequence[tuple[str, int]] | Sequence[Sequence[Any]] | str


class ConnectionStatus(StrEnum):
    """Lifecycle states of a database connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class WriteResult:
    """Normalized outcome of a write; ``ops`` holds the written documents."""

    acknowledged: bool = True
    inserted_id: Any = None
    inserted_ids: tuple[Any, ...] = ()
    inserted_count: int = 0
    matched_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    upserted_id: Any = None
    upserted_count: int = 0
    ops: tuple[Document, ...] = field(default_factory=tuple)


class DatabaseCursor(Protocol):
    """Lazy result set returned by ``find`` and ``aggregate``."""

    def filter(self, query: Mapping[str, Any]) -> DatabaseCursor: ...

    def limit(self, count: int) -> DatabaseCursor: ...

    def skip(self, count: int) -> DatabaseCursor: ...

    def sort(self, spec: SortSpec, direction: int | None = None) -> DatabaseCursor: ...

    def project(self, projection: Mapping[str, Any]) -> DatabaseCursor: ...

    def min(self, spec: Mapping[str, Any]) -> DatabaseCursor: ...

    def max(self, spec: Mapping[str, Any]) -> DatabaseCursor: ...

    def map(self, transform: Callable[[Document], Any]) -> DatabaseCursor: ...

    async def count(self) -> int: ...

    async def next(self) -> Any | None: ...

    async def to_list(self, length: int | None = None) -> list[Any]: ...

    async def close(self) -> None: ...

    def is_closed(self) -> bool: ...


class DatabaseSession(Protocol):
    """Native session object a backend hands out from ``start_session``."""

    @property
    def in_transaction(self) -> bool: ...

    def start_transaction(self) -> Any: ...

    async def commit_transaction(self) -> None: ...

    async def abort_transaction(self) -> None: ...

    async def end_session(self) -> None: ...


class Database(Protocol):
    """Operations models perform against a document database."""

    name: str

    @property
    def status(self) -> ConnectionStatus: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

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
    ) -> Any: ...

    async def insert(
        self,
        collection: str,
        documents: Document | Sequence[Document],
        *,
        session: Any = None,
    ) -> WriteResult: ...

    async def update(
        self,
        collection: str,
        query: Mapping[str, Any],
        update: Mapping[str, Any],
        *,
        multiple: bool = False,
        upsert: bool = False,
        session: Any = None,
    ) -> WriteResult: ...

    async def replace(
        self,
        collection: str,
        query: Mapping[str, Any],
        replacement: Document,
        *,
        upsert: bool = False,
        session: Any = None,
    ) -> WriteResult: ...

    async def remove(
        self,
        collection: str,
        query: Mapping[str, Any],
        *,
        multiple: bool = False,
        session: Any = None,
    ) -> WriteResult: ...

    async def aggregate(
        self,
        collection: str,
        pipeline: Sequence[Mapping[str, Any]],
        *,
        session: Any = None,
    ) -> DatabaseCursor: ...

    async def distinct(
        self,
        collection: str,
        key: str,
        query: Mapping[str, Any] | None = None,
        *,
        session: Any = None,
    ) -> list[Any]: ...

    async def create_index(
        self,
        collection: str,
        keys: SortSpec,
        *,
        unique: bool = False,
        name: str | None = None,
    ) -> str: ...

    async def start_session(self) -> DatabaseSession: ...


def native_session(session: Any) -> Any:
    """Unwrap a ``cosa.session.Session`` to the backend session it drives."""

    return getattr(session, "native", session)


def normalize_sort(spec: SortSpec | None, direction: int | None = None) -> list[tuple[str, int]]:
    """Return ``[(key, 1|-1), ...]`` for the accepted sort spellings."""

    if spec is None:
        return []
    if isinstance(spec, str):
        return [(spec, 1 if direction is None else int(direction))]
    if isinstance(spec, Mapping):
        return [(str(key), int(value)) for key, value in spec.items()]
    return [(str(key), int(value)) for key, value in spec]


__all__ = [
    "ConnectionStatus",
    "Database",
    "DatabaseCursor",
    "DatabaseSession",
    "Document",
    "SortSpec",
    "WriteResult",
    "native_session",
    "normalize_sort",
]
