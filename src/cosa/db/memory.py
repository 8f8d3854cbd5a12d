"""In-memory document store used for tests and ``memory://`` connections."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any

from cosa.db.interfaces import Document
from cosa.db.store import DocumentStore, id_key
from cosa.errors import ConflictError

Collections = dict[str, dict[str, Document]]


def _copy(value: Any) -> Any:
    return deepcopy(value)


@dataclass
class MemoryTransaction:
    """Per-document write set over the live store.

    The first write to a document records the live value it replaces; commit
    applies the write set only if none of those documents changed meanwhile.
    """

    base: Collections
    writes: dict[str, dict[str, Document | None]] = field(default_factory=dict)
    seen: dict[tuple[str, str], Document | None] = field(default_factory=dict)

    def read(self, collection: str) -> dict[str, Document]:
        documents = dict(self.base.get(collection, {}))
        for key, document in self.writes.get(collection, {}).items():
            if document is None:
                documents.pop(key, None)
            else:
                documents[key] = document
        return documents

    def _touch(self, collection: str, key: str) -> dict[str, Document | None]:
        if (collection, key) not in self.seen:
            self.seen[(collection, key)] = _copy(self.base.get(collection, {}).get(key))
        return self.writes.setdefault(collection, {})

    def put(self, collection: str, key: str, document: Document) -> None:
        self._touch(collection, key)[key] = _copy(document)

    def delete(self, collection: str, key: str) -> None:
        self._touch(collection, key)[key] = None

    def conflicts(self) -> list[tuple[str, str]]:
        return [
            (collection, key)
            for (collection, key), before in self.seen.items()
            if self.base.get(collection, {}).get(key) != before
        ]


@dataclass
class MemoryDatabase(DocumentStore):
    _collections: Collections = field(default_factory=dict)

    async def _begin(self) -> MemoryTransaction:
        return MemoryTransaction(self._collections)

    async def _commit(self, handle: MemoryTransaction) -> None:
        conflicts = handle.conflicts()
        if conflicts:
            collection, key = conflicts[0]
            msg = f"Transaction conflict on {collection} document {key}"
            raise ConflictError(msg)
        for collection, documents in handle.writes.items():
            live = self._collections.setdefault(collection, {})
            for key, document in documents.items():
                if document is None:
                    live.pop(key, None)
                else:
                    live[key] = document

    async def _rollback(self, handle: MemoryTransaction) -> None:
        handle.writes.clear()
        handle.seen.clear()

    async def _documents(self, handle: MemoryTransaction, collection: str) -> list[Document]:
        return [_copy(document) for document in handle.read(collection).values()]

    async def _insert_document(
        self, handle: MemoryTransaction, collection: str, document: Document
    ) -> None:
        handle.put(collection, id_key(document["_id"]), document)

    async def _write_document(
        self, handle: MemoryTransaction, collection: str, document: Document
    ) -> None:
        handle.put(collection, id_key(document["_id"]), document)

    async def _delete_document(self, handle: MemoryTransaction, collection: str, key: str) -> None:
        handle.delete(collection, key)

    def drop(self) -> None:
        """Discard every collection."""

        self._collections.clear()


__all__ = ["MemoryDatabase", "MemoryTransaction"]
