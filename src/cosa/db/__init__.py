"""Database collaborators: the protocol and its in-memory, SQLite and MongoDB backends."""

from cosa.db.interfaces import (
    ConnectionStatus,
    Database,
    DatabaseCursor,
    DatabaseSession,
    WriteResult,
)
from cosa.db.memory import MemoryDatabase
from cosa.db.store import DocumentStore, StoreCursor, StoreSession

__all__ = [
    "ConnectionStatus",
    "Database",
    "DatabaseCursor",
    "DatabaseSession",
    "DocumentStore",
    "MemoryDatabase",
    "StoreCursor",
    "StoreSession",
    "WriteResult",
]
