"""SQLite document store implementation."""

from .database import SQLiteDatabase

__all__ = ["SQLiteDatabase"]
