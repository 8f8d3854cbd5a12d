"""Shared CLI dependency helpers."""

from __future__ import annotations

from functools import lru_cache

from cosa.config import CosaSettings
from cosa.connection import Connection


@lru_cache(maxsize=1)
def get_settings() -> CosaSettings:
    """Return cached settings resolved from the environment."""

    return CosaSettings.from_env()


@lru_cache(maxsize=1)
def get_connection() -> Connection:
    """Return a cached connection for CLI commands."""

    return Connection(get_settings())


def reset_connection() -> None:
    """Clear the cached settings and connection (useful for tests)."""

    get_settings.cache_clear()
    get_connection.cache_clear()
