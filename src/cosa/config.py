"""Lightweight configuration loader for cosa."""

from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlsplit


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def database_name_from_url(url: str) -> str:
    """Return the database name encoded in the last path segment of ``url``."""

    parts = urlsplit(url)
    name = parts.path.rsplit("/", maxsplit=1)[-1]
    if not name and parts.scheme == "memory":
        # memory://name carries the name in the netloc
        name = parts.netloc
    if "?" in name:
        name = name[: name.index("?")]
    return name or "cosa"


@dataclass(frozen=True)
class CosaSettings:
    """Immutable configuration sourced from environment variables."""

    environment: str = "development"
    database_url: str = "memory://cosa"
    database_name: str | None = None
    read_preference: str | None = None
    default_find_limit: int = 1000
    reconnect_attempts: int = 3
    reconnect_delay: float = 0.5

    @property
    def resolved_database_name(self) -> str:
        return self.database_name or database_name_from_url(self.database_url)

    @classmethod
    def from_env(cls) -> CosaSettings:
        return cls(
            environment=os.getenv("COSA_ENV", cls.environment),
            database_url=os.getenv("COSA_DB_URI", cls.database_url),
            database_name=os.getenv("COSA_DB_NAME") or None,
            read_preference=os.getenv("COSA_DB_READ_PREFERENCE") or None,
            default_find_limit=_env_int("COSA_DEFAULT_FIND_LIMIT", cls.default_find_limit),
            reconnect_attempts=_env_int("COSA_RECONNECT_ATTEMPTS", cls.reconnect_attempts),
            reconnect_delay=_env_float("COSA_RECONNECT_DELAY", cls.reconnect_delay),
        )


__all__ = ["CosaSettings", "database_name_from_url"]
