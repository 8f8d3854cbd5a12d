from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the src/ directory is importable when tests run without an install.
sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from cosa.config import CosaSettings  # noqa: E402
from cosa.connection import Connection  # noqa: E402
from cosa.db.memory import MemoryDatabase  # noqa: E402


@pytest.fixture
def memory_connection() -> Connection:
    """A connection backed by a fresh in-memory store."""

    return Connection(CosaSettings(environment="test"), database=MemoryDatabase(name="cosa_test"))
