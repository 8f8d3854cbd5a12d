from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from cosa.cli.app import app
from cosa.cli.deps import reset_connection
from cosa.db.sqlite import SQLiteDatabase


def _env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> str:
    db_url = f"sqlite+aiosqlite:///{tmp_path/'cli.db'}"
    monkeypatch.setenv("COSA_DB_URI", db_url)
    monkeypatch.setenv("COSA_DB_NAME", "cli")
    monkeypatch.setenv("COSA_ENV", "test")
    reset_connection()
    return db_url


def _seed(url: str) -> None:
    async def _run() -> None:
        database = SQLiteDatabase(name="cli", url=url)
        await database.connect()
        await database.insert(
            "books",
            [{"title": "Dune", "year": 1965}, {"title": "Emma", "year": 1815}, {"title": "Ubik", "year": 1969}],
        )
        await database.close()

    asyncio.run(_run())


def test_show_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    url = _env(monkeypatch, tmp_path)
    runner = CliRunner()

    result = runner.invoke(app, ["show-settings"])

    assert result.exit_code == 0
    assert "Environment:\ttest" in result.stdout
    assert f"Database URL:\t{url}" in result.stdout
    assert "Database Name:\tcli" in result.stdout


def test_count_and_find(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _seed(_env(monkeypatch, tmp_path))
    runner = CliRunner()

    counted = runner.invoke(app, ["count", "books", "--query", '{"year": {"$gt": 1900}}'])
    assert counted.exit_code == 0
    assert counted.stdout.strip() == "2"

    found = runner.invoke(app, ["find", "books", "--query", '{"title": "Emma"}'])
    assert found.exit_code == 0
    lines = found.stdout.strip().splitlines()
    assert len(lines) == 1
    document = json.loads(lines[0])
    assert document["title"] == "Emma"
    assert "$oid" in document["_id"]

    limited = runner.invoke(app, ["find", "books", "--limit", "2"])
    assert len(limited.stdout.strip().splitlines()) == 2

    empty = runner.invoke(app, ["find", "authors"])
    assert empty.exit_code == 0
    assert "No documents found" in empty.stdout


def test_ping_reports_connected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _env(monkeypatch, tmp_path)
    runner = CliRunner()

    result = runner.invoke(app, ["ping"])

    assert result.exit_code == 0
    assert result.stdout.strip() == "cli\tconnected"


def test_invalid_query_is_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _env(monkeypatch, tmp_path)
    runner = CliRunner()

    not_json = runner.invoke(app, ["count", "books", "--query", "{oops"])
    not_object = runner.invoke(app, ["count", "books", "--query", "[1, 2]"])

    assert not_json.exit_code != 0
    assert not_object.exit_code != 0


def test_unsupported_url_exits_with_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COSA_DB_URI", "redis://localhost")
    reset_connection()
    runner = CliRunner()

    result = runner.invoke(app, ["count", "books"])

    assert result.exit_code == 1
    assert "Error: invalid database uri: redis://localhost" in result.stdout
    reset_connection()
