"""Typer CLI for inspecting the configured cosa database."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer
from bson import json_util
from bson.errors import InvalidId

from cosa.db.interfaces import Database
from cosa.errors import CosaError

from .deps import get_connection, get_settings

T = TypeVar("T")

app = typer.Typer(help="cosa command-line interface")


@app.callback()
def configure(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level for cosa loggers"),
) -> None:
    """Configure logging before any command runs."""

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(f"unknown log level {log_level!r}")
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_query(value: str) -> dict[str, Any]:
    try:
        query = json_util.loads(value)
    except (ValueError, InvalidId) as exc:
        raise typer.BadParameter(f"query must be valid JSON: {exc}") from exc
    if not isinstance(query, dict):
        raise typer.BadParameter("query must be a JSON object")
    return query


def _run(action: Callable[[Database], Awaitable[T]]) -> T:
    connection = get_connection()

    async def _execute() -> T:
        try:
            database = await connection.get_database()
            return await action(database)
        finally:
            await connection.close()

    try:
        return asyncio.run(_execute())
    except CosaError as exc:
        typer.echo(f"Error: {exc.message}")
        raise typer.Exit(code=1) from exc


@app.command("show-settings")
def show_settings() -> None:
    """Print the resolved settings."""

    settings = get_settings()
    typer.echo("Environment:\t" + settings.environment)
    typer.echo("Database URL:\t" + settings.database_url)
    typer.echo("Database Name:\t" + settings.resolved_database_name)
    typer.echo(f"Find Limit:\t{settings.default_find_limit}")


@app.command("ping")
def ping() -> None:
    """Connect to the configured database and report its status."""

    async def _ping(database: Database) -> str:
        return f"{database.name}\t{database.status}"

    typer.echo(_run(_ping))


@app.command("count")
def count(
    collection: str,
    query: str = typer.Option("{}", help="Filter as extended JSON"),
) -> None:
    """Count documents in a collection."""

    parsed = _parse_query(query)

    async def _count(database: Database) -> int:
        return await database.find(collection, parsed, count=True)

    typer.echo(str(_run(_count)))


@app.command("find")
def find(
    collection: str,
    query: str = typer.Option("{}", help="Filter as extended JSON"),
    limit: int = typer.Option(20, min=1, help="Maximum number of documents to print"),
) -> None:
    """Print matching documents as extended JSON, one per line."""

    parsed = _parse_query(query)

    async def _find(database: Database) -> list[dict[str, Any]]:
        cursor = await database.find(collection, parsed, limit=limit)
        return await cursor.to_list()

    documents = _run(_find)
    if not documents:
        typer.echo("No documents found")
        return
    for document in documents:
        typer.echo(json_util.dumps(document, sort_keys=True))
