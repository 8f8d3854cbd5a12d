from __future__ import annotations

import asyncio

from cosa.cursor import Cursor
from cosa.db.store import StoreCursor


def _cursor(count: int = 5) -> Cursor:
    async def loader() -> list[dict]:
        return [{"n": value} for value in range(count)]

    return Cursor(StoreCursor(loader), lambda document: ("row", document["n"]))


def test_rows_pass_through_factory() -> None:
    async def _run() -> tuple:
        cursor = _cursor().filter({"n": {"$gte": 1}}).sort("n", -1).skip(1).limit(2)
        first = await cursor.next()
        rest = await cursor.to_list()
        return first, rest, await cursor.next(), cursor.is_closed()

    first, rest, exhausted, closed = asyncio.run(_run())

    assert first == ("row", 3)
    assert rest == [("row", 2)]
    assert exhausted is None
    assert closed


def test_map_composes_with_factory_and_count() -> None:
    async def _run() -> tuple[list, int]:
        cursor = _cursor().map(lambda row: row[1] * 10)
        return await cursor.to_list(), await _cursor(3).count()

    assert asyncio.run(_run()) == ([0, 10, 20, 30, 40], 3)


def test_async_iteration_and_close() -> None:
    async def _run() -> tuple[list, object]:
        cursor = _cursor(3)
        seen = [row async for row in cursor]
        other = _cursor(3)
        await other.close()
        return seen, await other.next()

    seen, after_close = asyncio.run(_run())

    assert seen == [("row", 0), ("row", 1), ("row", 2)]
    assert after_close is None


def test_serial_for_each_awaits_each_row() -> None:
    events: list[str] = []

    async def visit(row: tuple) -> None:
        events.append(f"start {row[1]}")
        await asyncio.sleep(0)
        events.append(f"end {row[1]}")

    asyncio.run(_cursor(2).serial_for_each(visit))

    assert events == ["start 0", "end 0", "start 1", "end 1"]


def test_for_each_accepts_sync_iterators() -> None:
    seen: list[int] = []

    asyncio.run(_cursor(3).for_each(lambda row: seen.append(row[1])))

    assert seen == [0, 1, 2]


def test_parallel_limit_bounds_concurrency() -> None:
    active = 0
    peak = 0
    seen: list[int] = []

    async def visit(row: tuple) -> None:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        seen.append(row[1])
        active -= 1

    asyncio.run(_cursor(7).for_each_parallel_limit(3, visit))

    assert peak == 3
    assert sorted(seen) == list(range(7))
