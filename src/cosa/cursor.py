"""Cursor adapter that turns raw rows into model instances."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

from cosa.db.interfaces import DatabaseCursor, SortSpec
from cosa.utils import maybe_await

Factory = Callable[[Any], Any]


class Cursor:
    """Wraps a database cursor; every row it yields goes through ``factory`` first."""

    def __init__(self, cursor: DatabaseCursor, factory: Factory) -> None:
        self._cursor = cursor
        self._factory = factory

    def filter(self, query: Mapping[str, Any]) -> Cursor:
        self._cursor.filter(query)
        return self

    def limit(self, count: int) -> Cursor:
        self._cursor.limit(count)
        return self

    def skip(self, count: int) -> Cursor:
        self._cursor.skip(count)
        return self

    def sort(self, spec: SortSpec, direction: int | None = None) -> Cursor:
        self._cursor.sort(spec, direction)
        return self

    def min(self, spec: Mapping[str, Any]) -> Cursor:
        self._cursor.min(spec)
        return self

    def max(self, spec: Mapping[str, Any]) -> Cursor:
        self._cursor.max(spec)
        return self

    def map(self, transform: Callable[[Any], Any]) -> Cursor:
        """Return a cursor over ``transform(instance)`` for each row."""

        factory = self._factory
        return Cursor(self._cursor, lambda document: transform(factory(document)))

    async def count(self) -> int:
        return await self._cursor.count()

    async def close(self) -> None:
        await self._cursor.close()

    def is_closed(self) -> bool:
        return self._cursor.is_closed()

    async def next(self) -> Any | None:
        document = await self._cursor.next()
        if document is None:
            return None
        return self._factory(document)

    async def to_list(self, length: int | None = None) -> list[Any]:
        return [self._factory(document) for document in await self._cursor.to_list(length)]

    async def for_each(self, iterator: Callable[[Any], Any]) -> None:
        async for item in self:
            await maybe_await(iterator(item))

    async def serial_for_each(self, iterator: Callable[[Any], Any]) -> None:
        """Pull one row, await its iterator, then pull the next."""

        while True:
            item = await self.next()
            if item is None:
                return
            await maybe_await(iterator(item))

    async def for_each_parallel_limit(
        self,
        max_parallel: int,
        iterator: Callable[[Any], Any],
    ) -> None:
        """Process rows with at most ``max_parallel`` iterators in flight."""

        pull = asyncio.Lock()

        async def chain() -> None:
            while True:
                async with pull:
                    item = await self.next()
                if item is None:
                    return
                await maybe_await(iterator(item))

        await asyncio.gather(*(chain() for _ in range(max(max_parallel, 1))))

    def __aiter__(self) -> Cursor:
        return self

    async def __anext__(self) -> Any:
        item = await self.next()
        if item is None:
            raise StopAsyncIteration
        return item


__all__ = ["Cursor"]
