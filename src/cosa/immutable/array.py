"""Array handler: list methods that return new immutable lists."""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable
from typing import Any

from cosa.immutable.core import Builder, ImmutableOptions, create, plain_copy, to_plain

_NO_INITIAL = object()


def _arity(callback: Callable[..., Any]) -> int:
    try:
        signature = inspect.signature(callback)
    except (TypeError, ValueError):
        return 1
    count = 0
    for parameter in signature.parameters.values():
        if parameter.kind is inspect.Parameter.VAR_POSITIONAL:
            return 3
        if parameter.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            count += 1
    return count


def _invoke(callback: Callable[..., Any], *args: Any) -> Any:
    return callback(*args[: _arity(callback)])


def _normalize_index(index: int, length: int) -> int:
    if index < 0:
        return max(length + index, 0)
    return min(index, length)


def array(data: list[Any], builder: Builder, options: ImmutableOptions) -> None:
    """Install array accessors; items are wrapped lazily with the item definition."""

    builder.type = "Array"
    item_definition = options.definition.items if options.definition is not None else None

    def wrap(value: Any) -> Any:
        return create(value, clone=False, definition=item_definition)

    def at(index: int) -> Any:
        return wrap(data[index])

    def wrapped() -> list[Any]:
        return [wrap(value) for value in data]

    def for_each(callback: Callable[..., Any]) -> None:
        items = wrapped()
        for index, item in enumerate(items):
            _invoke(callback, item, index, self_ref())

    def map_(callback: Callable[..., Any]) -> Any:
        items = wrapped()
        return create([_invoke(callback, item, index, self_ref()) for index, item in enumerate(items)])

    def filter_(callback: Callable[..., Any]) -> Any:
        items = wrapped()
        kept = [
            data[index]
            for index, item in enumerate(items)
            if _invoke(callback, item, index, self_ref())
        ]
        return create(kept)

    def find(callback: Callable[..., Any]) -> Any:
        for index, item in enumerate(wrapped()):
            if _invoke(callback, item, index, self_ref()):
                return item
        return None

    def find_index(callback: Callable[..., Any]) -> int:
        for index, item in enumerate(wrapped()):
            if _invoke(callback, item, index, self_ref()):
                return index
        return -1

    def some(callback: Callable[..., Any]) -> bool:
        return any(_invoke(callback, item, index, self_ref()) for index, item in enumerate(wrapped()))

    def every(callback: Callable[..., Any]) -> bool:
        return all(_invoke(callback, item, index, self_ref()) for index, item in enumerate(wrapped()))

    def _reduce(callback: Callable[..., Any], initial: Any, indexes: list[int]) -> Any:
        items = wrapped()
        if initial is _NO_INITIAL:
            if not indexes:
                msg = "Reduce of empty array with no initial value"
                raise TypeError(msg)
            accumulator, indexes = items[indexes[0]], indexes[1:]
        else:
            accumulator = create(initial)
        for index in indexes:
            accumulator = create(_invoke(callback, accumulator, items[index], index, self_ref()))
        return accumulator

    def reduce(callback: Callable[..., Any], initial: Any = _NO_INITIAL) -> Any:
        return _reduce(callback, initial, list(range(len(data))))

    def reduce_right(callback: Callable[..., Any], initial: Any = _NO_INITIAL) -> Any:
        return _reduce(callback, initial, list(reversed(range(len(data)))))

    def concat(*values: Any) -> Any:
        combined = list(data)
        for value in values:
            value = to_plain(value)
            if isinstance(value, list):
                combined.extend(value)
            else:
                combined.append(value)
        return create(combined)

    def join(separator: str = ",") -> str:
        return separator.join("" if value is None else str(value) for value in data)

    def slice_(start: int | None = None, end: int | None = None) -> Any:
        return create(data[start:end])

    def index_of(value: Any, from_index: int = 0) -> int:
        value = to_plain(value)
        for index in range(_normalize_index(from_index, len(data)), len(data)):
            if data[index] == value:
                return index
        return -1

    def last_index_of(value: Any) -> int:
        value = to_plain(value)
        for index in range(len(data) - 1, -1, -1):
            if data[index] == value:
                return index
        return -1

    def includes(value: Any) -> bool:
        return index_of(value) != -1

    def push(*values: Any) -> Any:
        return create([*data, *plain_copy(list(values))])

    def pop() -> Any:
        return create(data[:-1])

    def shift() -> Any:
        return create(data[1:])

    def unshift(*values: Any) -> Any:
        return create([*plain_copy(list(values)), *data])

    def splice(start: int, delete_count: int | None = None, *values: Any) -> Any:
        begin = _normalize_index(start, len(data))
        if delete_count is None:
            delete_count = len(data) - begin
        end = begin + max(min(delete_count, len(data) - begin), 0)
        return create([*data[:begin], *plain_copy(list(values)), *data[end:]])

    def sort(
        compare: Callable[[Any, Any], int] | None = None,
        *,
        key: Callable[[Any], Any] | None = None,
        reverse: bool = False,
    ) -> Any:
        values = plain_copy(data)
        if compare is not None:
            key = functools.cmp_to_key(lambda left, right: compare(wrap(left), wrap(right)))
        values.sort(key=key, reverse=reverse)
        return create(values, clone=False)

    def reverse() -> Any:
        return create(list(reversed(data)))

    def to_string() -> str:
        return join(",")

    def self_ref() -> Any:
        return builder.instance

    builder.define_property("length", lambda: len(data), enumerable=False)
    for name, method in (
        ("at", at),
        ("for_each", for_each),
        ("map", map_),
        ("filter", filter_),
        ("find", find),
        ("find_index", find_index),
        ("some", some),
        ("every", every),
        ("reduce", reduce),
        ("reduce_right", reduce_right),
        ("concat", concat),
        ("join", join),
        ("slice", slice_),
        ("index_of", index_of),
        ("last_index_of", last_index_of),
        ("includes", includes),
        ("push", push),
        ("pop", pop),
        ("shift", shift),
        ("unshift", unshift),
        ("splice", splice),
        ("sort", sort),
        ("reverse", reverse),
        ("to_string", to_string),
    ):
        builder.define_method(name, method)


__all__ = ["array"]
