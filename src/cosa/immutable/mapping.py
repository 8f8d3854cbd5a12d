"""Plain object handler: every key becomes a lazily wrapped, memoized property."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from cosa.immutable.core import Builder, ImmutableOptions, create


def _lazy(data: Mapping[str, Any], key: str, definition: Any = None) -> Callable[[], Any]:
    def getter() -> Any:
        return create(data.get(key), clone=False, definition=definition)

    return getter


def wrap_keys(data: Mapping[str, Any], builder: Builder) -> None:
    """Expose every key of ``data`` not already claimed by another accessor."""

    for key, value in data.items():
        if key in builder.props or callable(value):
            continue
        builder.define_property(key, _lazy(data, key), memoize=True)


def plain_object(data: Any, builder: Builder, options: ImmutableOptions) -> None:
    if isinstance(data, Mapping):
        wrap_keys(data, builder)


__all__ = ["plain_object", "wrap_keys"]
