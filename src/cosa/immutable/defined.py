"""Defined object handler: declared properties, defaults, virtuals and methods."""

from __future__ import annotations

from collections.abc import Callable, MutableMapping
from typing import Any

from cosa.definitions import PropertyDefinition
from cosa.immutable.core import Builder, ImmutableOptions, create
from cosa.immutable.mapping import wrap_keys


def _declared(data: MutableMapping[str, Any], key: str, definition: PropertyDefinition) -> Callable[[], Any]:
    def getter() -> Any:
        return create(data.get(key), clone=False, definition=definition)

    return getter


def _virtual(data: MutableMapping[str, Any], func: Callable[[Any], Any]) -> Callable[[], Any]:
    def getter() -> Any:
        return create(func(data))

    return getter


def defined_object(data: MutableMapping[str, Any], builder: Builder, options: ImmutableOptions) -> None:
    """Apply a property definition to a mapping.

    Missing properties that declare a default receive it before the wrapper is
    frozen. Keys the definition does not declare are still exposed as plain
    properties.
    """

    definition = options.definition
    if definition is not None:
        if definition.name:
            builder.type = definition.name
        for key, prop in definition.properties.items():
            if prop.type == "virtual":
                continue
            if key not in data and prop.has_default:
                data[key] = prop.default_value()
            builder.define_property(
                key, _declared(data, key, prop), enumerable=prop.enumerable, memoize=True
            )
        for key, func in definition.virtuals.items():
            builder.define_property(key, _virtual(data, func))
        for key, func in definition.methods.items():
            builder.define_method(key, func, bind=True)
    wrap_keys(data, builder)


__all__ = ["defined_object"]
