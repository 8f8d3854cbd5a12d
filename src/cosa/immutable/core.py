"""Frozen, type tagged wrappers around plain data with copy-on-write mutation."""

from __future__ import annotations

import copy
import types
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from bson import ObjectId

from cosa.definitions import PropertyDefinition
from cosa.errors import MutationError

Handler = Callable[[Any, "Builder", "ImmutableOptions"], None]

_IMMUTABLE_TYPES = (str, bytes, bool, int, float, complex, Decimal, UUID, type(None))


@dataclass(frozen=True, slots=True)
class ImmutableOptions:
    """Options handed to every type handler."""

    clone: bool = True
    definition: PropertyDefinition | None = None


@dataclass(slots=True)
class Accessor:
    """Single entry of an immutable accessor table."""

    getter: Callable[[], Any] | None = None
    method: Callable[..., Any] | None = None
    enumerable: bool = True
    memoize: bool = False
    bind: bool = False

    @property
    def is_method(self) -> bool:
        return self.method is not None


@dataclass(slots=True)
class Builder:
    """Collects accessors while type handlers run, before the wrapper is frozen."""

    type: str = "object"
    props: dict[str, Accessor] = field(default_factory=dict)
    # the finished wrapper, set once create() has built it
    instance: Immutable | None = None

    def define_property(
        self,
        name: str,
        getter_or_value: Any,
        *,
        enumerable: bool = True,
        memoize: bool = False,
    ) -> None:
        if callable(getter_or_value):
            getter = getter_or_value
        else:

            def getter(value: Any = getter_or_value) -> Any:
                return create(value)

        self.props[name] = Accessor(getter=getter, enumerable=enumerable, memoize=memoize)

    def define_method(
        self,
        name: str,
        func: Callable[..., Any],
        *,
        enumerable: bool = False,
        bind: bool = False,
    ) -> None:
        self.props[name] = Accessor(method=func, enumerable=enumerable, bind=bind)


@dataclass(frozen=True, slots=True)
class _Registration:
    type: str | type
    handler: Handler

    def matches(self, data: Any) -> bool:
        if isinstance(self.type, str):
            name = self.type.lower()
            if name == "*":
                return True
            if name == "array":
                return isinstance(data, list)
            if name == "objectid":
                return isinstance(data, ObjectId)
            return type(data).__name__.lower() == name
        return isinstance(data, self.type)


_handlers: list[_Registration] = []


class Immutable:
    """Read-only view over plain data; every write attempt raises ``MutationError``."""

    __slots__ = ("_data", "_type", "_props", "_cache")

    def __init__(self, data: Any, type_name: str, props: Mapping[str, Accessor]) -> None:
        object.__setattr__(self, "_data", data)
        object.__setattr__(self, "_type", type_name)
        object.__setattr__(self, "_props", dict(props))
        object.__setattr__(self, "_cache", {})

    def _resolve(self, name: str, accessor: Accessor) -> Any:
        if accessor.method is not None:
            if accessor.bind:
                return types.MethodType(accessor.method, self)
            return accessor.method
        if accessor.memoize:
            if name not in self._cache:
                self._cache[name] = accessor.getter()
            return self._cache[name]
        return accessor.getter()

    def __getattr__(self, name: str) -> Any:
        try:
            accessor = self._props[name]
        except KeyError:
            msg = f"Immutable {self._type} has no attribute {name!r}"
            raise AttributeError(msg) from None
        return self._resolve(name, accessor)

    def __setattr__(self, name: str, value: Any) -> None:
        msg = f"Cannot modify {name} of immutable {self._type}"
        raise MutationError(msg)

    def __delattr__(self, name: str) -> None:
        msg = f"Cannot modify {name} of immutable {self._type}"
        raise MutationError(msg)

    def __setitem__(self, key: Any, value: Any) -> None:
        msg = f"Cannot modify {key} of immutable {self._type}"
        raise MutationError(msg)

    def __delitem__(self, key: Any) -> None:
        msg = f"Cannot modify {key} of immutable {self._type}"
        raise MutationError(msg)

    def __getitem__(self, key: Any) -> Any:
        if isinstance(key, str):
            accessor = self._props.get(key)
            if accessor is None:
                raise KeyError(key)
            return self._resolve(key, accessor)
        if isinstance(self._data, list):
            if isinstance(key, slice):
                return create(self._data[key])
            at = self._props.get("at")
            if at is not None and at.method is not None:
                return at.method(key)
            return create(self._data[key], clone=False)
        raise KeyError(key)

    def __iter__(self) -> Iterator[Any]:
        if isinstance(self._data, list):
            return iter([self[index] for index in range(len(self._data))])
        return iter(self.keys())

    def keys(self) -> list[str]:
        """Names of the enumerable properties of this wrapper."""

        return [
            name
            for name, accessor in self._props.items()
            if accessor.enumerable and not accessor.is_method
        ]

    def __len__(self) -> int:
        if isinstance(self._data, (list, Mapping)):
            return len(self._data)
        msg = f"Immutable {self._type} has no length"
        raise TypeError(msg)

    def __contains__(self, item: Any) -> bool:
        if isinstance(self._data, list):
            return to_plain(item) in self._data
        if isinstance(self._data, Mapping):
            return item in self._data
        return False

    def __bool__(self) -> bool:
        return bool(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Immutable):
            return self._type == other._type and self._data == other._data
        return bool(self._data == other)

    def __hash__(self) -> int:
        if isinstance(self._data, (list, Mapping)):
            msg = f"Immutable {self._type} backed by a container is not hashable"
            raise TypeError(msg)
        return hash((self._type, self._data))

    def __copy__(self) -> Immutable:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> Immutable:
        return self

    def __dir__(self) -> list[str]:
        return sorted(self._props)

    def __str__(self) -> str:
        to_string = self._props.get("to_string")
        if to_string is not None and to_string.method is not None:
            return str(to_string.method())
        return str(self._data)

    def __repr__(self) -> str:
        return f"<Immutable {self._type} {self._data!r}>"


def _clone(value: Any) -> Any:
    if isinstance(value, Immutable):
        return _clone(value.to_object())
    if isinstance(value, Mapping):
        return {key: _clone(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clone(item) for item in value]
    if isinstance(value, _IMMUTABLE_TYPES) or callable(value):
        return value
    return copy.deepcopy(value)


def plain_copy(value: Any) -> Any:
    """Deep copy ``value`` unwrapping every nested immutable instance."""

    return _clone(value)


def to_plain(value: Any) -> Any:
    """Return the plain representation of ``value`` without copying plain data."""

    if isinstance(value, Immutable):
        return value.to_object()
    if isinstance(value, Mapping):
        if not any(isinstance(item, (Immutable, Mapping, list, tuple)) for item in value.values()):
            return value
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


def use(type_or_handler: str | type | Handler, handler: Handler | None = None) -> None:
    """Register a type handler; a single argument registers a catch-all handler."""

    if handler is None:
        handler = type_or_handler  # type: ignore[assignment]
        type_or_handler = "*"
    _handlers.append(_Registration(type=type_or_handler, handler=handler))  # type: ignore[arg-type]


def is_immutable(value: Any) -> bool:
    """Return ``True`` for scalars, callables and values already wrapped."""

    if isinstance(value, (Immutable, *_IMMUTABLE_TYPES)):
        return True
    if isinstance(value, (Mapping, list, tuple)):
        return False
    return callable(value)


def is_immutable_type(value: Any, type_name: str) -> bool:
    """Return ``True`` when ``value`` is an immutable of the given type tag."""

    return isinstance(value, Immutable) and value._type.lower() == type_name.lower()


def _normalize_definition(
    definition: PropertyDefinition | Mapping[str, Any] | None,
) -> PropertyDefinition | None:
    if definition is None or isinstance(definition, PropertyDefinition):
        return definition
    return PropertyDefinition.model_validate(dict(definition))


def create(
    data: Any,
    *,
    clone: bool = True,
    definition: PropertyDefinition | Mapping[str, Any] | None = None,
) -> Any:
    """Wrap ``data`` as an immutable instance.

    Values that are already immutable are returned unchanged, so wrapping is
    never nested. Unless ``clone`` is false the data is deep copied first and
    the wrapper never aliases caller owned state.
    """

    if is_immutable(data):
        return data

    options = ImmutableOptions(clone=clone, definition=_normalize_definition(definition))
    if clone:
        data = plain_copy(data)

    builder = Builder()
    builder.define_property("__immutable", lambda: True, enumerable=False)

    def to_object() -> Any:
        return data

    def mutate(callback: Callable[[Any], Any]) -> Any:
        obj = plain_copy(data)
        result = callback(obj)
        if result is not None:
            obj = result
        return create(obj, clone=False, definition=options.definition)

    builder.define_method("to_object", to_object)
    builder.define_method("mutate", mutate)

    for registration in _handlers:
        if registration.matches(data):
            registration.handler(data, builder, options)
            break

    type_name = builder.type
    builder.define_property("__type", lambda: type_name, enumerable=False)
    instance = Immutable(data, type_name, builder.props)
    builder.instance = instance
    return instance


__all__ = [
    "Accessor",
    "Builder",
    "Immutable",
    "ImmutableOptions",
    "create",
    "is_immutable",
    "is_immutable_type",
    "plain_copy",
    "to_plain",
    "use",
]
