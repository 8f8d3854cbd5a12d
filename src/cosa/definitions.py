"""Declarative property and model definitions."""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Unset:
    """Marker for a property declared without a default."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> _Unset:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _Unset:
        return self


UNSET: Any = _Unset()

PROPERTY_TYPES = frozenset(
    {
        "any",
        "*",
        "array",
        "binary",
        "boolean",
        "date",
        "number",
        "object",
        "objectid",
        "string",
        "virtual",
    }
)

_KEYWORD_ALIASES = {"enum": "valid", "pattern": "regex"}


def _as_tuple(value: Any) -> tuple[Any, ...] | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    return (value,)


class PropertyDefinition(BaseModel):
    """Declaration of a single document property and its constraints."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    type: str = "any"
    name: str | None = None
    label: str | None = None
    required: bool = False
    default: Any = UNSET
    enumerable: bool = True

    allow: tuple[Any, ...] | None = None
    valid: tuple[Any, ...] | None = None
    invalid: tuple[Any, ...] | None = None
    forbidden: bool = False
    strip: bool = False
    strict: bool | None = None
    raw: bool = False

    min: float | None = None
    max: float | None = None
    length: int | None = None
    greater: float | None = None
    less: float | None = None
    integer: bool = False
    multiple: float | None = None
    positive: bool = False
    negative: bool = False

    regex: str | None = None
    alphanum: bool = False
    token: bool = False
    lowercase: bool = False
    uppercase: bool = False
    trim: bool = False
    email: bool = False
    guid: bool = False

    items: PropertyDefinition | None = None
    unique: bool = False
    sparse: bool | None = None

    unknown: bool = False
    properties: dict[str, PropertyDefinition] = Field(default_factory=dict)
    virtuals: dict[str, Callable[..., Any]] = Field(default_factory=dict)
    methods: dict[str, Callable[..., Any]] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _apply_aliases(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        normalized = dict(data)
        for alias, target in _KEYWORD_ALIASES.items():
            if alias in normalized:
                normalized.setdefault(target, normalized.pop(alias))
        return normalized

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        if value is None:
            return "any"
        if isinstance(value, type):
            value = value.__name__
        return str(value).strip().lower()

    @field_validator("allow", "valid", "invalid", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> tuple[Any, ...] | None:
        return _as_tuple(value)

    @property
    def has_default(self) -> bool:
        return self.default is not UNSET

    def default_value(self) -> Any:
        """Materialize the default; callables are invoked on every use."""

        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)


PropertyDefinition.model_rebuild()


class ModelDefinition(BaseModel):
    """Declaration of a model: collection, properties, behaviour and defaults."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    name: str | None = None
    collection: str | None = None
    abstract: bool = False
    where: dict[str, Any] | None = None
    properties: dict[str, PropertyDefinition] = Field(default_factory=dict)
    methods: dict[str, Callable[..., Any]] = Field(default_factory=dict)
    virtuals: dict[str, Callable[..., Any]] = Field(default_factory=dict)
    wait_after_save: bool = False
    wait_after_remove: bool = False

    def as_object_definition(self, methods: Mapping[str, Callable[..., Any]]) -> PropertyDefinition:
        """Return the object definition the immutable layer uses for instances."""

        return PropertyDefinition(
            type="object",
            name=self.name,
            properties=self.properties,
            virtuals=self.virtuals,
            methods=dict(methods),
        )

    def merge(self, subdefinition: ModelDefinition) -> ModelDefinition:
        """Combine with a child definition; the child wins on clashes.

        ``abstract`` is never inherited, so extending an abstract model with
        a collection yields a concrete one.
        """

        update = {key: getattr(subdefinition, key) for key in subdefinition.model_fields_set}
        update.update(
            abstract=subdefinition.abstract,
            properties={**self.properties, **subdefinition.properties},
            methods={**self.methods, **subdefinition.methods},
            virtuals={**self.virtuals, **subdefinition.virtuals},
        )
        if self.where or subdefinition.where:
            update["where"] = {**(self.where or {}), **(subdefinition.where or {})}
        return self.model_copy(update=update)


__all__ = [
    "ModelDefinition",
    "PROPERTY_TYPES",
    "PropertyDefinition",
    "UNSET",
]
