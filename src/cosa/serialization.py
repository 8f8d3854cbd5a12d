"""JSON friendly views of documents and the reverse conversion for queries."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable, Iterable, Mapping
from datetime import date
from typing import Any

from bson import ObjectId, json_util

from cosa.definitions import PropertyDefinition
from cosa.immutable import Immutable, plain_copy, to_plain

META_KEYS = ("__modified", "__original")


def remove_meta(document: Mapping[str, Any]) -> dict[str, Any]:
    """Drop bookkeeping keys that never reach storage."""

    return {key: value for key, value in document.items() if key not in META_KEYS}


def add_virtuals(definition: PropertyDefinition, document: Any) -> Any:
    """Materialize virtual properties into ``document`` recursively, in place."""

    if isinstance(document, list):
        if definition.items is not None:
            for item in document:
                add_virtuals(definition.items, item)
        return document
    if not isinstance(document, dict):
        return document
    for key, prop in definition.properties.items():
        if key in document and (prop.properties or prop.virtuals or prop.items is not None):
            add_virtuals(prop, document[key])
    for key, func in definition.virtuals.items():
        document[key] = to_plain(func(document))
    return document


def _simple(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _simple(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_simple(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    return value


def document_to_json(
    document: Mapping[str, Any],
    definition: PropertyDefinition | None = None,
    *,
    virtuals: bool = True,
    extended: bool = True,
    exclude: Iterable[str] | None = None,
    include: Iterable[str] | None = None,
    transform: Callable[[dict[str, Any]], Any] | None = None,
) -> Any:
    """Return a JSON friendly copy of ``document``.

    ``extended`` keeps BSON types recognizable (``{"$oid": ...}``); otherwise
    ObjectIds become hex strings and dates ISO strings. ``exclude`` takes
    precedence over ``include``.
    """

    result: Any = plain_copy(remove_meta(to_plain(document)))
    if virtuals and definition is not None:
        add_virtuals(definition, result)
    if extended:
        result = json.loads(json_util.dumps(result, json_options=json_util.RELAXED_JSON_OPTIONS))
    else:
        result = _simple(result)
    if exclude is not None:
        excluded = set(exclude)
        result = {key: value for key, value in result.items() if key not in excluded}
    elif include is not None:
        included = set(include)
        result = {key: value for key, value in result.items() if key in included}
    if transform is not None:
        result = transform(result)
    return result


def deserialize(value: Any) -> Any:
    """Unwrap immutable values and turn ``{"$oid": hex}`` back into ObjectIds."""

    if isinstance(value, Immutable):
        return deserialize(value.to_object())
    if isinstance(value, Mapping):
        if len(value) == 1 and "$oid" in value and isinstance(value["$oid"], str):
            return ObjectId(value["$oid"])
        return {key: deserialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [deserialize(item) for item in value]
    return value


__all__ = ["META_KEYS", "add_virtuals", "deserialize", "document_to_json", "remove_meta"]
