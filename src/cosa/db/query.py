"""MongoDB style query, update and aggregation evaluation over plain documents."""

from __future__ import annotations

import copy
import functools
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from bson import ObjectId

from cosa.errors import UsageError
from cosa.paths import delete_path, set_path

_MISSING = object()


def _lookup(value: Any, segments: Sequence[str]) -> list[Any]:
    """Collect the values at ``segments``, fanning out over arrays like MongoDB."""

    if not segments:
        return [value]
    head, rest = segments[0], segments[1:]
    if isinstance(value, Mapping):
        if head not in value:
            return []
        return _lookup(value[head], rest)
    if isinstance(value, list):
        if head.isdigit():
            index = int(head)
            return _lookup(value[index], rest) if index < len(value) else []
        found: list[Any] = []
        for item in value:
            if isinstance(item, Mapping):
                found.extend(_lookup(item, segments))
        return found
    return []


def lookup(document: Mapping[str, Any], path: str) -> list[Any]:
    return _lookup(document, path.split("."))


def get_value(document: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Return the single value at ``path`` without array fan-out."""

    current: Any = document
    for segment in path.split("."):
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return default
    return current


def _candidates(values: Iterable[Any]) -> list[Any]:
    result: list[Any] = []
    for value in values:
        result.append(value)
        if isinstance(value, list):
            result.extend(value)
    return result


_TYPE_ORDER: tuple[tuple[type | tuple[type, ...], int], ...] = (
    (type(None), 1),
    (bool, 8),
    ((int, float), 2),
    (str, 3),
    (Mapping, 4),
    (list, 5),
    (bytes, 6),
    (ObjectId, 7),
    (datetime, 9),
)


def _rank(value: Any) -> int:
    for kind, rank in _TYPE_ORDER:
        if isinstance(value, kind):
            return rank
    return 10


def compare(left: Any, right: Any) -> int:
    """Total ordering over BSON-ish values: type bracket first, then value."""

    left_rank, right_rank = _rank(left), _rank(right)
    if left_rank != right_rank:
        return -1 if left_rank < right_rank else 1
    if left_rank == 1:
        return 0
    if left_rank == 4:
        left, right = list(left.items()), list(right.items())
    try:
        if left < right:
            return -1
        if left > right:
            return 1
    except TypeError:
        left, right = repr(left), repr(right)
        return (left > right) - (left < right)
    return 0


def _comparable(left: Any, right: Any) -> bool:
    return _rank(left) == _rank(right) and _rank(left) not in (1, 4)


def _equals(values: list[Any], target: Any) -> bool:
    if target is None:
        return not values or any(value is None for value in values)
    if isinstance(target, re.Pattern):
        return any(isinstance(value, str) and target.search(value) for value in _candidates(values))
    return any(value == target for value in _candidates(values))


def _regex(pattern: Any, options: str = "") -> re.Pattern[str]:
    if isinstance(pattern, re.Pattern):
        return pattern
    flags = 0
    for option in options:
        flags |= {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}.get(
            option, 0
        )
    return re.compile(str(pattern), flags)


def _is_operator_object(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value) and all(
        str(key).startswith("$") for key in value
    )


def _evaluate(values: list[Any], operator: str, operand: Any, spec: Mapping[str, Any]) -> bool:
    if operator == "$eq":
        return _equals(values, operand)
    if operator == "$ne":
        return not _equals(values, operand)
    if operator in ("$gt", "$gte", "$lt", "$lte"):
        checks: dict[str, Callable[[int], bool]] = {
            "$gt": lambda result: result > 0,
            "$gte": lambda result: result >= 0,
            "$lt": lambda result: result < 0,
            "$lte": lambda result: result <= 0,
        }
        return any(
            _comparable(value, operand) and checks[operator](compare(value, operand))
            for value in _candidates(values)
        )
    if operator == "$in":
        return any(_equals(values, option) for option in operand)
    if operator == "$nin":
        return not any(_equals(values, option) for option in operand)
    if operator == "$exists":
        return bool(values) == bool(operand)
    if operator == "$regex":
        pattern = _regex(operand, spec.get("$options", ""))
        return any(isinstance(value, str) and pattern.search(value) for value in _candidates(values))
    if operator == "$options":
        return True
    if operator == "$size":
        return any(isinstance(value, list) and len(value) == operand for value in values)
    if operator == "$all":
        return any(
            isinstance(value, list) and all(option in value for option in operand)
            for value in values
        )
    if operator == "$elemMatch":
        for value in values:
            if not isinstance(value, list):
                continue
            for item in value:
                if _is_operator_object(operand):
                    if _match_field([item], operand):
                        return True
                elif isinstance(item, Mapping) and matches(item, operand):
                    return True
        return False
    if operator == "$not":
        if isinstance(operand, (str, re.Pattern)):
            return not _evaluate(values, "$regex", operand, {})
        return not _match_field(values, operand)
    if operator == "$type":
        names = {"string": str, "number": (int, float), "object": Mapping, "array": list,
                 "bool": bool, "date": datetime, "objectId": ObjectId, "null": type(None)}
        expected = names.get(str(operand))
        return expected is not None and any(isinstance(value, expected) for value in values)
    msg = f"Unsupported query operator {operator}"
    raise UsageError(msg)


def _match_field(values: list[Any], condition: Any) -> bool:
    if _is_operator_object(condition):
        return all(
            _evaluate(values, operator, operand, condition)
            for operator, operand in condition.items()
        )
    return _equals(values, condition)


def matches(document: Mapping[str, Any], query: Mapping[str, Any] | None) -> bool:
    """Return whether ``document`` satisfies ``query``."""

    if not query:
        return True
    for key, condition in query.items():
        if key == "$and":
            if not all(matches(document, part) for part in condition):
                return False
        elif key == "$or":
            if not any(matches(document, part) for part in condition):
                return False
        elif key == "$nor":
            if any(matches(document, part) for part in condition):
                return False
        elif key.startswith("$"):
            msg = f"Unsupported query operator {key}"
            raise UsageError(msg)
        elif not _match_field(lookup(document, key), condition):
            return False
    return True


def is_update_document(update: Mapping[str, Any]) -> bool:
    return bool(update) and all(str(key).startswith("$") for key in update)


def _each(value: Any) -> list[Any]:
    if isinstance(value, Mapping) and "$each" in value:
        return list(value["$each"])
    return [value]


def apply_update(
    document: dict[str, Any],
    update: Mapping[str, Any],
    *,
    inserting: bool = False,
) -> dict[str, Any]:
    """Apply update operators to ``document`` in place and return it."""

    for operator, fields in update.items():
        for path, value in fields.items():
            value = copy.deepcopy(value)
            if operator == "$set":
                set_path(document, path, value)
            elif operator == "$setOnInsert":
                if inserting:
                    set_path(document, path, value)
            elif operator == "$unset":
                delete_path(document, path)
            elif operator == "$inc":
                set_path(document, path, get_value(document, path, 0) + value)
            elif operator == "$mul":
                set_path(document, path, get_value(document, path, 0) * value)
            elif operator in ("$min", "$max"):
                current = get_value(document, path, _MISSING)
                if current is _MISSING:
                    set_path(document, path, value)
                else:
                    result = compare(value, current)
                    if (operator == "$min" and result < 0) or (operator == "$max" and result > 0):
                        set_path(document, path, value)
            elif operator in ("$push", "$addToSet"):
                current = get_value(document, path, _MISSING)
                items = [] if current is _MISSING else list(current)
                for item in _each(value):
                    if operator == "$push" or item not in items:
                        items.append(item)
                set_path(document, path, items)
            elif operator == "$pull":
                current = get_value(document, path, _MISSING)
                if isinstance(current, list):
                    kept = [
                        item
                        for item in current
                        if not (
                            _match_field([item], value)
                            if _is_operator_object(value)
                            else (
                                matches(item, value)
                                if isinstance(value, Mapping) and isinstance(item, Mapping)
                                else item == value
                            )
                        )
                    ]
                    set_path(document, path, kept)
            elif operator == "$rename":
                current = get_value(document, path, _MISSING)
                if current is not _MISSING:
                    delete_path(document, path)
                    set_path(document, value, current)
            else:
                msg = f"Unsupported update operator {operator}"
                raise UsageError(msg)
    return document


def seed_from_query(query: Mapping[str, Any]) -> dict[str, Any]:
    """Build the base document an upsert starts from."""

    document: dict[str, Any] = {}
    for key, condition in query.items():
        if key.startswith("$"):
            continue
        if _is_operator_object(condition):
            if "$eq" in condition:
                set_path(document, key, copy.deepcopy(condition["$eq"]))
            continue
        set_path(document, key, copy.deepcopy(condition))
    return document


def sort_documents(documents: list[Any], spec: Sequence[tuple[str, int]]) -> list[Any]:
    result = list(documents)
    for key, direction in reversed(spec):

        def sort_key(document: Any, key: str = key) -> Any:
            return functools.cmp_to_key(compare)(get_value(document, key))

        result.sort(key=sort_key, reverse=direction < 0)
    return result


def project(document: Mapping[str, Any], projection: Mapping[str, Any] | None) -> dict[str, Any]:
    """Apply an inclusion or exclusion projection."""

    if not projection:
        return dict(document)
    fields = {key: value for key, value in projection.items() if key != "_id"}
    include_id = bool(projection.get("_id", 1))
    if fields and all(bool(value) for value in fields.values()):
        result: dict[str, Any] = {}
        if include_id and "_id" in document:
            result["_id"] = document["_id"]
        for path in fields:
            value = get_value(document, path, _MISSING)
            if value is not _MISSING:
                set_path(result, path, value)
        return result
    if any(bool(value) for value in fields.values()):
        msg = "Projection cannot mix inclusion and exclusion"
        raise UsageError(msg)
    result = copy.deepcopy(dict(document))
    for path in fields:
        delete_path(result, path)
    if not include_id:
        result.pop("_id", None)
    return result


def distinct(documents: Iterable[Mapping[str, Any]], key: str) -> list[Any]:
    values: list[Any] = []
    for document in documents:
        for value in lookup(document, key):
            for item in value if isinstance(value, list) else [value]:
                if item not in values:
                    values.append(item)
    return values


def _expression(document: Mapping[str, Any], expression: Any) -> Any:
    if isinstance(expression, str) and expression.startswith("$"):
        return get_value(document, expression[1:])
    if isinstance(expression, Mapping):
        return {key: _expression(document, value) for key, value in expression.items()}
    return expression


def _group(documents: list[dict[str, Any]], spec: Mapping[str, Any]) -> list[dict[str, Any]]:
    groups: list[tuple[Any, list[dict[str, Any]]]] = []
    for document in documents:
        key = _expression(document, spec.get("_id"))
        for existing, members in groups:
            if existing == key:
                members.append(document)
                break
        else:
            groups.append((key, [document]))

    results = []
    for key, members in groups:
        row: dict[str, Any] = {"_id": key}
        for name, accumulator in spec.items():
            if name == "_id":
                continue
            ((operator, expression),) = accumulator.items()
            values = [_expression(member, expression) for member in members]
            present = [value for value in values if value is not None]
            if operator == "$sum":
                row[name] = sum(value for value in values if isinstance(value, (int, float)))
            elif operator == "$avg":
                numbers = [value for value in values if isinstance(value, (int, float))]
                row[name] = sum(numbers) / len(numbers) if numbers else None
            elif operator == "$min":
                row[name] = min(present, key=functools.cmp_to_key(compare)) if present else None
            elif operator == "$max":
                row[name] = max(present, key=functools.cmp_to_key(compare)) if present else None
            elif operator == "$first":
                row[name] = values[0]
            elif operator == "$last":
                row[name] = values[-1]
            elif operator == "$push":
                row[name] = values
            elif operator == "$addToSet":
                row[name] = distinct(({"v": value} for value in values), "v")
            else:
                msg = f"Unsupported accumulator {operator}"
                raise UsageError(msg)
        results.append(row)
    return results


def aggregate(
    documents: list[dict[str, Any]],
    pipeline: Sequence[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    """Run a pipeline of ``$match``, ``$sort``, ``$group`` and friends."""

    results = list(documents)
    for stage in pipeline:
        ((name, spec),) = stage.items()
        if name == "$match":
            results = [document for document in results if matches(document, spec)]
        elif name == "$sort":
            results = sort_documents(results, [(key, int(value)) for key, value in spec.items()])
        elif name == "$skip":
            results = results[int(spec) :]
        elif name == "$limit":
            results = results[: int(spec)]
        elif name == "$project":
            results = [project(document, spec) for document in results]
        elif name == "$count":
            results = [{spec: len(results)}]
        elif name == "$group":
            results = _group(results, spec)
        elif name == "$unwind":
            path = (spec["path"] if isinstance(spec, Mapping) else spec).lstrip("$")
            unwound = []
            for document in results:
                values = get_value(document, path, _MISSING)
                if not isinstance(values, list):
                    if values is not _MISSING:
                        unwound.append(document)
                    continue
                for value in values:
                    item = copy.deepcopy(document)
                    set_path(item, path, value)
                    unwound.append(item)
            results = unwound
        else:
            msg = f"Unsupported aggregation stage {name}"
            raise UsageError(msg)
    return results


__all__ = [
    "aggregate",
    "apply_update",
    "compare",
    "distinct",
    "get_value",
    "is_update_document",
    "lookup",
    "matches",
    "project",
    "seed_from_query",
    "sort_documents",
]
