"""Dotted path helpers (``"a.b.0"``) over documents."""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping, Sequence
from typing import Any

from cosa.errors import UsageError
from cosa.immutable import Immutable, to_plain

_MISSING = object()


def parse_path(path: str | Sequence[str | int]) -> list[str]:
    if isinstance(path, str):
        segments = path.split(".")
    else:
        segments = [str(segment) for segment in path]
    if not segments or any(segment == "" for segment in segments):
        msg = f"Invalid path {path!r}"
        raise UsageError(msg)
    return segments


def _step(value: Any, segment: str) -> Any:
    if isinstance(value, Immutable):
        if isinstance(value.to_object(), list):
            if not segment.lstrip("-").isdigit():
                return _MISSING
            try:
                return value[int(segment)]
            except IndexError:
                return _MISSING
        try:
            return value[segment]
        except KeyError:
            return _MISSING
    if isinstance(value, Mapping):
        return value.get(segment, _MISSING)
    if isinstance(value, list) and segment.lstrip("-").isdigit():
        try:
            return value[int(segment)]
        except IndexError:
            return _MISSING
    return _MISSING


def get_path(value: Any, path: str | Sequence[str | int]) -> Any:
    """Read a nested value through immutable accessors; missing paths yield ``None``."""

    for segment in parse_path(path):
        value = _step(value, segment)
        if value is _MISSING or value is None:
            return None
    return value


def has_path(value: Any, path: str | Sequence[str | int]) -> bool:
    """Return whether every segment of ``path`` is present in the backing data."""

    current = to_plain(value)
    for segment in parse_path(path):
        if isinstance(current, Mapping):
            if segment not in current:
                return False
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return False
    return True


def set_path(data: MutableMapping[str, Any], path: str | Sequence[str | int], value: Any) -> None:
    """Assign ``value`` in plain ``data``, creating intermediate containers."""

    segments = parse_path(path)
    current: Any = data
    for index, segment in enumerate(segments[:-1]):
        following = segments[index + 1]
        container: Any = [] if following.isdigit() else {}
        if isinstance(current, list):
            position = int(segment)
            while len(current) <= position:
                current.append(None)
            if not isinstance(current[position], (list, MutableMapping)):
                current[position] = container
            current = current[position]
        else:
            if not isinstance(current.get(segment), (list, MutableMapping)):
                current[segment] = container
            current = current[segment]
    last = segments[-1]
    if isinstance(current, list):
        position = int(last)
        while len(current) <= position:
            current.append(None)
        current[position] = value
    else:
        current[last] = value


def delete_path(data: MutableMapping[str, Any], path: str | Sequence[str | int]) -> bool:
    """Remove the value at ``path`` from plain ``data``; returns whether it existed."""

    segments = parse_path(path)
    current: Any = data
    for segment in segments[:-1]:
        current = _step(current, segment)
        if current is _MISSING or not isinstance(current, (list, MutableMapping)):
            return False
    last = segments[-1]
    if isinstance(current, list):
        if not last.isdigit() or int(last) >= len(current):
            return False
        del current[int(last)]
        return True
    if last not in current:
        return False
    del current[last]
    return True


__all__ = ["delete_path", "get_path", "has_path", "parse_path", "set_path"]
