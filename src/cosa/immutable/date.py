"""Date handler: read accessors plus setters that return new immutable dates."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

from cosa.immutable.core import Builder, ImmutableOptions, create

_FIELDS = ("year", "month", "day", "hour", "minute", "second", "microsecond", "tzinfo")
_READERS = (
    "isoformat",
    "isoweekday",
    "weekday",
    "timestamp",
    "strftime",
    "utcoffset",
    "date",
    "time",
    "timetuple",
    "toordinal",
)


def date_handler(data: date, builder: Builder, options: ImmutableOptions) -> None:
    builder.type = "Date"

    def derive(value: date) -> Any:
        return create(value, clone=False, definition=options.definition)

    def replace(**changes: Any) -> Any:
        return derive(data.replace(**changes))

    def astimezone(tz: Any = None) -> Any:
        return derive(data.astimezone(tz))  # type: ignore[union-attr]

    def add(delta: timedelta | None = None, **parts: float) -> Any:
        return derive(data + (delta if delta is not None else timedelta(**parts)))

    def mutate(callback: Callable[[Any], Any]) -> Any:
        result = callback(data)
        return derive(data if result is None else result)

    def to_json() -> str:
        return data.isoformat()

    for name in _FIELDS:
        if hasattr(data, name):
            builder.define_property(name, lambda name=name: getattr(data, name))
    for name in _READERS:
        if hasattr(data, name):
            builder.define_method(name, getattr(data, name))
    for name in _FIELDS:
        if hasattr(data, name):
            builder.define_method(
                f"set_{name}", lambda value, name=name: replace(**{name: value})
            )

    builder.define_method("replace", replace)
    builder.define_method("add", add)
    builder.define_method("mutate", mutate)
    builder.define_method("to_json", to_json)
    builder.define_method("to_string", data.isoformat)
    if isinstance(data, datetime):
        builder.define_method("astimezone", astimezone)


__all__ = ["date_handler"]
