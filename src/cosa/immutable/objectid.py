"""ObjectId handler."""

from __future__ import annotations

from bson import ObjectId

from cosa.immutable.core import Builder, ImmutableOptions


def objectid(data: ObjectId, builder: Builder, options: ImmutableOptions) -> None:
    builder.type = "bson.ObjectId"
    builder.define_property("id", lambda: data.binary, enumerable=False)
    builder.define_property("generation_time", lambda: data.generation_time, enumerable=False)
    builder.define_method("get_timestamp", lambda: data.generation_time)
    builder.define_method("to_string", lambda: str(data))
    builder.define_method("to_hex_string", lambda: str(data))
    builder.define_method("to_json", lambda: {"$oid": str(data)})
    builder.define_method("equals", lambda other: str(other) == str(data))


__all__ = ["objectid"]
