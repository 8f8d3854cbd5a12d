from __future__ import annotations

import re
from datetime import UTC, datetime

import pytest
from bson import ObjectId

from cosa.definitions import PropertyDefinition
from cosa.errors import UsageError
from cosa.etag import canonical_json, compute_etag
from cosa.immutable import create
from cosa.paths import delete_path, get_path, has_path, parse_path, set_path
from cosa.serialization import deserialize, document_to_json, remove_meta


def test_parse_path_rejects_empty_segments() -> None:
    assert parse_path("a.b.0") == ["a", "b", "0"]
    assert parse_path(["a", 1]) == ["a", "1"]
    with pytest.raises(UsageError, match="Invalid path"):
        parse_path("a..b")


def test_get_and_has_path_through_immutables() -> None:
    value = create({"a": {"b": [{"c": 1}, {"c": None}]}})

    assert get_path(value, "a.b.0.c") == 1
    assert get_path(value, "a.b.5.c") is None
    assert get_path(value, "a.missing.c") is None
    assert has_path(value, "a.b.1.c")
    assert not has_path(value, "a.b.2")
    assert not has_path(value, "a.b.0.d")


def test_set_path_creates_containers() -> None:
    data: dict = {"a": 1}

    set_path(data, "b.c", 2)
    set_path(data, "list.2.name", "x")

    assert data == {"a": 1, "b": {"c": 2}, "list": [None, None, {"name": "x"}]}


def test_delete_path_reports_existence() -> None:
    data = {"a": {"b": 1, "c": 2}, "list": [1, 2]}

    assert delete_path(data, "a.b")
    assert delete_path(data, "list.0")
    assert not delete_path(data, "a.zzz")
    assert not delete_path(data, "nope.b")
    assert data == {"a": {"c": 2}, "list": [2]}


def test_etag_ignores_previous_etag_and_key_order() -> None:
    first = compute_etag({"b": 2, "a": 1})
    second = compute_etag({"a": 1, "b": 2, "_etag": '"old"'})

    assert first == second
    assert re.fullmatch(r'"[0-9a-f]+-[A-Za-z0-9+/]{27}"', first)
    assert compute_etag({"a": 2}) != compute_etag({"a": 1})
    assert canonical_json({"b": 1, "a": 2}) == '{"a":2,"b":1}'


def test_remove_meta_drops_bookkeeping_keys() -> None:
    assert remove_meta({"a": 1, "__modified": ["a"], "__original": {"a": 0}}) == {"a": 1}


def test_document_to_json_modes() -> None:
    oid = ObjectId("5f1b2c3d4e5f6a7b8c9d0e1f")
    when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
    document = {"_id": oid, "when": when, "blob": b"hi", "name": "n", "__modified": []}

    extended = document_to_json(document)
    simple = document_to_json(document, extended=False)

    assert extended["_id"] == {"$oid": str(oid)}
    assert "$date" in extended["when"]
    assert "__modified" not in extended
    assert simple == {
        "_id": str(oid),
        "when": "2024-01-02T03:04:05+00:00",
        "blob": "aGk=",
        "name": "n",
    }


def test_document_to_json_virtuals_and_filters() -> None:
    definition = PropertyDefinition(
        type="object",
        properties={"first": PropertyDefinition(type="string"), "last": PropertyDefinition(type="string")},
        virtuals={"full": lambda document: f"{document['first']} {document['last']}"},
    )
    document = create({"first": "Ada", "last": "Lovelace"})

    assert document_to_json(document, definition)["full"] == "Ada Lovelace"
    assert "full" not in document_to_json(document, definition, virtuals=False)
    assert document_to_json(document, definition, include=["full"]) == {"full": "Ada Lovelace"}
    assert document_to_json(document, definition, exclude=["full"], include=["full"]) == {
        "first": "Ada",
        "last": "Lovelace",
    }
    assert document_to_json(document, transform=lambda value: sorted(value)) == ["first", "last"]


def test_deserialize_restores_object_ids() -> None:
    oid = ObjectId()

    assert deserialize({"_id": {"$oid": str(oid)}, "in": [{"$oid": str(oid)}]}) == {
        "_id": oid,
        "in": [oid],
    }
    assert deserialize(create({"a": [1]})) == {"a": [1]}
