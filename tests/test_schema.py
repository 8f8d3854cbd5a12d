from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest
from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError

from cosa.definitions import ModelDefinition, PropertyDefinition
from cosa.errors import ConfigurationError, ValidationError
from cosa.schema import CompiledSchema


def _schema(**properties: dict) -> CompiledSchema:
    return CompiledSchema(
        {key: PropertyDefinition.model_validate(value) for key, value in properties.items()},
        name="Sample",
    )


def test_property_definition_normalizes_keywords() -> None:
    prop = PropertyDefinition.model_validate({"type": "String", "enum": "a", "pattern": "^a"})

    assert prop.type == "string"
    assert prop.valid == ("a",)
    assert prop.regex == "^a"
    assert not prop.has_default
    assert PropertyDefinition(type=None).type == "any"


def test_property_definition_rejects_unknown_keywords() -> None:
    with pytest.raises(PydanticValidationError):
        PropertyDefinition.model_validate({"type": "string", "bogus": True})


def test_unknown_type_fails_at_compile_time() -> None:
    with pytest.raises(ConfigurationError, match=r"Invalid type \(widget\) for property thing"):
        _schema(thing={"type": "widget"})
    with pytest.raises(ConfigurationError, match=r"Invalid type \(widget\) for property tags"):
        _schema(tags={"type": "array", "items": {"type": "widget"}})
    with pytest.raises(ConfigurationError, match=r"Invalid type \(gadget\) for property address.kind"):
        _schema(address={"type": "object", "properties": {"kind": {"type": "gadget"}}})


def test_required_and_unknown_keys_are_reported() -> None:
    schema = _schema(str={"type": "string", "required": True}, num={"type": "number"})

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(schema.validate({"num": 1, "extra": True}))

    assert '"str" is required' in excinfo.value.details
    assert '"extra" is not allowed' in excinfo.value.details
    assert excinfo.value.status_code == 400


def test_abort_early_keeps_first_failure() -> None:
    schema = _schema(a={"type": "string", "required": True}, b={"type": "string", "required": True})

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(schema.validate({}, abort_early=True))

    assert len(excinfo.value.details) == 1


def test_number_constraints_and_conversion() -> None:
    schema = _schema(count={"type": "number", "min": 1, "max": 5, "integer": True})

    assert asyncio.run(schema.validate({"count": 3})) == {"count": 3}
    with pytest.raises(ValidationError, match='"count" must be less than or equal to 5'):
        asyncio.run(schema.validate({"count": 9}))
    with pytest.raises(ValidationError, match='"count" must be a number'):
        asyncio.run(schema.validate({"count": "3"}))
    with pytest.raises(ValidationError, match='"count" must be a number'):
        asyncio.run(schema.validate({"count": True}))
    assert asyncio.run(schema.validate({"count": "3"}, convert=True)) == {"count": 3}


def test_string_rules() -> None:
    schema = _schema(
        code={"type": "string", "length": 3, "uppercase": True},
        mail={"type": "string", "email": True},
        kind={"type": "string", "valid": ["a", "b"]},
    )

    assert asyncio.run(schema.validate({"code": "ABC", "mail": "x@y.io", "kind": "a"})) == {
        "code": "ABC",
        "mail": "x@y.io",
        "kind": "a",
    }
    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(schema.validate({"code": "abc", "mail": "nope", "kind": "c"}))
    details = excinfo.value.details
    assert '"code" must only contain uppercase characters' in details
    assert '"mail" must be a valid email' in details
    assert "\"kind\" must be one of ['a', 'b']" in details
    assert asyncio.run(schema.validate({"code": "abc"}, convert=True)) == {"code": "ABC"}


def test_defaults_strip_and_none_for_optional_properties() -> None:
    schema = _schema(
        tags={"type": "array", "items": {"type": "string"}, "default": []},
        token={"type": "string", "strip": True},
        note={"type": "string"},
    )

    result = asyncio.run(schema.validate({"token": "secret", "note": None}))

    assert result == {"tags": [], "note": None}


def test_nested_objects_arrays_and_labels() -> None:
    schema = _schema(
        address={
            "type": "object",
            "properties": {"zip": {"type": "string", "required": True, "label": "Postal code"}},
        },
        items={"type": "array", "items": {"type": "number"}},
    )

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(schema.validate({"address": {}, "items": [1, "x"]}))

    assert '"Postal code" is required' in excinfo.value.details
    assert '"items[1]" must be a number' in excinfo.value.details


def test_allow_unknown_and_strip_unknown() -> None:
    schema = _schema(a={"type": "string"})

    assert asyncio.run(schema.validate({"a": "x", "b": 1}, allow_unknown=True)) == {"a": "x", "b": 1}
    assert asyncio.run(schema.validate({"a": "x", "b": 1}, strip_unknown=True)) == {"a": "x"}


def test_bson_types() -> None:
    schema = _schema(
        ref={"type": "objectid"},
        at={"type": "date"},
        blob={"type": "binary"},
        flag={"type": "boolean"},
    )
    oid = ObjectId()
    when = datetime(2024, 5, 1, tzinfo=UTC)

    assert asyncio.run(
        schema.validate({"ref": oid, "at": when, "blob": b"\x00", "flag": False})
    ) == {"ref": oid, "at": when, "blob": b"\x00", "flag": False}
    with pytest.raises(ValidationError, match='"ref" must be an instance of ObjectId'):
        asyncio.run(schema.validate({"ref": str(oid)}))


def test_model_definition_merge_prefers_child() -> None:
    base = ModelDefinition.model_validate(
        {
            "name": "Base",
            "collection": "things",
            "abstract": True,
            "where": {"deleted": None},
            "properties": {"a": {"type": "string"}, "b": {"type": "string"}},
        }
    )
    child = ModelDefinition.model_validate(
        {"name": "Child", "where": {"kind": "child"}, "properties": {"b": {"type": "number"}}}
    )

    merged = base.merge(child)

    assert merged.name == "Child"
    assert merged.collection == "things"
    assert merged.abstract is False
    assert merged.where == {"deleted": None, "kind": "child"}
    assert merged.properties["a"].type == "string"
    assert merged.properties["b"].type == "number"
