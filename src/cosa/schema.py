"""Compile property definitions into pydantic models and validate documents."""

from __future__ import annotations

import logging
import math
import re
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Annotated, Any

from bson import ObjectId
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    Strict,
    ValidationInfo,
    WrapValidator,
    create_model,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.fields import FieldInfo

from cosa.definitions import PROPERTY_TYPES, PropertyDefinition
from cosa.errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

_DEFAULT_MARKER = "cosa_declared_default"
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TOKEN = re.compile(r"^\w+$")
_STRICT_KINDS = frozenset({"string", "boolean", "date", "binary", "array"})

_MESSAGES = {
    "missing": "is required",
    "extra_forbidden": "is not allowed",
    "string_type": "must be a string",
    "bool_type": "must be a boolean",
    "bool_parsing": "must be a boolean",
    "datetime_type": "must be a valid date",
    "datetime_parsing": "must be a valid date",
    "datetime_from_date_parsing": "must be a valid date",
    "list_type": "must be an array",
    "dict_type": "must be of type object",
    "model_type": "must be of type object",
    "model_attributes_type": "must be of type object",
    "bytes_type": "must be a buffer",
    "is_instance_of": "must be an instance of ObjectId",
    "string_too_short": "length must be at least {min_length} characters long",
    "string_too_long": "length must be less than or equal to {max_length} characters long",
    "string_pattern_mismatch": "fails to match the required pattern: /{pattern}/",
    "too_short": "must contain at least {min_length} items",
    "too_long": "must contain less than or equal to {max_length} items",
    "bytes_too_short": "must be at least {min_length} bytes",
    "bytes_too_long": "must be less than or equal to {max_length} bytes",
}


def _fmt(number: float) -> str:
    if float(number).is_integer():
        return str(int(number))
    return str(number)


def _converting(info: ValidationInfo) -> bool:
    return bool(info.context and info.context.get("convert"))


def _number_check(prop: PropertyDefinition) -> Callable[[Any, ValidationInfo], Any]:
    def check(value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            if not (_converting(info) and isinstance(value, str)):
                raise ValueError("must be a number")
            try:
                value = float(value) if re.search(r"[.eE]", value) else int(value)
            except ValueError:
                raise ValueError("must be a number") from None
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("must be a number")
        if prop.integer and not float(value).is_integer():
            raise ValueError("must be an integer")
        if prop.min is not None and value < prop.min:
            raise ValueError(f"must be greater than or equal to {_fmt(prop.min)}")
        if prop.max is not None and value > prop.max:
            raise ValueError(f"must be less than or equal to {_fmt(prop.max)}")
        if prop.greater is not None and value <= prop.greater:
            raise ValueError(f"must be greater than {_fmt(prop.greater)}")
        if prop.less is not None and value >= prop.less:
            raise ValueError(f"must be less than {_fmt(prop.less)}")
        if prop.positive and value <= 0:
            raise ValueError("must be a positive number")
        if prop.negative and value >= 0:
            raise ValueError("must be a negative number")
        if prop.multiple is not None and value % prop.multiple != 0:
            raise ValueError(f"must be a multiple of {_fmt(prop.multiple)}")
        return value

    return check


def _string_checks(prop: PropertyDefinition) -> list[AfterValidator]:
    checks: list[AfterValidator] = []

    def case(name: str, convert: Callable[[str], str]) -> AfterValidator:
        def check(value: str, info: ValidationInfo) -> str:
            if _converting(info):
                return convert(value)
            if convert(value) != value:
                raise ValueError(f"must only contain {name} characters")
            return value

        return AfterValidator(check)

    if prop.trim:

        def trim(value: str, info: ValidationInfo) -> str:
            if _converting(info):
                return value.strip()
            if value.strip() != value:
                raise ValueError("must not have leading or trailing whitespace")
            return value

        checks.append(AfterValidator(trim))
    if prop.lowercase:
        checks.append(case("lowercase", str.lower))
    if prop.uppercase:
        checks.append(case("uppercase", str.upper))
    if prop.alphanum:

        def alphanum(value: str) -> str:
            if not value.isalnum():
                raise ValueError("must only contain alpha-numeric characters")
            return value

        checks.append(AfterValidator(alphanum))
    if prop.token:

        def token(value: str) -> str:
            if not _TOKEN.match(value):
                raise ValueError("must only contain alpha-numeric and underscore characters")
            return value

        checks.append(AfterValidator(token))
    if prop.email:

        def email(value: str) -> str:
            if not _EMAIL.match(value):
                raise ValueError("must be a valid email")
            return value

        checks.append(AfterValidator(email))
    if prop.guid:

        def guid(value: str) -> str:
            try:
                uuid.UUID(value)
            except ValueError:
                raise ValueError("must be a valid GUID") from None
            return value

        checks.append(AfterValidator(guid))
    return checks


def _unique(value: list[Any]) -> list[Any]:
    seen: list[Any] = []
    for item in value:
        if item in seen:
            raise ValueError("contains a duplicate value")
        seen.append(item)
    return value


def _value_checks(prop: PropertyDefinition) -> list[Any]:
    checks: list[Any] = []
    if prop.valid is not None:
        allowed = prop.valid

        def valid(value: Any) -> Any:
            if value not in allowed:
                listed = ", ".join(repr(option) for option in allowed)
                raise ValueError(f"must be one of [{listed}]")
            return value

        checks.append(AfterValidator(valid))
    if prop.invalid is not None:
        rejected = prop.invalid

        def invalid(value: Any) -> Any:
            if value in rejected:
                raise ValueError("contains an invalid value")
            return value

        checks.append(AfterValidator(invalid))
    if prop.forbidden:

        def forbidden(value: Any) -> Any:
            raise ValueError("is not allowed")

        checks.append(AfterValidator(forbidden))
    if prop.allow is not None:
        permitted = prop.allow

        def allow(value: Any, handler: Callable[[Any], Any]) -> Any:
            if any(value is option or (value == option and type(value) is type(option)) for option in permitted):
                return value
            return handler(value)

        checks.append(WrapValidator(allow))
    return checks


def _nullable(value: Any, handler: Callable[[Any], Any]) -> Any:
    if value is None:
        return None
    return handler(value)


def _length_constraints(prop: PropertyDefinition) -> dict[str, int]:
    if prop.length is not None:
        return {"min_length": prop.length, "max_length": prop.length}
    constraints: dict[str, int] = {}
    if prop.min is not None:
        constraints["min_length"] = int(prop.min)
    if prop.max is not None:
        constraints["max_length"] = int(prop.max)
    return constraints


def _annotate(base: Any, metadata: list[Any]) -> Any:
    if not metadata:
        return base
    return Annotated[(base, *metadata)]


def _declares_default(info: FieldInfo) -> bool:
    extra = info.json_schema_extra
    return isinstance(extra, dict) and bool(extra.get(_DEFAULT_MARKER))


def _field_info(key: str, prop: PropertyDefinition) -> FieldInfo:
    kwargs: dict[str, Any] = {"alias": key}
    if prop.strip:
        kwargs["exclude"] = True
    if prop.has_default:
        if callable(prop.default):
            kwargs["default_factory"] = prop.default
        else:
            kwargs["default"] = prop.default
        kwargs["json_schema_extra"] = {_DEFAULT_MARKER: True}
    elif not prop.required:
        kwargs["default"] = None
    return Field(**kwargs)


def _drop_functions(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _drop_functions(item) for key, item in value.items() if not callable(item)}
    if isinstance(value, list):
        return [_drop_functions(item) for item in value]
    return value


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        result: dict[str, Any] = {}
        for name, info in type(value).model_fields.items():
            if info.exclude:
                continue
            if name not in value.model_fields_set and not _declares_default(info):
                continue
            result[info.alias or name] = _dump(getattr(value, name))
        if value.model_extra:
            result.update(value.model_extra)
        return result
    if isinstance(value, list):
        return [_dump(item) for item in value]
    if isinstance(value, dict):
        return {key: _dump(item) for key, item in value.items()}
    return value


class CompiledSchema:
    """Validator for documents described by a set of property definitions.

    A pydantic model is compiled eagerly for the default mode so invalid
    definitions surface when a model is defined. Models for the permissive
    modes are built on first use and cached.
    """

    def __init__(
        self,
        properties: Mapping[str, PropertyDefinition],
        *,
        name: str = "Document",
        unknown: bool = False,
    ) -> None:
        self._properties = dict(properties)
        self._name = re.sub(r"\W", "_", name) or "Document"
        self._unknown = unknown
        self._labels: dict[tuple[str, ...], str] = {}
        self._models: dict[tuple[str, bool], type[BaseModel]] = {}
        self.model_for("forbid")

    def model_for(self, extra: str, *, strict: bool = True) -> type[BaseModel]:
        model = self._models.get((extra, strict))
        if model is None:
            model = self._build(self._name, self._properties, extra, (), self._unknown, strict)
            self._models[(extra, strict)] = model
        return model

    def _build(
        self,
        name: str,
        properties: Mapping[str, PropertyDefinition],
        extra: str,
        path: tuple[str, ...],
        unknown: bool,
        strict: bool,
    ) -> type[BaseModel]:
        fields: dict[str, Any] = {}
        for index, (key, prop) in enumerate(properties.items()):
            if prop.type == "virtual":
                continue
            if prop.label:
                self._labels[(*path, key)] = prop.label
            annotation = self._annotation(f"{name}_{index}", prop, extra, (*path, key), strict)
            fields[f"field_{index}"] = (annotation, _field_info(key, prop))
        config = ConfigDict(
            extra="allow" if unknown and extra == "forbid" else extra,  # type: ignore[typeddict-item]
            arbitrary_types_allowed=True,
            regex_engine="python-re",
        )
        return create_model(name, __config__=config, **fields)

    def _annotation(
        self,
        name: str,
        prop: PropertyDefinition,
        extra: str,
        path: tuple[str, ...],
        strict: bool,
    ) -> Any:
        kind = prop.type
        if kind not in PROPERTY_TYPES:
            msg = f"Invalid type ({kind}) for property {'.'.join(path)}"
            raise ConfigurationError(msg)
        metadata: list[Any] = []
        base: Any
        if kind == "string":
            base = str
            constraints: dict[str, Any] = _length_constraints(prop)
            if prop.regex is not None:
                constraints["pattern"] = prop.regex
            if constraints:
                metadata.append(Field(**constraints))
            metadata.extend(_string_checks(prop))
        elif kind == "number":
            base = Any
            metadata.append(AfterValidator(_number_check(prop)))
        elif kind == "boolean":
            base = bool
        elif kind == "date":
            base = datetime
        elif kind == "binary":
            base = bytes
            constraints = _length_constraints(prop)
            if constraints:
                metadata.append(Field(**constraints))
        elif kind == "objectid":
            base = ObjectId
        elif kind == "array":
            item = Any
            if prop.items is not None:
                item = self._annotation(f"{name}_item", prop.items, extra, path, strict)
            base = list[item]  # type: ignore[valid-type]
            constraints = _length_constraints(prop)
            if constraints:
                metadata.append(Field(**constraints))
            if prop.unique:
                metadata.append(AfterValidator(_unique))
        elif kind == "object":
            if prop.properties:
                base = self._build(name, prop.properties, extra, path, prop.unknown, strict)
            else:
                base = dict[str, Any]
        else:
            base = Any
        if strict and kind in _STRICT_KINDS:
            metadata.insert(0, Strict())
        metadata.extend(_value_checks(prop))
        if not prop.required:
            metadata.append(WrapValidator(_nullable))
        return _annotate(base, metadata)

    def _label(self, loc: tuple[int | str, ...]) -> str:
        names = tuple(part for part in loc if isinstance(part, str))
        if names and names in self._labels and len(names) == len(loc):
            return self._labels[names]
        label = ""
        for part in loc:
            if isinstance(part, int):
                label += f"[{part}]"
            else:
                label += f".{part}" if label else part
        return label or "value"

    def _message(self, error: Mapping[str, Any]) -> str:
        kind = error["type"]
        ctx = error.get("ctx") or {}
        if kind == "value_error" and "error" in ctx:
            text = str(ctx["error"])
        elif kind in _MESSAGES:
            try:
                text = _MESSAGES[kind].format(**ctx)
            except KeyError:
                text = _MESSAGES[kind]
        else:
            message = str(error.get("msg", ""))
            text = message[:1].lower() + message[1:]
        return f'"{self._label(tuple(error.get("loc", ())))}" {text}'

    async def validate(
        self,
        document: Mapping[str, Any],
        *,
        abort_early: bool = False,
        convert: bool = False,
        allow_unknown: bool = False,
        skip_functions: bool = True,
        strip_unknown: bool = False,
    ) -> dict[str, Any]:
        """Validate ``document`` and return the normalized copy.

        Declared defaults are filled in and stripped properties removed.
        Raises ``ValidationError`` carrying every failure message, or only the
        first one when ``abort_early`` is set.
        """

        extra = "ignore" if strip_unknown else "allow" if allow_unknown else "forbid"
        model = self.model_for(extra, strict=not convert)
        payload = _drop_functions(document) if skip_functions else document
        try:
            instance = model.model_validate(payload, context={"convert": convert})
        except PydanticValidationError as exc:
            details = [self._message(error) for error in exc.errors()]
            if abort_early:
                details = details[:1]
            logger.debug("Validation failed for %s: %s", self._name, details)
            raise ValidationError(". ".join(details), details=details) from exc
        return _dump(instance)


__all__ = ["CompiledSchema"]
