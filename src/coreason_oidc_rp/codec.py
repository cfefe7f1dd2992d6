# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc_rp

"""
Codec between typed protocol messages and their wire forms (mapping, JSON, query string).

Each message class gets a descriptor table built once from its declared fields. The table
names the wire key and the kind of every field, and drives all conversions below.
"""

import json
import re
import types
import typing
from datetime import UTC, datetime
from enum import Enum, StrEnum
from functools import cache
from typing import Any, ClassVar, NamedTuple, Self, TypeVar
from urllib.parse import parse_qsl, quote, urlencode

from pydantic import BaseModel, ConfigDict, JsonValue, ValidationError

from coreason_oidc_rp.exceptions import MessageValidationError, OIDCError

M = TypeVar("M", bound="Message")

_WIRE_NAME_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")


def wire_name(identifier: str) -> str:
    """
    Maps a field identifier to its wire name.

    An underscore is inserted before every interior uppercase letter and the result is
    lower-cased, so `ClientId` becomes `client_id` and snake_case names are unchanged.
    """
    return _WIRE_NAME_RE.sub(r"_\1", identifier).lower()


class FieldKind(StrEnum):
    STRING = "string"
    STRING_LIST = "string_list"
    MAPPING = "mapping"
    TIMESTAMP = "timestamp"
    BOOL = "bool"
    INT = "int"
    MESSAGE = "message"
    MESSAGE_LIST = "message_list"
    MESSAGE_MAP = "message_map"
    ENUM = "enum"
    ENUM_LIST = "enum_list"


class FieldSpec(NamedTuple):
    name: str
    wire: str
    kind: FieldKind
    required: bool
    target: type | None = None


class Message(BaseModel):
    """
    Base class of every protocol message.

    Fields are optional at the model level so that partial wire maps decode without error;
    presence rules live in `validate_message`, which runs after deserialization.

    Attributes:
        required_fields (tuple[str, ...]): Field names `validate_message` requires by default.
        catch_all (str | None): Name of a mapping field that collects unrecognized wire keys.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    required_fields: ClassVar[tuple[str, ...]] = ()
    catch_all: ClassVar[str | None] = None

    def validate_message(self) -> None:
        """
        Checks the message invariants.

        Raises:
            MessageValidationError: If a required field is missing.
        """
        wires = {spec.name: spec.wire for spec in field_specs(type(self))}
        for name in self.required_fields:
            if _is_empty(getattr(self, name)):
                raise MessageValidationError(f"Missing {wires[name]} required parameter.")

    def to_dict(self) -> dict[str, JsonValue]:
        return to_wire_map(self)

    def to_json(self) -> str:
        return to_json(self)

    def to_query_string(self) -> str:
        return to_query_string(self)

    def to_form(self) -> dict[str, str]:
        return dict(form_fields(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any], validate: bool = True) -> Self:
        """
        Decodes a wire map into this message type.

        Raises:
            OIDCError: If the map is an OP error response.
            MessageValidationError: If the decoded message breaks its invariants.
        """
        result = parse_response_or_error(cls, data)
        if isinstance(result, ResponseError) and cls is not ResponseError:
            raise result.to_exception()
        message = typing.cast(Self, result)
        if validate:
            message.validate_message()
        return message

    @classmethod
    def from_json(cls, text: str | bytes, validate: bool = True) -> Self:
        return cls.from_dict(_load_json_object(text), validate=validate)

    @classmethod
    def from_query_string(cls, query: str, validate: bool = True) -> Self:
        return cls.from_dict(_parse_query(query), validate=validate)


class ResponseError(Message):
    """
    Error response returned by an OP endpoint.
    """

    required_fields = ("error",)

    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None
    state: str | None = None

    def describe(self) -> str:
        if self.error_description:
            return f"{self.error}\n{self.error_description}"
        return f"{self.error}"

    def to_exception(self, context: str | None = None) -> OIDCError:
        """
        Builds the OIDCError carrying this response's `error` and `error_description`.

        Args:
            context: Optional prefix describing the failed operation.
        """
        text = self.describe()
        message = f"{context}: {text}" if context else text
        return OIDCError(message, error=self.error, error_description=self.error_description)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict)) and not value:
        return True
    return False


def _unwrap_optional(annotation: Any) -> Any:
    origin = typing.get_origin(annotation)
    if origin in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _is_message(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, Message)


def _is_enum(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, Enum)


def _classify(annotation: Any) -> tuple[FieldKind, type | None]:
    tp = _unwrap_optional(annotation)
    origin = typing.get_origin(tp)
    args = typing.get_args(tp)

    if tp is bool:
        return FieldKind.BOOL, None
    if tp is int:
        return FieldKind.INT, None
    if tp is str:
        return FieldKind.STRING, None
    if tp is datetime:
        return FieldKind.TIMESTAMP, None
    if _is_enum(tp):
        return FieldKind.ENUM, tp
    if _is_message(tp):
        return FieldKind.MESSAGE, tp
    if origin is list and args:
        item = args[0]
        if item is str:
            return FieldKind.STRING_LIST, None
        if _is_enum(item):
            return FieldKind.ENUM_LIST, item
        if _is_message(item):
            return FieldKind.MESSAGE_LIST, item
    if origin is dict and args:
        if _is_message(args[1]):
            return FieldKind.MESSAGE_MAP, args[1]
        return FieldKind.MAPPING, None
    raise TypeError(f"Unsupported field annotation for the codec: {annotation!r}")


@cache
def field_specs(cls: type[Message]) -> tuple[FieldSpec, ...]:
    """
    Returns the descriptor table of a message class, built once per class.
    """
    specs = []
    for name, info in cls.model_fields.items():
        kind, target = _classify(info.annotation)
        wire = info.alias or wire_name(name)
        specs.append(FieldSpec(name, wire, kind, name in cls.required_fields, target))
    return tuple(specs)


def _encode_value(spec: FieldSpec, value: Any) -> JsonValue:
    match spec.kind:
        case FieldKind.TIMESTAMP:
            return int(value.timestamp())
        case FieldKind.ENUM:
            return value.value
        case FieldKind.ENUM_LIST:
            return [item.value for item in value]
        case FieldKind.STRING_LIST:
            return list(value)
        case FieldKind.MAPPING:
            return dict(value)
        case FieldKind.MESSAGE:
            return to_wire_map(value)
        case FieldKind.MESSAGE_LIST:
            return [to_wire_map(item) for item in value]
        case FieldKind.MESSAGE_MAP:
            return {key: to_wire_map(item) for key, item in value.items()}
        case _:
            return value


def to_wire_map(message: Message) -> dict[str, JsonValue]:
    """
    Serializes a message into its wire mapping. `None` fields are omitted.
    """
    result: dict[str, JsonValue] = {}
    for spec in field_specs(type(message)):
        value = getattr(message, spec.name)
        if value is None:
            continue
        if spec.name == message.catch_all:
            for key, extra in value.items():
                result.setdefault(key, extra)
            continue
        result[spec.wire] = _encode_value(spec, value)
    return result


def _split_words(value: Any, wire: str) -> list[Any]:
    if isinstance(value, str):
        return value.split()
    if isinstance(value, list):
        return value
    raise MessageValidationError(f"Invalid value for {wire}: expected a list.")


def _as_json_container(value: Any, wire: str) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError as e:
            raise MessageValidationError(f"Invalid JSON value for {wire}.") from e
    return value


def _decode_value(spec: FieldSpec, value: Any) -> Any:
    wire = spec.wire
    match spec.kind:
        case FieldKind.STRING:
            if isinstance(value, (str, int, float)) and not isinstance(value, bool):
                return str(value)
            raise MessageValidationError(f"Invalid value for {wire}: expected a string.")
        case FieldKind.BOOL:
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.lower() in ("true", "false"):
                return value.lower() == "true"
            raise MessageValidationError(f"Invalid value for {wire}: expected a boolean.")
        case FieldKind.INT:
            try:
                return int(value)
            except (TypeError, ValueError) as e:
                raise MessageValidationError(f"Invalid value for {wire}: expected an integer.") from e
        case FieldKind.TIMESTAMP:
            try:
                seconds = int(float(value))
            except (TypeError, ValueError, OverflowError) as e:
                raise MessageValidationError(f"Invalid value for {wire}: expected epoch seconds.") from e
            if seconds == 0:
                return None
            try:
                return datetime.fromtimestamp(seconds, tz=UTC)
            except (OverflowError, OSError, ValueError) as e:
                raise MessageValidationError(f"Invalid value for {wire}: timestamp out of range.") from e
        case FieldKind.STRING_LIST:
            return [str(item) for item in _split_words(value, wire)]
        case FieldKind.ENUM | FieldKind.ENUM_LIST:
            items = [value] if spec.kind is FieldKind.ENUM else _split_words(value, wire)
            enum_cls = typing.cast(type[Enum], spec.target)
            try:
                members = [enum_cls(item) for item in items]
            except ValueError as e:
                raise MessageValidationError(f"Invalid value for {wire}: {value!r}.") from e
            return members[0] if spec.kind is FieldKind.ENUM else members
        case FieldKind.MAPPING:
            data = _as_json_container(value, wire)
            if not isinstance(data, dict):
                raise MessageValidationError(f"Invalid value for {wire}: expected an object.")
            return data
        case FieldKind.MESSAGE:
            data = _as_json_container(value, wire)
            if not isinstance(data, dict):
                raise MessageValidationError(f"Invalid value for {wire}: expected an object.")
            return from_wire_map(typing.cast(type[Message], spec.target), data)
        case FieldKind.MESSAGE_LIST:
            data = _as_json_container(value, wire)
            if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
                raise MessageValidationError(f"Invalid value for {wire}: expected a list of objects.")
            return [from_wire_map(typing.cast(type[Message], spec.target), item) for item in data]
        case FieldKind.MESSAGE_MAP:
            data = _as_json_container(value, wire)
            if not isinstance(data, dict) or not all(item is None or isinstance(item, dict) for item in data.values()):
                raise MessageValidationError(f"Invalid value for {wire}: expected a map of objects.")
            target = typing.cast(type[Message], spec.target)
            return {key: from_wire_map(target, item or {}) for key, item in data.items()}
    raise MessageValidationError(f"Unsupported field kind for {wire}.")  # pragma: no cover


def from_wire_map(cls: type[M], data: dict[str, Any]) -> M:
    """
    Deserializes a wire mapping into `cls`. Absent keys leave the field default.

    This does not look for an `error` member and does not run `validate_message`;
    see `parse_response_or_error` and `Message.from_dict`.

    Raises:
        MessageValidationError: If a present value does not fit its field kind.
    """
    values: dict[str, Any] = {}
    known: set[str] = set()
    for spec in field_specs(cls):
        if spec.name == cls.catch_all:
            continue
        known.add(spec.wire)
        if spec.wire not in data or data[spec.wire] is None:
            continue
        values[spec.name] = _decode_value(spec, data[spec.wire])

    if cls.catch_all:
        values[cls.catch_all] = {key: value for key, value in data.items() if key not in known}

    try:
        return cls.model_validate(values)
    except ValidationError as e:
        raise MessageValidationError(f"Invalid {cls.__name__}: {e}") from e


def parse_response_or_error(cls: type[M], data: dict[str, Any]) -> M | ResponseError:
    """
    Decodes `data` either as `cls` or, when it carries an `error` member, as a ResponseError.
    """
    if "error" in data:
        return from_wire_map(ResponseError, data)
    return from_wire_map(cls, data)


def _query_value(spec: FieldSpec, value: Any) -> str:
    match spec.kind:
        case FieldKind.BOOL:
            return "true" if value else "false"
        case FieldKind.STRING_LIST | FieldKind.ENUM_LIST:
            return " ".join(str(item) for item in _encode_value(spec, value))  # type: ignore[union-attr]
        case FieldKind.MAPPING | FieldKind.MESSAGE | FieldKind.MESSAGE_LIST | FieldKind.MESSAGE_MAP:
            return json.dumps(_encode_value(spec, value), separators=(",", ":"))
        case _:
            return str(_encode_value(spec, value))


def form_fields(message: Message) -> list[tuple[str, str]]:
    """
    Flattens a message into (name, text) pairs for a query string or form body.

    Lists are joined with a single space, enum lists after mapping each member to its
    wire value, and nested messages or mappings collapse to compact JSON text.
    """
    pairs: list[tuple[str, str]] = []
    for spec in field_specs(type(message)):
        value = getattr(message, spec.name)
        if value is None:
            continue
        if spec.name == message.catch_all:
            for key, extra in value.items():
                text = extra if isinstance(extra, str) else json.dumps(extra, separators=(",", ":"))
                pairs.append((key, text))
            continue
        pairs.append((spec.wire, _query_value(spec, value)))
    return pairs


def to_query_string(message: Message) -> str:
    """Serializes a message as a percent-encoded query string."""
    return urlencode(form_fields(message), quote_via=quote)


def _parse_query(query: str) -> dict[str, str]:
    return dict(parse_qsl(query.lstrip("?#"), keep_blank_values=False))


def from_query_string(cls: type[M], query: str) -> M | ResponseError:
    """
    Decodes a query string (or URL fragment) into `cls`, or into a ResponseError.
    """
    return parse_response_or_error(cls, _parse_query(query))


def to_json(message: Message) -> str:
    return json.dumps(to_wire_map(message))


def _load_json_object(text: str | bytes) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except ValueError as e:
        raise MessageValidationError("Invalid JSON message.") from e
    if not isinstance(data, dict):
        raise MessageValidationError("Invalid JSON message: expected an object.")
    return data


def from_json(cls: type[M], text: str | bytes) -> M | ResponseError:
    return parse_response_or_error(cls, _load_json_object(text))
