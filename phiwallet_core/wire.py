"""
Hand-rolled protobuf wire encoder for outbound PhiWallet messages.

Only the two wire types the chain messages need are supported:

    VARINT            (wire type 0) — uint64 and bool (False/True → 0/1)
    LENGTH_DELIMITED  (wire type 2) — UTF-8 strings, raw bytes, nested messages

Every message type carries a fixed field table (see ``phiwallet_core.messages``).
Encoding walks that table in ascending field-number order and concatenates
the present fields.  A field whose value is falsy (``""``, ``b""``, ``0``,
``False``, ``None``, ``[]``) is omitted, mirroring proto3 implicit defaults,
unless the field is declared with ``always_emit=True``.

Anything that does not fit the table is a programming defect and raises
:class:`EncodingPreconditionError`.  Decoding is not supported: the client
only ever builds outbound messages.

Usage:
    from phiwallet_core.messages import MSG_CREATE_IDENTITY
    payload = encode_message(MSG_CREATE_IDENTITY, {"creator": addr, "cccd_id": "0123"})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Mapping

from phiwallet_core.errors import EncodingPreconditionError

logger = logging.getLogger("phiwallet_wire")

MAX_FIELD_NUMBER = (1 << 29) - 1
MAX_UINT64 = (1 << 64) - 1


class WireType(IntEnum):
    VARINT = 0
    LENGTH_DELIMITED = 2


# kind → wire type it must be declared with
_KIND_WIRE_TYPES = {
    "uint64": WireType.VARINT,
    "bool": WireType.VARINT,
    "string": WireType.LENGTH_DELIMITED,
    "bytes": WireType.LENGTH_DELIMITED,
    "message": WireType.LENGTH_DELIMITED,
}


@dataclass(frozen=True)
class FieldSpec:
    """One row of a message field table."""
    number: int
    name: str
    kind: str                      # uint64 | bool | string | bytes | message
    repeated: bool = False
    always_emit: bool = False      # emit zero/empty values instead of omitting
    message: "MessageType | None" = None  # nested table for kind == "message"

    @property
    def wire_type(self) -> WireType:
        return _KIND_WIRE_TYPES[self.kind]


@dataclass(frozen=True)
class MessageType:
    """A named, immutable field table."""
    name: str
    fields: tuple[FieldSpec, ...]
    type_url: str = ""
    _by_name: dict[str, FieldSpec] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        numbers = set()
        for spec in self.fields:
            if spec.kind not in _KIND_WIRE_TYPES:
                raise EncodingPreconditionError(
                    f"{self.name}.{spec.name}: unsupported kind {spec.kind!r}"
                )
            if not 1 <= spec.number <= MAX_FIELD_NUMBER:
                raise EncodingPreconditionError(
                    f"{self.name}.{spec.name}: field number {spec.number} out of range"
                )
            if spec.number in numbers or spec.name in self._by_name:
                raise EncodingPreconditionError(
                    f"{self.name}: duplicate field {spec.number}/{spec.name}"
                )
            numbers.add(spec.number)
            self._by_name[spec.name] = spec

    def field_named(self, name: str) -> FieldSpec:
        try:
            return self._by_name[name]
        except KeyError:
            raise EncodingPreconditionError(
                f"{self.name} has no field named {name!r}"
            ) from None

    @property
    def ordered_fields(self) -> list[FieldSpec]:
        return sorted(self.fields, key=lambda s: s.number)


# ═══════════════════════════════════════════════════════════════════
#  Primitive encoders
# ═══════════════════════════════════════════════════════════════════

def encode_raw_varint(n: int) -> bytes:
    """Base-128 little-endian varint, continuation bit on all but the last byte."""
    if isinstance(n, bool):
        n = int(n)
    if not isinstance(n, int) or n < 0 or n > MAX_UINT64:
        raise EncodingPreconditionError(f"varint value must be a uint64, got {n!r}")
    out = bytearray()
    while n > 0x7F:
        out.append((n & 0x7F) | 0x80)
        n >>= 7
    out.append(n)
    return bytes(out)


def make_tag(field_number: int, wire_type: WireType) -> bytes:
    if not isinstance(field_number, int) or not 1 <= field_number <= MAX_FIELD_NUMBER:
        raise EncodingPreconditionError(f"invalid field number {field_number!r}")
    return encode_raw_varint((field_number << 3) | int(wire_type))


def encode_varint(field_number: int, n: int | bool) -> bytes:
    """Tag ``(field_number << 3) | 0`` followed by *n* as a varint."""
    return make_tag(field_number, WireType.VARINT) + encode_raw_varint(n)


def encode_length_delimited(field_number: int, data: bytes) -> bytes:
    """Tag ``(field_number << 3) | 2``, the byte length as a varint, then *data*."""
    if not isinstance(data, (bytes, bytearray)):
        raise EncodingPreconditionError(
            f"length-delimited payload must be bytes, got {type(data).__name__}"
        )
    return (
        make_tag(field_number, WireType.LENGTH_DELIMITED)
        + encode_raw_varint(len(data))
        + bytes(data)
    )


# ═══════════════════════════════════════════════════════════════════
#  Message encoding
# ═══════════════════════════════════════════════════════════════════

def _encode_scalar(msg_name: str, spec: FieldSpec, value: Any) -> bytes:
    where = f"{msg_name}.{spec.name}"
    if spec.kind == "bool":
        if not isinstance(value, bool):
            raise EncodingPreconditionError(f"{where} expects bool, got {value!r}")
        return encode_varint(spec.number, value)
    if spec.kind == "uint64":
        if isinstance(value, bool) or not isinstance(value, int):
            raise EncodingPreconditionError(f"{where} expects int, got {value!r}")
        return encode_varint(spec.number, value)
    if spec.kind == "string":
        if not isinstance(value, str):
            raise EncodingPreconditionError(f"{where} expects str, got {value!r}")
        return encode_length_delimited(spec.number, value.encode("utf-8"))
    if spec.kind == "bytes":
        if not isinstance(value, (bytes, bytearray)):
            raise EncodingPreconditionError(f"{where} expects bytes, got {value!r}")
        return encode_length_delimited(spec.number, bytes(value))
    # message: pre-encoded bytes or a mapping for the nested table
    if isinstance(value, (bytes, bytearray)):
        return encode_length_delimited(spec.number, bytes(value))
    if isinstance(value, Mapping) and spec.message is not None:
        return encode_length_delimited(spec.number, encode_message(spec.message, value))
    raise EncodingPreconditionError(f"{where} expects encoded bytes or a mapping")


def _is_present(spec: FieldSpec, value: Any) -> bool:
    if value is None:
        return False
    if spec.always_emit:
        return True
    return bool(value)


def encode_message(message_type: MessageType, values: Mapping[str, Any]) -> bytes:
    """Encode *values* against *message_type*'s field table.

    Fields are emitted in ascending field-number order regardless of the
    order of *values*.  Unknown keys are a precondition violation.
    """
    for key in values:
        message_type.field_named(key)

    parts: list[bytes] = []
    for spec in message_type.ordered_fields:
        value = values.get(spec.name)
        if spec.repeated:
            if value is None:
                continue
            if not isinstance(value, (list, tuple)):
                raise EncodingPreconditionError(
                    f"{message_type.name}.{spec.name} is repeated; expected a list"
                )
            # every element of a repeated field is on the wire, empty or not
            for item in value:
                parts.append(_encode_scalar(message_type.name, spec, item))
            continue
        if not _is_present(spec, value):
            continue
        parts.append(_encode_scalar(message_type.name, spec, value))

    encoded = b"".join(parts)
    logger.debug(f"encoded {message_type.name}: {len(parts)} fields, {len(encoded)} bytes")
    return encoded


def decode_message(message_type: MessageType, data: bytes) -> dict:
    """Decoding is unsupported for these outbound-only message types."""
    raise NotImplementedError(
        f"{message_type.name} is encode-only; decoding is not supported"
    )
