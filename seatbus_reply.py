"""
Seatbus reply decoding.

A properties reply (org.freedesktop.DBus.Properties.GetAll) is an ordered
a{sv}: names mapped to variants. sdbus hands each variant over as a
(signature, value) tuple, so the only type information we get is the
signature string. This module turns each pair into a Property carrying a
small tagged value:

    s           -> Text
    u           -> UInt32
    t           -> UInt64
    b           -> Bool
    (s...)      -> WrappedScalar(Text)     e.g. Seat, ActiveSession, Display
    (u...)      -> WrappedScalar(UInt32)   e.g. User
    a(s?)       -> IdentifierList          e.g. Sessions
    anything    -> Unsupported

Decoding is all-or-nothing: one bad pair raises MalformedReplyError and
nothing is returned for the reply.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from seatbus_errors import MalformedReplyError

BASIC_TYPES = "ybnqiuxtdsogh"

UINT32_MAX = 2**32 - 1
UINT64_MAX = 2**64 - 1


# ============================================================================
# Decoded values
# ============================================================================

@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class UInt32:
    value: int


@dataclass(frozen=True)
class UInt64:
    value: int


@dataclass(frozen=True)
class Bool:
    value: bool


@dataclass(frozen=True)
class WrappedScalar:
    """Single-level struct used as a back-reference. Only the first field is kept."""
    inner: Union[Text, UInt32]


@dataclass(frozen=True)
class IdentifierList:
    """Ids from an a(so) list, in source order. Object paths are dropped."""
    ids: tuple[str, ...]


@dataclass(frozen=True)
class Unsupported:
    pass


DecodedValue = Union[Text, UInt32, UInt64, Bool, WrappedScalar, IdentifierList, Unsupported]


@dataclass(frozen=True)
class Property:
    """One decoded name/value pair.

    signature and raw are the variant as received; only the generic
    printer looks at them.
    """
    name: str
    value: DecodedValue
    signature: str
    raw: Any


# ============================================================================
# Signatures
# ============================================================================

def _type_end(sig: str, pos: int) -> int:
    """Return the index just past the complete type starting at pos."""
    if pos >= len(sig):
        raise ValueError(f"truncated signature {sig!r}")

    c = sig[pos]
    if c in BASIC_TYPES or c == "v":
        return pos + 1

    if c == "a":
        return _type_end(sig, pos + 1)

    if c == "(":
        start = pos
        pos += 1
        while pos < len(sig) and sig[pos] != ")":
            pos = _type_end(sig, pos)
        if pos >= len(sig) or pos == start + 1:
            raise ValueError(f"bad struct in signature {sig!r}")
        return pos + 1

    if c == "{":
        if pos + 1 >= len(sig) or sig[pos + 1] not in BASIC_TYPES:
            raise ValueError(f"bad dict entry key in signature {sig!r}")
        pos = _type_end(sig, pos + 2)
        if pos >= len(sig) or sig[pos] != "}":
            raise ValueError(f"unterminated dict entry in signature {sig!r}")
        return pos + 1

    raise ValueError(f"unknown type code {c!r} in signature {sig!r}")


def split_signature(sig: str) -> list[str]:
    """Split a signature into its complete types: "sa(so)u" -> ["s", "a(so)", "u"]."""
    types = []
    pos = 0
    while pos < len(sig):
        end = _type_end(sig, pos)
        types.append(sig[pos:end])
        pos = end
    return types


def struct_fields(sig: str) -> list[str] | None:
    """Field types of a struct signature, or None if sig is not a struct."""
    if not (sig.startswith("(") and sig.endswith(")")):
        return None
    return split_signature(sig[1:-1])


# ============================================================================
# Scalars
# ============================================================================

def _is_uint(value: Any, maximum: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= maximum


def _scalar(name: str, sig: str, value: Any) -> Text | UInt32 | UInt64 | Bool | None:
    """Decode a scalar we care about, or None if sig is some other type."""
    if sig == "s":
        if not isinstance(value, str):
            raise MalformedReplyError(f"{name}: expected string, got {type(value).__name__}")
        return Text(value)

    if sig == "u":
        if not _is_uint(value, UINT32_MAX):
            raise MalformedReplyError(f"{name}: expected uint32, got {value!r}")
        return UInt32(value)

    if sig == "t":
        if not _is_uint(value, UINT64_MAX):
            raise MalformedReplyError(f"{name}: expected uint64, got {value!r}")
        return UInt64(value)

    if sig == "b":
        if not isinstance(value, bool):
            raise MalformedReplyError(f"{name}: expected boolean, got {value!r}")
        return Bool(value)

    return None


# ============================================================================
# Decoding
# ============================================================================

def decode_value(name: str, sig: str, value: Any) -> DecodedValue:
    """Classify one variant by its signature."""
    try:
        types = split_signature(sig)
    except ValueError as e:
        raise MalformedReplyError(f"{name}: {e}") from e
    if len(types) != 1:
        raise MalformedReplyError(f"{name}: variant signature {sig!r} is not a single type")

    scalar = _scalar(name, sig, value)
    if scalar is not None:
        return scalar

    fields = struct_fields(sig)
    if fields is not None:
        if not isinstance(value, (tuple, list)) or len(value) != len(fields):
            raise MalformedReplyError(f"{name}: struct {sig} does not match {value!r}")
        if fields[0] in ("s", "u"):
            return WrappedScalar(_scalar(name, fields[0], value[0]))
        return Unsupported()

    if sig.startswith("a("):
        elements = struct_fields(sig[1:])
        if len(elements) == 2 and elements[0] == "s":
            if not isinstance(value, (tuple, list)):
                raise MalformedReplyError(f"{name}: expected array, got {value!r}")
            ids = []
            for element in value:
                if not isinstance(element, (tuple, list)) or len(element) != 2:
                    raise MalformedReplyError(f"{name}: bad array element {element!r}")
                ids.append(_scalar(name, "s", element[0]).value)
            return IdentifierList(tuple(ids))

    return Unsupported()


def decode_pair(pair: Any) -> Property:
    """Decode one (name, (signature, value)) envelope."""
    if not isinstance(pair, (tuple, list)) or len(pair) != 2:
        raise MalformedReplyError(f"bad property envelope {pair!r}")

    name, variant = pair
    if not isinstance(name, str):
        raise MalformedReplyError(f"property name is not a string: {name!r}")
    if not isinstance(variant, (tuple, list)) or len(variant) != 2 or not isinstance(variant[0], str):
        raise MalformedReplyError(f"{name}: bad variant {variant!r}")

    sig, raw = variant
    return Property(name, decode_value(name, sig, raw), sig, raw)


def decode_reply(pairs: Mapping | Iterable) -> list[Property]:
    """Decode a whole GetAll reply, preserving property order."""
    if isinstance(pairs, Mapping):
        pairs = pairs.items()
    try:
        items = list(pairs)
    except TypeError as e:
        raise MalformedReplyError("reply is not a property list") from e
    return [decode_pair(pair) for pair in items]


def check_rows(rows: Any, types: tuple[type, ...]) -> list[tuple]:
    """Validate a List* reply: every row a struct whose fields have the given types."""
    if not isinstance(rows, (tuple, list)):
        raise MalformedReplyError(f"expected array, got {rows!r}")
    checked = []
    for row in rows:
        if (not isinstance(row, (tuple, list)) or len(row) != len(types)
                or not all(isinstance(v, t) for v, t in zip(row, types))):
            raise MalformedReplyError(f"bad row {row!r}")
        checked.append(tuple(row))
    return checked
