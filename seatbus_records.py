"""
Seatbus view models: session, user and seat records built from decoded
property replies.

Each record kind has a static table mapping a property name to the record
field it fills and the value kind it expects. Names not in the table, and
values of a different kind, are ignored, so new properties on the service
side never break us.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from seatbus_reply import (
    Bool,
    IdentifierList,
    Property,
    Text,
    UInt32,
    UInt64,
    WrappedScalar,
)


# ============================================================================
# Records
# ============================================================================

@dataclass
class SessionRecord:
    id: str | None = None
    uid: int = 0
    name: str | None = None
    timestamp: int = 0  # usec since epoch
    control_group: str | None = None
    vtnr: int = 0
    seat: str | None = None
    tty: str | None = None
    display: str | None = None
    remote: bool = False
    remote_host: str | None = None
    remote_user: str | None = None
    service: str | None = None
    leader: int = 0
    type: str | None = None
    active: bool = False


@dataclass
class UserRecord:
    uid: int = 0
    name: str | None = None
    timestamp: int = 0
    control_group: str | None = None
    state: str | None = None
    sessions: list[str] = field(default_factory=list)
    display: str | None = None


@dataclass
class SeatRecord:
    id: str | None = None
    active_session: str | None = None
    sessions: list[str] = field(default_factory=list)


# ============================================================================
# Name -> field tables
# ============================================================================

# Value kinds
TEXT = "text"
U32 = "u32"
U64 = "u64"
BOOL = "bool"
REF_TEXT = "ref-text"
REF_U32 = "ref-u32"
IDS = "ids"

SESSION_FIELDS = {
    "Id": ("id", TEXT),
    "Name": ("name", TEXT),
    "ControlGroupPath": ("control_group", TEXT),
    "TTY": ("tty", TEXT),
    "Display": ("display", TEXT),
    "RemoteHost": ("remote_host", TEXT),
    "RemoteUser": ("remote_user", TEXT),
    "Service": ("service", TEXT),
    "Type": ("type", TEXT),
    "VTNr": ("vtnr", U32),
    "Leader": ("leader", U32),
    "Remote": ("remote", BOOL),
    "Active": ("active", BOOL),
    "Timestamp": ("timestamp", U64),
    "User": ("uid", REF_U32),
    "Seat": ("seat", REF_TEXT),
}

USER_FIELDS = {
    "UID": ("uid", U32),
    "Name": ("name", TEXT),
    "ControlGroupPath": ("control_group", TEXT),
    "State": ("state", TEXT),
    "Timestamp": ("timestamp", U64),
    "Display": ("display", REF_TEXT),
    "Sessions": ("sessions", IDS),
}

SEAT_FIELDS = {
    "Id": ("id", TEXT),
    "ActiveSession": ("active_session", REF_TEXT),
    "Sessions": ("sessions", IDS),
}


def _extract(kind: str, value):
    """Pull the Python value out of a decoded value, or None on a kind mismatch."""
    if kind == TEXT:
        return value.value if isinstance(value, Text) else None
    if kind == U32:
        return value.value if isinstance(value, UInt32) else None
    if kind == U64:
        return value.value if isinstance(value, UInt64) else None
    if kind == BOOL:
        return value.value if isinstance(value, Bool) else None
    if kind == REF_TEXT:
        if isinstance(value, WrappedScalar) and isinstance(value.inner, Text):
            return value.inner.value
        return None
    if kind == REF_U32:
        if isinstance(value, WrappedScalar) and isinstance(value.inner, UInt32):
            return value.inner.value
        return None
    if kind == IDS:
        return list(value.ids) if isinstance(value, IdentifierList) else None
    raise ValueError(f"unknown value kind {kind}")


def apply_property(record, table: dict, prop: Property) -> bool:
    """Route one property into record via table. Returns True if a field was set."""
    entry = table.get(prop.name)
    if entry is None:
        return False

    attr, kind = entry
    value = _extract(kind, prop.value)
    if value is None:
        return False
    # blank strings never clobber a field
    if isinstance(value, str) and value == "":
        return False

    setattr(record, attr, value)
    return True


# ============================================================================
# Builders
# ============================================================================

def build_session(props: Iterable[Property]) -> SessionRecord:
    record = SessionRecord()
    for prop in props:
        apply_property(record, SESSION_FIELDS, prop)
    return record


def build_user(props: Iterable[Property]) -> UserRecord:
    record = UserRecord()
    for prop in props:
        apply_property(record, USER_FIELDS, prop)
    return record


def build_seat(props: Iterable[Property]) -> SeatRecord:
    record = SeatRecord()
    for prop in props:
        apply_property(record, SEAT_FIELDS, prop)
    return record


BUILDERS = {
    "session": build_session,
    "user": build_user,
    "seat": build_seat,
}
