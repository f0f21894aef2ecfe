"""
Seatbus output: property lines for show-* verbs, human reports for
*-status verbs, and the list-* tables.

Everything here returns text; printing (and paging) is the caller's job.
The status layout is fixed; detail lines start with a tab:

    c2 - lennart (1000)
               Since: Tue, 03 Jan 2012 14:02:11 +0100; 2h 3min ago
              Leader: 1394 (gdm-session-wor)
                Seat: seat0; vc1
             Display: :0
             Service: gdm-welcome; type x11
              Active: yes
              CGroup: /user/lennart/c2
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any

import seatbus_tree
from seatbus_records import SeatRecord, SessionRecord, UserRecord
from seatbus_reply import IdentifierList, Property, Text, WrappedScalar

USEC_PER_MSEC = 1000
USEC_PER_SEC = 1000 * USEC_PER_MSEC
USEC_PER_MINUTE = 60 * USEC_PER_SEC
USEC_PER_HOUR = 60 * USEC_PER_MINUTE
USEC_PER_DAY = 24 * USEC_PER_HOUR
USEC_PER_WEEK = 7 * USEC_PER_DAY
USEC_PER_MONTH = 2629800 * USEC_PER_SEC
USEC_PER_YEAR = 31557600 * USEC_PER_SEC

TIMESTAMP_FORMAT = "%a, %d %b %Y %H:%M:%S %z"

# Columns kept free for the indentation in front of the trees
CGROUP_INDENT = 18
DEVICES_INDENT = 21
TREE_PREFIX = "\t\t  "

# WrappedScalar(Text) properties printed as plain name=value in show mode
REFERENCE_DISPLAY_NAMES = ("Display", "ActiveSession")


# ============================================================================
# Time
# ============================================================================

def format_timestamp(usec: int, tz: tzinfo | None = None) -> str | None:
    """Absolute local time for a usec-since-epoch value, None when unset."""
    if usec <= 0:
        return None
    try:
        if tz is None:
            dt = datetime.fromtimestamp(usec // USEC_PER_SEC).astimezone()
        else:
            dt = datetime.fromtimestamp(usec // USEC_PER_SEC, tz)
    except (OverflowError, OSError, ValueError):
        return None
    return dt.strftime(TIMESTAMP_FORMAT)


def format_timestamp_pretty(usec: int, now_usec: int) -> str | None:
    """Coarse "how long ago", None for unset or future timestamps."""
    if usec <= 0 or now_usec <= usec:
        return None

    d = now_usec - usec

    if d >= USEC_PER_YEAR:
        text = f"{d // USEC_PER_YEAR} years and {(d % USEC_PER_YEAR) // USEC_PER_MONTH} months"
    elif d >= USEC_PER_MONTH:
        text = f"{d // USEC_PER_MONTH} months and {(d % USEC_PER_MONTH) // USEC_PER_DAY} days"
    elif d >= USEC_PER_WEEK:
        text = f"{d // USEC_PER_WEEK} weeks and {(d % USEC_PER_WEEK) // USEC_PER_DAY} days"
    elif d >= 2 * USEC_PER_DAY:
        text = f"{d // USEC_PER_DAY} days"
    elif d >= 25 * USEC_PER_HOUR:
        text = f"1 day and {(d - USEC_PER_DAY) // USEC_PER_HOUR}h"
    elif d >= 6 * USEC_PER_HOUR:
        text = f"{d // USEC_PER_HOUR}h"
    elif d >= USEC_PER_HOUR:
        text = f"{d // USEC_PER_HOUR}h {(d % USEC_PER_HOUR) // USEC_PER_MINUTE}min"
    elif d >= 5 * USEC_PER_MINUTE:
        text = f"{d // USEC_PER_MINUTE}min"
    elif d >= USEC_PER_MINUTE:
        text = f"{d // USEC_PER_MINUTE}min {(d % USEC_PER_MINUTE) // USEC_PER_SEC}s"
    elif d >= USEC_PER_SEC:
        text = f"{d // USEC_PER_SEC}s"
    elif d >= USEC_PER_MSEC:
        text = f"{d // USEC_PER_MSEC}ms"
    else:
        text = f"{d}us"

    return f"{text} ago"


TIMESPAN_UNITS = (
    ("y", USEC_PER_YEAR),
    ("month", USEC_PER_MONTH),
    ("w", USEC_PER_WEEK),
    ("d", USEC_PER_DAY),
    ("h", USEC_PER_HOUR),
    ("min", USEC_PER_MINUTE),
    ("s", USEC_PER_SEC),
    ("ms", USEC_PER_MSEC),
    ("us", 1),
)


def format_timespan(usec: int) -> str:
    """Duration like "1h 30min 2s"."""
    if usec <= 0:
        return "0"
    parts = []
    for unit, size in TIMESPAN_UNITS:
        if usec >= size:
            parts.append(f"{usec // size}{unit}")
            usec %= size
    return " ".join(parts)


# ============================================================================
# show-*: property lines
# ============================================================================

def generic_format_property(name: str, sig: str, value: Any, show_all: bool = False) -> list[str] | None:
    """Render a plain variant as name=value lines.

    Returns None when the shape is not something we know how to print,
    [] when it is known but empty and suppressed.
    """
    if sig in ("s", "o", "g"):
        if show_all or value:
            return [f"{name}={value}"]
        return []

    if sig == "b":
        return [f"{name}={'yes' if value else 'no'}"]

    if sig == "t":
        if "Timestamp" in name and "Monotonic" not in name:
            ts = format_timestamp(value)
            if ts or show_all:
                return [f"{name}={ts or ''}"]
            return []
        if name.endswith("USec"):
            return [f"{name}={format_timespan(value)}"]
        return [f"{name}={value}"]

    if sig == "u" and ("UMask" in name or "Mode" in name):
        return [f"{name}={value:04o}"]

    if sig in ("y", "n", "q", "i", "u", "x", "h"):
        return [f"{name}={value}"]

    if sig == "d":
        return [f"{name}={value:g}"]

    if sig in ("as", "ao"):
        if show_all or value:
            return [f"{name}={' '.join(value)}"]
        return []

    return None


def format_property(prop: Property, properties: Sequence[str] | None = None, show_all: bool = False) -> list[str]:
    """Lines printed for one property in show mode (possibly none)."""
    if properties is not None and prop.name not in properties:
        return []

    value = prop.value

    if (
        isinstance(value, WrappedScalar)
        and isinstance(value.inner, Text)
        and prop.name in REFERENCE_DISPLAY_NAMES
    ):
        if show_all or value.inner.value:
            return [f"{prop.name}={value.inner.value}"]
        return []

    if isinstance(value, IdentifierList):
        if value.ids:
            return [f"{prop.name}={' '.join(value.ids)}"]
        return [f"{prop.name}="] if show_all else []

    lines = generic_format_property(prop.name, prop.signature, prop.raw, show_all)
    if lines is not None:
        return lines

    return [f"{prop.name}=[unprintable]"] if show_all else []


def format_properties(props: Iterable[Property], properties: Sequence[str] | None = None, show_all: bool = False) -> str:
    """All show-mode lines for a reply, in reply order."""
    lines = []
    for prop in props:
        lines.extend(format_property(prop, properties, show_all))
    return "\n".join(lines)


# ============================================================================
# *-status: human reports
# ============================================================================

@dataclass
class RenderEnv:
    """What the status reports may look up beyond the record itself.

    local is False when talking to a remote host: pids, control groups
    and devices would then describe the wrong machine.
    """
    columns: int = 80
    local: bool = True
    now: Callable[[], float] = time.time
    tz: tzinfo | None = None
    process_name: Callable[[int], str | None] = seatbus_tree.process_name
    cgroup_tree: Callable[[str, str, int], str] = seatbus_tree.cgroup_tree
    seat_devices: Callable[[str, str, int], str] = seatbus_tree.seat_devices

    def now_usec(self) -> int:
        return int(self.now() * USEC_PER_SEC)

    def tree_width(self, indent: int) -> int:
        return max(self.columns - indent, 0)


def _since(timestamp: int, env: RenderEnv) -> list[str]:
    absolute = format_timestamp(timestamp, env.tz)
    relative = format_timestamp_pretty(timestamp, env.now_usec())
    if relative:
        return [f"\t   Since: {absolute}; {relative}"]
    if absolute:
        return [f"\t   Since: {absolute}"]
    return []


def _sessions(sessions: list[str], starred: str | None) -> list[str]:
    if not sessions:
        return []
    parts = [f" *{s}" if s == starred else f" {s}" for s in sessions]
    return ["\tSessions:" + "".join(parts)]


def _cgroup(control_group: str | None, env: RenderEnv) -> list[str]:
    if not control_group:
        return []
    lines = [f"\t  CGroup: {control_group}"]
    if env.local:
        tree = env.cgroup_tree(control_group, TREE_PREFIX, env.tree_width(CGROUP_INDENT))
        if tree:
            lines.append(tree)
    return lines


def _remote(i: SessionRecord) -> list[str]:
    if i.remote_host and i.remote_user:
        return [f"\t  Remote: {i.remote_user}@{i.remote_host}"]
    if i.remote_host:
        return [f"\t  Remote: {i.remote_host}"]
    if i.remote_user:
        return [f"\t  Remote: user {i.remote_user}"]
    if i.remote:
        return ["\t  Remote: Yes"]
    return []


def render_session_status(i: SessionRecord, env: RenderEnv) -> str:
    header = f"{i.id or 'n/a'} - "
    header += f"{i.name} ({i.uid})" if i.name else f"{i.uid}"
    lines = [header]

    lines.extend(_since(i.timestamp, env))

    if i.leader > 0:
        leader = f"\t  Leader: {i.leader}"
        comm = env.process_name(i.leader) if env.local else None
        if comm:
            leader += f" ({comm})"
        lines.append(leader)

    if i.seat:
        seat = f"\t    Seat: {i.seat}"
        if i.vtnr > 0:
            seat += f"; vc{i.vtnr}"
        lines.append(seat)

    if i.tty:
        lines.append(f"\t     TTY: {i.tty}")
    elif i.display:
        lines.append(f"\t Display: {i.display}")

    lines.extend(_remote(i))

    if i.service:
        service = f"\t Service: {i.service}"
        if i.type:
            service += f"; type {i.type}"
        lines.append(service)
    elif i.type:
        lines.append(f"\t    Type: {i.type}")

    lines.append(f"\t  Active: {'yes' if i.active else 'no'}")
    lines.extend(_cgroup(i.control_group, env))
    return "\n".join(lines)


def render_user_status(i: UserRecord, env: RenderEnv) -> str:
    lines = [f"{i.name} ({i.uid})" if i.name else f"{i.uid}"]
    lines.extend(_since(i.timestamp, env))
    if i.state:
        lines.append(f"\t   State: {i.state}")
    lines.extend(_sessions(i.sessions, i.display))
    lines.extend(_cgroup(i.control_group, env))
    return "\n".join(lines)


def render_seat_status(i: SeatRecord, env: RenderEnv) -> str:
    lines = [i.id or "n/a"]
    lines.extend(_sessions(i.sessions, i.active_session))
    if env.local:
        lines.append("\t Devices:")
        tree = env.seat_devices(i.id or "", TREE_PREFIX, env.tree_width(DEVICES_INDENT))
        if tree:
            lines.append(tree)
    return "\n".join(lines)


RENDERERS = {
    "session": render_session_status,
    "user": render_user_status,
    "seat": render_seat_status,
}


# ============================================================================
# list-*
# ============================================================================

def render_session_list(rows: Sequence[tuple], on_tty: bool) -> str:
    lines = []
    if on_tty:
        lines.append(f"{'SESSION':>10} {'UID':>10} {'USER':<16} {'SEAT':<16}")
    for session_id, uid, user, seat, _path in rows:
        lines.append(f"{session_id:>10} {uid:>10} {user:<16} {seat:<16}")
    if on_tty:
        lines.append(f"\n{len(rows)} sessions listed.")
    return "\n".join(lines)


def render_user_list(rows: Sequence[tuple], on_tty: bool) -> str:
    lines = []
    if on_tty:
        lines.append(f"{'UID':>10} {'USER':<16}")
    for uid, user, _path in rows:
        lines.append(f"{uid:>10} {user:<16}")
    if on_tty:
        lines.append(f"\n{len(rows)} users listed.")
    return "\n".join(lines)


def render_seat_list(rows: Sequence[tuple], on_tty: bool) -> str:
    lines = []
    if on_tty:
        lines.append(f"{'SEAT':<16}")
    for seat, _path in rows:
        lines.append(f"{seat:<16}")
    if on_tty:
        lines.append(f"\n{len(rows)} seats listed.")
    return "\n".join(lines)
