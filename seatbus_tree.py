"""
Seatbus local lookups: process names, control group trees and seat
device trees, read straight from /proc, /sys and the udev database.

These only make sense when talking to the local login manager; callers
skip them for remote hosts.
"""

from __future__ import annotations

import os
from pathlib import Path

PROC_ROOT = "/proc"
CGROUP_ROOTS = ("/sys/fs/cgroup/systemd", "/sys/fs/cgroup")
UDEV_SEAT_TAGS = "/run/udev/tags/seat"
UDEV_DATA = "/run/udev/data"
DEFAULT_SEAT = "seat0"


def _read(path: str | Path) -> str | None:
    try:
        return Path(path).read_text(errors="replace")
    except OSError:
        return None


def _limit(prefix: str, width: int) -> int:
    return width + len(prefix) if width > 0 else 0


def _ellipsize(line: str, width: int) -> str:
    if width <= 0 or len(line) <= width:
        return line
    if width <= 3:
        return line[:width]
    return line[:width - 3] + "..."


# ============================================================================
# Processes
# ============================================================================

def process_name(pid: int) -> str | None:
    """Short name of a running process (its comm), None if it is gone."""
    comm = _read(f"{PROC_ROOT}/{pid}/comm")
    if comm is None:
        return None
    return comm.strip() or None


def process_cmdline(pid: int) -> str | None:
    """Command line of a process, falling back to [comm] for kernel threads."""
    raw = _read(f"{PROC_ROOT}/{pid}/cmdline")
    if raw:
        return raw.replace("\0", " ").strip()
    name = process_name(pid)
    return f"[{name}]" if name else None


# ============================================================================
# Control groups
# ============================================================================

def cgroup_directory(path: str) -> Path | None:
    """Map a ControlGroupPath (optionally "controller:/path") to its directory."""
    if ":" in path and not path.startswith("/"):
        path = path.split(":", 1)[1]
    for root in CGROUP_ROOTS:
        candidate = Path(root + path)
        if candidate.is_dir():
            return candidate
    return None


def _cgroup_pids(directory: Path) -> list[int]:
    text = _read(directory / "cgroup.procs") or ""
    return sorted(int(line) for line in text.split() if line.isdigit())


def _cgroup_lines(directory: Path, prefix: str, width: int) -> list[str]:
    pids = _cgroup_pids(directory)
    try:
        children = sorted(p for p in directory.iterdir() if p.is_dir())
    except OSError:
        # group went away while we were walking it
        children = []

    entries: list[tuple[str, Path | None]] = []
    for pid in pids:
        entries.append((f"{pid} {process_cmdline(pid) or '?'}", None))
    for child in children:
        entries.append((child.name, child))

    lines = []
    for n, (label, child) in enumerate(entries):
        last = n == len(entries) - 1
        branch = "└ " if last else "├ "
        lines.append(_ellipsize(f"{prefix}{branch}{label}", _limit(prefix, width)))
        if child is not None:
            lines.extend(_cgroup_lines(child, prefix + ("  " if last else "│ "), width - 2))
    return lines


def cgroup_tree(path: str, prefix: str, width: int) -> str:
    """Render the processes and sub-groups below a control group path."""
    directory = cgroup_directory(path)
    if directory is None:
        return ""
    return "\n".join(_cgroup_lines(directory, prefix, width))


# ============================================================================
# Seat devices
# ============================================================================

def _device_syspath(device_id: str) -> str | None:
    """Resolve a udev database id (c13:64, b8:0, +drm:card0) to its /sys path."""
    if device_id[:1] in ("c", "b") and ":" in device_id:
        kind = "char" if device_id[0] == "c" else "block"
        link = Path(f"/sys/dev/{kind}/{device_id[1:]}")
    elif device_id.startswith("+") and ":" in device_id:
        subsystem, sysname = device_id[1:].split(":", 1)
        link = Path(f"/sys/class/{subsystem}/{sysname}")
        if not link.exists():
            link = Path(f"/sys/bus/{subsystem}/devices/{sysname}")
    else:
        return None
    try:
        return os.path.realpath(link) if link.exists() else None
    except OSError:
        return None


def _device_seat(device_id: str) -> str:
    data = _read(Path(UDEV_DATA) / device_id) or ""
    for line in data.splitlines():
        if line.startswith("E:ID_SEAT="):
            return line.split("=", 1)[1] or DEFAULT_SEAT
    return DEFAULT_SEAT


def seat_device_paths(seat_id: str) -> list[str]:
    """Sorted /sys paths of devices udev assigned to seat_id."""
    try:
        device_ids = sorted(os.listdir(UDEV_SEAT_TAGS))
    except OSError:
        return []

    paths = []
    for device_id in device_ids:
        if _device_seat(device_id) != seat_id:
            continue
        syspath = _device_syspath(device_id)
        if syspath:
            paths.append(syspath)
    return sorted(set(paths))


def seat_devices(seat_id: str, prefix: str, width: int) -> str:
    """Render the devices attached to a seat."""
    paths = seat_device_paths(seat_id)
    lines = []
    for n, path in enumerate(paths):
        branch = "└─" if n == len(paths) - 1 else "├─"
        lines.append(_ellipsize(f"{prefix}{branch}{path}", _limit(prefix, width)))
    return "\n".join(lines)
