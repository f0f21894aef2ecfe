"""
Seatbus logging: diagnostics to the terminal or to the systemd journal.

Environment:
    SEATBUS_LOG_TARGET=console|journal|auto   Where diagnostics go (default: console)
    SEATBUS_LOG_LEVEL=err|warning|info|debug  Lowest level emitted (default: info)

With the journal target each line is sent with structured fields:
    SYSLOG_IDENTIFIER=seatbus
    PRIORITY=<syslog level>
    SEATBUS_VERB=<verb being run, if any>
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from rich.console import Console
from rich.markup import escape
from systemd import journal

IDENTIFIER = "seatbus"

LEVELS = {
    "err": 3,
    "warning": 4,
    "info": 6,
    "debug": 7,
}

err_console = Console(stderr=True)


@dataclass
class LogConfig:
    target: str = "console"
    level: int = LEVELS["info"]
    verb: str | None = None

    @classmethod
    def from_environment(cls, environ: dict | None = None) -> "LogConfig":
        """Read SEATBUS_LOG_TARGET / SEATBUS_LOG_LEVEL, ignoring junk values."""
        env = os.environ if environ is None else environ

        target = env.get("SEATBUS_LOG_TARGET", "console").lower()
        if target == "auto":
            # stderr already wired into journald (e.g. running from a unit)
            target = "journal" if env.get("JOURNAL_STREAM") else "console"
        if target not in ("console", "journal"):
            target = "console"

        level = LEVELS.get(env.get("SEATBUS_LOG_LEVEL", "info").lower(), LEVELS["info"])
        return cls(target=target, level=level)


_config = LogConfig.from_environment()


def configure(config: LogConfig):
    """Replace the active logging config."""
    global _config
    _config = config


def current_config() -> LogConfig:
    return _config


def _emit(priority: int, msg: str):
    if priority > _config.level:
        return

    if _config.target == "journal":
        fields = {"PRIORITY": str(priority), "SYSLOG_IDENTIFIER": IDENTIFIER}
        if _config.verb:
            fields["SEATBUS_VERB"] = _config.verb
        journal.send(msg, **fields)
        return

    if priority <= LEVELS["err"]:
        err_console.print(f"[red]error:[/red] {escape(msg)}", highlight=False)
    else:
        err_console.print(f"[dim]{escape(msg)}[/dim]", highlight=False)


def log_error(msg: str):
    _emit(LEVELS["err"], msg)


def log_debug(msg: str):
    _emit(LEVELS["debug"], msg)
