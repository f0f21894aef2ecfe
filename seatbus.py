#!/usr/bin/env python3
"""
seatbus - Query and control the login manager over D-Bus

Usage:
    seatbus [OPTIONS...] {COMMAND} ...

Session Commands:
    list-sessions                    List sessions
    session-status ID...             Show session status
    show-session [ID...]             Show properties of one or more sessions
    activate ID                      Activate a session
    lock-session ID...               Screen lock one or more sessions
    unlock-session ID...             Screen unlock one or more sessions
    terminate-session ID...          Terminate one or more sessions
    kill-session ID...               Send signal to processes of a session

User Commands:
    list-users                       List users
    user-status USER...              Show user status
    show-user [USER...]              Show properties of one or more users
    enable-linger USER...            Enable linger state of one or more users
    disable-linger USER...           Disable linger state of one or more users
    terminate-user USER...           Terminate all sessions of one or more users
    kill-user USER...                Send signal to processes of a user

Seat Commands:
    list-seats                       List seats
    seat-status NAME...              Show seat status
    show-seat [NAME...]              Show properties of one or more seats
    attach NAME DEVICE...            Attach one or more devices to a seat
    flush-devices                    Flush all device associations
    terminate-seat NAME...           Terminate all sessions on one or more seats

Without a command, list-sessions is run.
"""

import argparse
import asyncio
import contextlib
import io
import pwd
import signal
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

from rich.console import Console
from rich.pager import SystemPager

from seatbus_bus import LOGIN_PATH, LoginBus
from seatbus_errors import MalformedReplyError, SeatbusError, UnknownUserError, UsageError
from seatbus_format import (
    RENDERERS,
    RenderEnv,
    format_properties,
    render_seat_list,
    render_session_list,
    render_user_list,
)
from seatbus_log import LogConfig, configure, log_error
from seatbus_records import BUILDERS
from seatbus_reply import check_rows, decode_reply

__version__ = "0.1.0"

# ============================================================================
# Constants
# ============================================================================

TRANSPORT_NORMAL = "normal"
TRANSPORT_SSH = "ssh"
TRANSPORT_POLKIT = "polkit"

DEFAULT_KILL_WHO = "all"

console = Console()


# ============================================================================
# Options & context
# ============================================================================

@dataclass(frozen=True)
class Options:
    """Everything the command line decides, threaded into every verb."""
    properties: tuple[str, ...] | None = None
    show_all: bool = False
    kill_who: str = DEFAULT_KILL_WHO
    signal: int = int(signal.SIGTERM)
    no_pager: bool = False
    transport: str = TRANSPORT_NORMAL
    host: str | None = None


def resolve_user(name: str) -> int:
    """Map a user name (or a numeric string) to a uid via the local password database."""
    if name.isdigit():
        return int(name)
    try:
        return pwd.getpwnam(name).pw_uid
    except KeyError:
        raise UnknownUserError(name) from None


@dataclass
class Context:
    login: Any  # LoginBus, or anything with the same coroutine methods
    options: Options = field(default_factory=Options)
    console: Console = field(default_factory=lambda: console)
    env: RenderEnv = field(default_factory=RenderEnv)
    resolve_user: Callable[[str], int] = resolve_user
    _buffer: io.StringIO | None = field(default=None, init=False, repr=False)

    @property
    def on_tty(self) -> bool:
        return self.console.is_terminal

    def _write(self, text: str):
        # raw file write: rendering through the console would expand tabs
        if self._buffer is not None:
            self._buffer.write(text)
        else:
            self.console.file.write(text)

    def out(self, text: str):
        if text:
            self._write(text + "\n")

    def blank(self):
        self._write("\n")

    @contextlib.contextmanager
    def paged(self):
        """Collect output and show it in a pager when writing to a terminal."""
        if self.options.no_pager or not self.on_tty:
            yield
            return

        buffer = self._buffer = io.StringIO()
        try:
            yield
        finally:
            self._buffer = None
            if buffer.getvalue():
                SystemPager().show(buffer.getvalue())


# ============================================================================
# Batches
# ============================================================================

async def run_batch(targets: Iterable[str], action: Callable[[str], Awaitable[Any]],
                    abort_on_error: bool) -> int:
    """Run action on each target in order.

    Every failure is reported once. With abort_on_error the first failure
    ends the batch; otherwise the rest still run. Returns 0 or 1.
    """
    ret = 0
    for target in targets:
        try:
            await action(target)
        except SeatbusError as e:
            log_error(str(e))
            ret = 1
            if abort_on_error:
                break
    return ret


# ============================================================================
# list-*
# ============================================================================

async def list_sessions(ctx: Context, args: list[str]) -> int:
    rows = check_rows(await ctx.login.list_sessions(), (str, int, str, str, str))
    with ctx.paged():
        ctx.out(render_session_list(rows, ctx.on_tty))
    return 0


async def list_users(ctx: Context, args: list[str]) -> int:
    rows = check_rows(await ctx.login.list_users(), (int, str, str))
    with ctx.paged():
        ctx.out(render_user_list(rows, ctx.on_tty))
    return 0


async def list_seats(ctx: Context, args: list[str]) -> int:
    rows = check_rows(await ctx.login.list_seats(), (str, str))
    with ctx.paged():
        ctx.out(render_seat_list(rows, ctx.on_tty))
    return 0


# ============================================================================
# show-* / *-status
# ============================================================================

def _object_kind(verb: str) -> str:
    for kind in ("session", "user", "seat"):
        if kind in verb:
            return kind
    raise UsageError(f"Unknown operation {verb}")


async def object_path(ctx: Context, kind: str, target: str) -> str:
    """Ask the manager for the object path of a session, user or seat."""
    if kind == "session":
        path = await ctx.login.get_session(target)
    elif kind == "user":
        path = await ctx.login.get_user(ctx.resolve_user(target))
    else:
        path = await ctx.login.get_seat(target)

    if not isinstance(path, str):
        raise MalformedReplyError(f"expected object path, got {path!r}")
    return path


class Separator:
    """Blank line between consecutive objects."""

    def __init__(self):
        self.needed = False

    def emit(self, ctx: Context):
        if self.needed:
            ctx.blank()
        self.needed = True


async def show_one(ctx: Context, kind: str, path: str, show_properties: bool, separator: Separator):
    props = decode_reply(await ctx.login.get_all(path))
    separator.emit(ctx)

    if show_properties:
        ctx.out(format_properties(props, ctx.options.properties, ctx.options.show_all))
    else:
        record = BUILDERS[kind](props)
        ctx.out(RENDERERS[kind](record, ctx.env))


async def show(ctx: Context, args: list[str]) -> int:
    """session-status, user-status, seat-status and the show-* verbs."""
    verb = args[0]
    kind = _object_kind(verb)
    show_properties = verb.startswith("show")
    separator = Separator()

    async def one(target: str):
        path = await object_path(ctx, kind, target)
        await show_one(ctx, kind, path, show_properties, separator)

    with ctx.paged() if show_properties else contextlib.nullcontext():
        if show_properties and len(args) <= 1:
            # the manager object itself
            await show_one(ctx, kind, LOGIN_PATH, show_properties, separator)
            return 0
        return await run_batch(args[1:], one, abort_on_error=False)


# ============================================================================
# Sessions
# ============================================================================

SESSION_ACTIONS = {
    "activate": "activate_session",
    "lock-session": "lock_session",
    "unlock-session": "unlock_session",
    "terminate-session": "terminate_session",
}


async def activate(ctx: Context, args: list[str]) -> int:
    """activate, lock-session, unlock-session and terminate-session."""
    action = getattr(ctx.login, SESSION_ACTIONS[args[0]])
    return await run_batch(args[1:], action, abort_on_error=True)


async def kill_session(ctx: Context, args: list[str]) -> int:
    async def kill(session_id: str):
        await ctx.login.kill_session(session_id, ctx.options.kill_who or DEFAULT_KILL_WHO, ctx.options.signal)

    return await run_batch(args[1:], kill, abort_on_error=True)


# ============================================================================
# Users
# ============================================================================

async def enable_linger(ctx: Context, args: list[str]) -> int:
    """enable-linger and disable-linger."""
    enable = args[0] == "enable-linger"

    async def linger(user: str):
        await ctx.login.set_user_linger(ctx.resolve_user(user), enable, True)

    return await run_batch(args[1:], linger, abort_on_error=True)


async def terminate_user(ctx: Context, args: list[str]) -> int:
    async def terminate(user: str):
        await ctx.login.terminate_user(ctx.resolve_user(user))

    return await run_batch(args[1:], terminate, abort_on_error=True)


async def kill_user(ctx: Context, args: list[str]) -> int:
    async def kill(user: str):
        await ctx.login.kill_user(ctx.resolve_user(user), ctx.options.signal)

    return await run_batch(args[1:], kill, abort_on_error=True)


# ============================================================================
# Seats
# ============================================================================

async def attach(ctx: Context, args: list[str]) -> int:
    seat = args[1]

    async def attach_one(device: str):
        await ctx.login.attach_device(seat, device, True)

    return await run_batch(args[2:], attach_one, abort_on_error=True)


async def flush_devices(ctx: Context, args: list[str]) -> int:
    await ctx.login.flush_devices(True)
    return 0


async def terminate_seat(ctx: Context, args: list[str]) -> int:
    return await run_batch(args[1:], ctx.login.terminate_seat, abort_on_error=True)


# ============================================================================
# Verb table
# ============================================================================

class Arity(Enum):
    AT_MOST = "at-most"
    AT_LEAST = "at-least"
    EXACTLY = "exactly"


@dataclass(frozen=True)
class Verb:
    name: str
    arity: Arity
    count: int  # counts the verb itself
    handler: Callable[[Context, list[str]], Awaitable[int]]


VERBS = (
    Verb("list-sessions", Arity.AT_MOST, 1, list_sessions),
    Verb("session-status", Arity.AT_LEAST, 2, show),
    Verb("show-session", Arity.AT_LEAST, 1, show),
    Verb("activate", Arity.EXACTLY, 2, activate),
    Verb("lock-session", Arity.AT_LEAST, 2, activate),
    Verb("unlock-session", Arity.AT_LEAST, 2, activate),
    Verb("terminate-session", Arity.AT_LEAST, 2, activate),
    Verb("kill-session", Arity.AT_LEAST, 2, kill_session),
    Verb("list-users", Arity.EXACTLY, 1, list_users),
    Verb("user-status", Arity.AT_LEAST, 2, show),
    Verb("show-user", Arity.AT_LEAST, 1, show),
    Verb("enable-linger", Arity.AT_LEAST, 2, enable_linger),
    Verb("disable-linger", Arity.AT_LEAST, 2, enable_linger),
    Verb("terminate-user", Arity.AT_LEAST, 2, terminate_user),
    Verb("kill-user", Arity.AT_LEAST, 2, kill_user),
    Verb("list-seats", Arity.EXACTLY, 1, list_seats),
    Verb("seat-status", Arity.AT_LEAST, 2, show),
    Verb("show-seat", Arity.AT_LEAST, 1, show),
    Verb("attach", Arity.AT_LEAST, 3, attach),
    Verb("flush-devices", Arity.EXACTLY, 1, flush_devices),
    Verb("terminate-seat", Arity.AT_LEAST, 2, terminate_seat),
)


def find_verb(args: list[str]) -> Verb:
    if not args:
        return VERBS[0]
    for verb in VERBS:
        if verb.name == args[0]:
            return verb
    raise UsageError(f"Unknown operation {args[0]}")


def check_arity(verb: Verb, left: int):
    """left is the number of positional words, the verb included (0 without one)."""
    if verb.arity is Arity.EXACTLY and left != verb.count:
        raise UsageError("Invalid number of arguments.")
    if verb.arity is Arity.AT_LEAST and left < verb.count:
        raise UsageError("Too few arguments.")
    if verb.arity is Arity.AT_MOST and left > verb.count:
        raise UsageError("Too many arguments.")


async def dispatch(args: list[str], connect: Callable[[], Context]) -> int:
    """Pick the verb, check its arity, then connect and run it.

    Nothing is sent on the bus until the command line is known to be
    good.
    """
    if args and args[0] == "help":
        console.out(build_parser().format_help(), highlight=False)
        return 0

    verb = find_verb(args)
    check_arity(verb, len(args))
    ctx = connect()
    return await verb.handler(ctx, args or [verb.name])


# ============================================================================
# Command line
# ============================================================================

def parse_signal(text: str) -> int:
    """TERM, SIGTERM or 15."""
    if text.isdigit():
        number = int(text)
        if number in {int(s) for s in signal.Signals}:
            return number
    else:
        name = text.upper()
        if not name.startswith("SIG"):
            name = "SIG" + name
        try:
            return int(signal.Signals[name])
        except KeyError:
            pass
    raise UsageError(f"Failed to parse signal string {text}.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seatbus",
        description="Send control commands to or query the login manager.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-p", "--property", action="append", dest="properties", metavar="NAME",
                        help="Show only properties by this name")
    parser.add_argument("-a", "--all", action="store_true", help="Show all properties, including empty ones")
    parser.add_argument("--kill-who", default=DEFAULT_KILL_WHO, metavar="WHO", help="Who to send signal to")
    parser.add_argument("-s", "--signal", default="SIGTERM", metavar="SIGNAL", help="Which signal to send")
    parser.add_argument("-H", "--host", metavar="[USER@]HOST", help="Show information for remote host")
    parser.add_argument("-P", "--privileged", action="store_true", help="Acquire privileges before execution")
    parser.add_argument("--no-pager", action="store_true", help="Do not pipe output into a pager")
    parser.add_argument("command", nargs="?", help="Command")
    parser.add_argument("args", nargs="*", help="Arguments")
    return parser


def options_from_args(args: argparse.Namespace) -> Options:
    if args.host:
        transport = TRANSPORT_SSH
    elif args.privileged:
        transport = TRANSPORT_POLKIT
    else:
        transport = TRANSPORT_NORMAL

    properties = tuple(args.properties) if args.properties else None
    return Options(
        properties=properties,
        # -p implies -a
        show_all=args.all or properties is not None,
        kill_who=args.kill_who,
        signal=parse_signal(args.signal),
        no_pager=args.no_pager,
        transport=transport,
        host=args.host,
    )


def open_context(options: Options) -> Context:
    if options.transport == TRANSPORT_POLKIT:
        raise UsageError("Privileged operation is not supported.")

    remote = options.transport == TRANSPORT_SSH
    login = LoginBus.connect(options.host if remote else None)
    env = RenderEnv(columns=console.width, local=not remote)
    return Context(login=login, options=options, console=console, env=env)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_intermixed_args(argv)
    words = ([args.command] if args.command else []) + args.args

    log_config = LogConfig.from_environment()
    log_config.verb = words[0] if words else None
    configure(log_config)

    try:
        options = options_from_args(args)
        return asyncio.run(dispatch(words, lambda: open_context(options)))
    except SeatbusError as e:
        log_error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
