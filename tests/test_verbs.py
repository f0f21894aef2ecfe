import signal

import pytest

import seatbus
from seatbus import (
    TRANSPORT_POLKIT,
    TRANSPORT_SSH,
    VERBS,
    Arity,
    build_parser,
    check_arity,
    dispatch,
    find_verb,
    main,
    options_from_args,
    parse_signal,
    run_batch,
)
from seatbus_bus import LOGIN_PATH
from seatbus_errors import MalformedReplyError, TransportError, UsageError


def connect_to(ctx):
    opened = []

    def connect():
        opened.append(ctx)
        return ctx

    connect.opened = opened
    return connect


def session_reply(session_id, name="lennart", uid=1000):
    return {
        "Id": ("s", session_id),
        "User": ("(uo)", (uid, f"/org/freedesktop/login1/user/_{uid}")),
        "Name": ("s", name),
        "Active": ("b", True),
    }


def user_reply(uid, name):
    return {
        "UID": ("u", uid),
        "Name": ("s", name),
        "State": ("s", "active"),
        "Sessions": ("a(so)", []),
    }


# ----------------------------------------------------------------------------
# Verb table
# ----------------------------------------------------------------------------

class TestVerbTable:
    def test_no_verb_lists_sessions(self):
        verb = find_verb([])
        assert verb.name == "list-sessions"
        check_arity(verb, 0)

    def test_unknown_verb(self):
        with pytest.raises(UsageError, match="Unknown operation frobnicate"):
            find_verb(["frobnicate"])

    def test_names_are_unique(self):
        names = [verb.name for verb in VERBS]
        assert len(names) == len(set(names)) == 21

    @pytest.mark.parametrize("args,message", [
        (["activate"], "Invalid number of arguments."),
        (["activate", "c1", "c2"], "Invalid number of arguments."),
        (["list-users", "x"], "Invalid number of arguments."),
        (["kill-user"], "Too few arguments."),
        (["attach", "seat1"], "Too few arguments."),
        (["list-sessions", "x"], "Too many arguments."),
    ])
    @pytest.mark.anyio
    async def test_arity_errors_send_nothing(self, ctx, login, args, message):
        connect = connect_to(ctx)
        with pytest.raises(UsageError) as exc:
            await dispatch(args, connect)
        assert str(exc.value) == message
        assert connect.opened == []
        assert login.calls == []

    def test_show_without_target_is_allowed(self):
        verb = find_verb(["show-seat"])
        assert verb.arity is Arity.AT_LEAST
        check_arity(verb, 1)

    @pytest.mark.anyio
    async def test_help(self, ctx, capsys):
        assert await dispatch(["help"], connect_to(ctx)) == 0
        assert "list-sessions" in capsys.readouterr().out


# ----------------------------------------------------------------------------
# Batches
# ----------------------------------------------------------------------------

@pytest.mark.anyio
class TestRunBatch:
    async def test_continue_on_error(self, capsys):
        seen = []

        async def action(target):
            seen.append(target)
            if target == "b":
                raise TransportError("X", "nope")

        assert await run_batch(["a", "b", "c"], action, abort_on_error=False) == 1
        assert seen == ["a", "b", "c"]
        assert capsys.readouterr().err.count("error:") == 1

    async def test_abort_on_error(self):
        seen = []

        async def action(target):
            seen.append(target)
            raise TransportError("X", "nope")

        assert await run_batch(["a", "b"], action, abort_on_error=True) == 1
        assert seen == ["a"]

    async def test_all_good(self):
        async def action(target):
            pass

        assert await run_batch(["a", "b"], action, abort_on_error=True) == 0


# ----------------------------------------------------------------------------
# Lists
# ----------------------------------------------------------------------------

@pytest.mark.anyio
class TestLists:
    async def test_list_sessions_without_verb(self, ctx, login, output):
        login.sessions = [("c1", 1000, "lennart", "seat0", "/s/c1")]
        assert await dispatch([], connect_to(ctx)) == 0
        assert output.getvalue().split() == ["c1", "1000", "lennart", "seat0"]
        assert login.calls == [("ListSessions",)]

    async def test_list_users_on_terminal(self, make_context, login, output):
        login.users = [(1000, "lennart", "/u/_1000")]
        ctx = make_context(terminal=True, no_pager=True)
        assert await dispatch(["list-users"], connect_to(ctx)) == 0
        assert output.getvalue().splitlines()[-1] == "1 users listed."

    async def test_malformed_list(self, ctx, login):
        login.seats = [("seat0",)]
        with pytest.raises(MalformedReplyError):
            await dispatch(["list-seats"], connect_to(ctx))


# ----------------------------------------------------------------------------
# show-* / *-status
# ----------------------------------------------------------------------------

@pytest.mark.anyio
class TestShow:
    async def test_session_status_keeps_tabs(self, ctx, login, output):
        login.add_session("c1", {"Id": ("s", "c1"), "Active": ("b", True), "Seat": ("(so)", ("seat0", "/s"))})
        assert await dispatch(["session-status", "c1"], connect_to(ctx)) == 0
        assert output.getvalue() == "c1 - 0\n\t    Seat: seat0\n\t  Active: yes\n"

    async def test_user_status_keeps_tabs(self, ctx, login, output):
        login.add_user(1001, {
            "UID": ("u", 1001),
            "Name": ("s", "bob"),
            "Sessions": ("a(so)", [("c3", "/s/c3")]),
            "Display": ("(so)", ("c3", "/s/c3")),
        })
        assert await dispatch(["user-status", "bob"], connect_to(ctx)) == 0
        assert output.getvalue() == "bob (1001)\n\tSessions: *c3\n"

    async def test_show_pages_on_terminal(self, make_context, login, output, monkeypatch):
        shown = []

        class FakePager:
            def show(self, content):
                shown.append(content)

        monkeypatch.setattr(seatbus, "SystemPager", FakePager)
        login.add_session("c1", {"Id": ("s", "c1")})
        ctx = make_context(terminal=True)
        assert await dispatch(["show-session", "c1"], connect_to(ctx)) == 0
        assert shown == ["Id=c1\n"]
        assert output.getvalue() == ""

    async def test_show_session_without_target_inspects_manager(self, ctx, login, output):
        login.objects[LOGIN_PATH] = {"NAutoVTs": ("u", 6), "KillUserProcesses": ("b", False)}
        assert await dispatch(["show-session"], connect_to(ctx)) == 0
        assert login.calls == [("GetAll", LOGIN_PATH)]
        assert output.getvalue() == "NAutoVTs=6\nKillUserProcesses=no\n"

    async def test_show_sessions_are_separated(self, ctx, login, output):
        login.add_session("c1", {"Id": ("s", "c1")})
        login.add_session("c2", {"Id": ("s", "c2")})
        assert await dispatch(["show-session", "c1", "c2"], connect_to(ctx)) == 0
        assert output.getvalue() == "Id=c1\n\nId=c2\n"

    async def test_property_filter(self, make_context, login, output):
        login.add_session("c1", session_reply("c1"))
        ctx = make_context(properties=("Name", "User"), show_all=True)
        assert await dispatch(["show-session", "c1"], connect_to(ctx)) == 0
        assert output.getvalue() == "User=[unprintable]\nName=lennart\n"

    async def test_session_status_continues_after_failure(self, ctx, login, output, capsys):
        login.add_session("c2", session_reply("c2"))
        assert await dispatch(["session-status", "c9", "c2"], connect_to(ctx)) == 1
        assert output.getvalue().startswith("c2 - lennart (1000)\n")
        assert "No session 'c9' known" in capsys.readouterr().err

    async def test_user_status_continues_after_unknown_user(self, ctx, login, output, capsys):
        login.add_user(1001, user_reply(1001, "bob"))
        assert await dispatch(["user-status", "alice", "bob"], connect_to(ctx)) == 1
        assert "bob (1001)" in output.getvalue()
        assert "User alice unknown." in capsys.readouterr().err
        assert login.calls == [("GetUser", 1001), ("GetAll", "/org/freedesktop/login1/user/_1001")]

    async def test_status_blocks_are_separated(self, ctx, login, output):
        login.add_seat("seat0", {"Id": ("s", "seat0")})
        login.add_seat("seat1", {"Id": ("s", "seat1")})
        assert await dispatch(["seat-status", "seat0", "seat1"], connect_to(ctx)) == 0
        assert output.getvalue() == "seat0\n\nseat1\n"

    async def test_malformed_reply_counts_as_failure(self, ctx, login, capsys):
        login.add_session("c1", {"Id": ("s", 1)})
        assert await dispatch(["session-status", "c1"], connect_to(ctx)) == 1
        assert "Failed to parse reply." in capsys.readouterr().err


# ----------------------------------------------------------------------------
# Mutating verbs
# ----------------------------------------------------------------------------

@pytest.mark.anyio
class TestActions:
    async def test_kill_user_aborts_on_unknown_user(self, ctx, login):
        assert await dispatch(["kill-user", "alice", "bob"], connect_to(ctx)) == 1
        assert login.calls == []

    async def test_kill_user(self, ctx, login):
        assert await dispatch(["kill-user", "lennart", "bob"], connect_to(ctx)) == 0
        assert login.calls == [("KillUser", 1000, signal.SIGTERM), ("KillUser", 1001, signal.SIGTERM)]

    async def test_terminate_session_stops_at_first_failure(self, ctx, login):
        login.failing.add(("TerminateSession", "c2"))
        assert await dispatch(["terminate-session", "c1", "c2", "c3"], connect_to(ctx)) == 1
        assert login.calls == [("TerminateSession", "c1"), ("TerminateSession", "c2")]

    @pytest.mark.parametrize("verb,method", [
        ("activate", "ActivateSession"),
        ("lock-session", "LockSession"),
        ("unlock-session", "UnlockSession"),
    ])
    async def test_session_actions(self, ctx, login, verb, method):
        assert await dispatch([verb, "c1"], connect_to(ctx)) == 0
        assert login.calls == [(method, "c1")]

    async def test_kill_session_options(self, make_context, login):
        ctx = make_context(kill_who="leader", signal=int(signal.SIGKILL))
        assert await dispatch(["kill-session", "c1"], connect_to(ctx)) == 0
        assert login.calls == [("KillSession", "c1", "leader", signal.SIGKILL)]

    async def test_linger(self, ctx, login):
        assert await dispatch(["enable-linger", "lennart"], connect_to(ctx)) == 0
        assert await dispatch(["disable-linger", "1001"], connect_to(ctx)) == 0
        assert login.calls == [("SetUserLinger", 1000, True, True), ("SetUserLinger", 1001, False, True)]

    async def test_terminate_user(self, ctx, login):
        assert await dispatch(["terminate-user", "bob"], connect_to(ctx)) == 0
        assert login.calls == [("TerminateUser", 1001)]

    async def test_seat_actions(self, ctx, login):
        assert await dispatch(["attach", "seat1", "/sys/a", "/sys/b"], connect_to(ctx)) == 0
        assert await dispatch(["flush-devices"], connect_to(ctx)) == 0
        assert await dispatch(["terminate-seat", "seat1"], connect_to(ctx)) == 0
        assert login.calls == [
            ("AttachDevice", "seat1", "/sys/a", True),
            ("AttachDevice", "seat1", "/sys/b", True),
            ("FlushDevices", True),
            ("TerminateSeat", "seat1"),
        ]

    async def test_flush_devices_failure_propagates(self, ctx, login):
        login.failing.add("FlushDevices")
        with pytest.raises(TransportError):
            await dispatch(["flush-devices"], connect_to(ctx))


# ----------------------------------------------------------------------------
# Command line
# ----------------------------------------------------------------------------

class TestCommandLine:
    @pytest.mark.parametrize("text,number", [
        ("TERM", signal.SIGTERM),
        ("SIGKILL", signal.SIGKILL),
        ("hup", signal.SIGHUP),
        ("9", 9),
    ])
    def test_parse_signal(self, text, number):
        assert parse_signal(text) == number

    def test_bad_signal(self):
        with pytest.raises(UsageError, match="Failed to parse signal string SIGBOGUS."):
            parse_signal("SIGBOGUS")

    def test_property_implies_all(self):
        options = options_from_args(build_parser().parse_intermixed_args(["-p", "Name", "-p", "Id", "show-session"]))
        assert options.properties == ("Name", "Id")
        assert options.show_all

    def test_defaults(self):
        options = options_from_args(build_parser().parse_intermixed_args([]))
        assert options.properties is None
        assert not options.show_all
        assert options.kill_who == "all"
        assert options.signal == signal.SIGTERM

    def test_transports(self):
        assert options_from_args(build_parser().parse_intermixed_args(["-H", "root@box"])).transport == TRANSPORT_SSH
        assert options_from_args(build_parser().parse_intermixed_args(["-P"])).transport == TRANSPORT_POLKIT

    def test_main_unknown_verb(self, capsys):
        assert main(["frobnicate"]) == 1
        assert "error: Unknown operation frobnicate" in capsys.readouterr().err

    def test_main_privileged_unsupported(self, capsys):
        assert main(["-P", "list-sessions"]) == 1
        assert "Privileged operation is not supported." in capsys.readouterr().err

    def test_options_after_arguments(self):
        args = build_parser().parse_intermixed_args(["show-session", "c1", "-p", "Id", "c2"])
        assert args.command == "show-session"
        assert args.args == ["c1", "c2"]
        assert options_from_args(args).properties == ("Id",)

    def test_main_accepts_options_anywhere(self, capsys):
        assert main(["show-session", "c1", "-p", "Id", "-P", "c2"]) == 1
        assert "Privileged operation is not supported." in capsys.readouterr().err
