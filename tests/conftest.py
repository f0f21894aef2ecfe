import io
from datetime import timezone

import pytest
from rich.console import Console

import seatbus_log
from seatbus import Context, Options
from seatbus_errors import TransportError, UnknownUserError
from seatbus_format import RenderEnv

# Tue, 03 Jan 2012 13:02:11 UTC, and the same instant 2h 3min later
SESSION_START_USEC = 1325595731 * 1_000_000
NOW = 1325595731 + 2 * 3600 + 3 * 60

USERS = {"lennart": 1000, "bob": 1001}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def console_logging():
    saved = seatbus_log.current_config()
    seatbus_log.configure(seatbus_log.LogConfig())
    yield
    seatbus_log.configure(saved)


# ----------------------------------------------------------------------------
# Fake login manager
# ----------------------------------------------------------------------------

class FakeLogin:
    """Records every call and answers from in-memory tables.

    paths maps ("session", id) / ("user", uid) / ("seat", id) to an object
    path, objects maps an object path to its GetAll reply. Anything listed
    in failing, either a method name or a (method, *args) tuple, raises
    TransportError.
    """

    def __init__(self):
        self.calls = []
        self.sessions = []
        self.users = []
        self.seats = []
        self.paths = {}
        self.objects = {}
        self.failing = set()

    async def _call(self, method, *args):
        self.calls.append((method, *args))
        if method in self.failing or (method, *args) in self.failing:
            raise TransportError(method, f"{method} refused")

    def add_session(self, session_id, reply):
        path = f"/org/freedesktop/login1/session/{session_id}"
        self.paths[("session", session_id)] = path
        self.objects[path] = reply

    def add_user(self, uid, reply):
        path = f"/org/freedesktop/login1/user/_{uid}"
        self.paths[("user", uid)] = path
        self.objects[path] = reply

    def add_seat(self, seat_id, reply):
        path = f"/org/freedesktop/login1/seat/{seat_id}"
        self.paths[("seat", seat_id)] = path
        self.objects[path] = reply

    async def _lookup(self, method, kind, key):
        await self._call(method, key)
        if (kind, key) not in self.paths:
            raise TransportError(method, f"No {kind} '{key}' known")
        return self.paths[(kind, key)]

    async def list_sessions(self):
        await self._call("ListSessions")
        return self.sessions

    async def list_users(self):
        await self._call("ListUsers")
        return self.users

    async def list_seats(self):
        await self._call("ListSeats")
        return self.seats

    async def get_session(self, session_id):
        return await self._lookup("GetSession", "session", session_id)

    async def get_user(self, uid):
        return await self._lookup("GetUser", "user", uid)

    async def get_seat(self, seat_id):
        return await self._lookup("GetSeat", "seat", seat_id)

    async def get_all(self, path, interface=""):
        await self._call("GetAll", path)
        return self.objects.get(path, {})

    async def activate_session(self, session_id):
        await self._call("ActivateSession", session_id)

    async def lock_session(self, session_id):
        await self._call("LockSession", session_id)

    async def unlock_session(self, session_id):
        await self._call("UnlockSession", session_id)

    async def terminate_session(self, session_id):
        await self._call("TerminateSession", session_id)

    async def kill_session(self, session_id, who, signal):
        await self._call("KillSession", session_id, who, signal)

    async def set_user_linger(self, uid, enable, interactive=True):
        await self._call("SetUserLinger", uid, enable, interactive)

    async def terminate_user(self, uid):
        await self._call("TerminateUser", uid)

    async def kill_user(self, uid, signal):
        await self._call("KillUser", uid, signal)

    async def attach_device(self, seat_id, sysfs_path, interactive=True):
        await self._call("AttachDevice", seat_id, sysfs_path, interactive)

    async def flush_devices(self, interactive=True):
        await self._call("FlushDevices", interactive)

    async def terminate_seat(self, seat_id):
        await self._call("TerminateSeat", seat_id)


def fake_resolve_user(name):
    if name.isdigit():
        return int(name)
    if name not in USERS:
        raise UnknownUserError(name)
    return USERS[name]


@pytest.fixture
def login():
    return FakeLogin()


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def make_context(login, output):
    def make(terminal=False, **options):
        return Context(
            login=login,
            options=Options(**options),
            console=Console(file=output, width=200, force_terminal=terminal, color_system=None),
            env=RenderEnv(columns=200, local=False, now=lambda: NOW, tz=timezone.utc),
            resolve_user=fake_resolve_user,
        )
    return make


@pytest.fixture
def ctx(make_context):
    return make_context()
