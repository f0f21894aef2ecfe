"""
Seatbus D-Bus access: the org.freedesktop.login1 manager interface and a
thin facade that turns sdbus failures into TransportError.

Calls are awaited one at a time and have no timeout; a stuck login
manager stalls the client until it is interrupted.
"""

from __future__ import annotations

from typing import Any

from sdbus import (
    DbusInterfaceCommonAsync,
    dbus_method_async,
    sd_bus_open_system,
    sd_bus_open_system_remote,
)
from sdbus.exceptions import SdBusBaseError

from seatbus_errors import TransportError
from seatbus_log import log_debug

LOGIN_SERVICE = "org.freedesktop.login1"
LOGIN_PATH = "/org/freedesktop/login1"
LOGIN_MANAGER = "org.freedesktop.login1.Manager"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"


class LoginManager(DbusInterfaceCommonAsync, interface_name=LOGIN_MANAGER):
    """Client side of org.freedesktop.login1.Manager (only what we call)."""

    @dbus_method_async("", "a(susso)", method_name="ListSessions")
    async def list_sessions(self) -> list[tuple[str, int, str, str, str]]: ...

    @dbus_method_async("", "a(uso)", method_name="ListUsers")
    async def list_users(self) -> list[tuple[int, str, str]]: ...

    @dbus_method_async("", "a(so)", method_name="ListSeats")
    async def list_seats(self) -> list[tuple[str, str]]: ...

    @dbus_method_async("s", "o", method_name="GetSession")
    async def get_session(self, session_id: str) -> str: ...

    @dbus_method_async("u", "o", method_name="GetUser")
    async def get_user(self, uid: int) -> str: ...

    @dbus_method_async("s", "o", method_name="GetSeat")
    async def get_seat(self, seat_id: str) -> str: ...

    @dbus_method_async("s", "", method_name="ActivateSession")
    async def activate_session(self, session_id: str) -> None: ...

    @dbus_method_async("s", "", method_name="LockSession")
    async def lock_session(self, session_id: str) -> None: ...

    @dbus_method_async("s", "", method_name="UnlockSession")
    async def unlock_session(self, session_id: str) -> None: ...

    @dbus_method_async("s", "", method_name="TerminateSession")
    async def terminate_session(self, session_id: str) -> None: ...

    @dbus_method_async("ssi", "", method_name="KillSession")
    async def kill_session(self, session_id: str, who: str, signal: int) -> None: ...

    @dbus_method_async("ubb", "", method_name="SetUserLinger")
    async def set_user_linger(self, uid: int, enable: bool, interactive: bool) -> None: ...

    @dbus_method_async("u", "", method_name="TerminateUser")
    async def terminate_user(self, uid: int) -> None: ...

    @dbus_method_async("ui", "", method_name="KillUser")
    async def kill_user(self, uid: int, signal: int) -> None: ...

    @dbus_method_async("ssb", "", method_name="AttachDevice")
    async def attach_device(self, seat_id: str, sysfs_path: str, interactive: bool) -> None: ...

    @dbus_method_async("b", "", method_name="FlushDevices")
    async def flush_devices(self, interactive: bool) -> None: ...

    @dbus_method_async("s", "", method_name="TerminateSeat")
    async def terminate_seat(self, seat_id: str) -> None: ...


def error_message(e: BaseException) -> str:
    """Best human-readable text out of an sdbus exception."""
    args = e.args
    if len(args) == 1 and isinstance(args[0], tuple):
        args = args[0]
    texts = [a for a in args if isinstance(a, str) and a]
    if texts:
        return texts[-1]
    return type(e).__name__


class LoginBus:
    """The login manager as seen by the verbs.

    Method names follow the D-Bus methods. get_all() returns the raw
    a{sv} reply so it can be decoded without a schema.
    """

    def __init__(self, bus):
        self.bus = bus
        self.manager = LoginManager.new_proxy(LOGIN_SERVICE, LOGIN_PATH, bus)

    @classmethod
    def connect(cls, host: str | None = None) -> "LoginBus":
        """Open the local system bus, or a remote one over SSH."""
        try:
            bus = sd_bus_open_system_remote(host) if host else sd_bus_open_system()
        except (SdBusBaseError, OSError) as e:
            raise TransportError("connect", f"Failed to get D-Bus connection: {error_message(e)}") from e
        return cls(bus)

    async def _call(self, method: str, call, *args) -> Any:
        log_debug(f"call {method} {' '.join(map(str, args))}".rstrip())
        try:
            return await call(*args)
        except SdBusBaseError as e:
            raise TransportError(method, error_message(e)) from e

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def list_sessions(self):
        return await self._call("ListSessions", self.manager.list_sessions)

    async def list_users(self):
        return await self._call("ListUsers", self.manager.list_users)

    async def list_seats(self):
        return await self._call("ListSeats", self.manager.list_seats)

    async def get_session(self, session_id: str) -> str:
        return await self._call("GetSession", self.manager.get_session, session_id)

    async def get_user(self, uid: int) -> str:
        return await self._call("GetUser", self.manager.get_user, uid)

    async def get_seat(self, seat_id: str) -> str:
        return await self._call("GetSeat", self.manager.get_seat, seat_id)

    async def get_all(self, path: str, interface: str = "") -> dict:
        """Properties.GetAll on path; variants come back as (signature, value)."""

        async def call(path: str, interface: str):
            message = self.bus.new_method_call_message(LOGIN_SERVICE, path, PROPERTIES_INTERFACE, "GetAll")
            message.append_data("s", interface)
            reply = await self.bus.call_async(message)
            return reply.get_contents()

        return await self._call("GetAll", call, path, interface)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def activate_session(self, session_id: str):
        await self._call("ActivateSession", self.manager.activate_session, session_id)

    async def lock_session(self, session_id: str):
        await self._call("LockSession", self.manager.lock_session, session_id)

    async def unlock_session(self, session_id: str):
        await self._call("UnlockSession", self.manager.unlock_session, session_id)

    async def terminate_session(self, session_id: str):
        await self._call("TerminateSession", self.manager.terminate_session, session_id)

    async def kill_session(self, session_id: str, who: str, signal: int):
        await self._call("KillSession", self.manager.kill_session, session_id, who, signal)

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def set_user_linger(self, uid: int, enable: bool, interactive: bool = True):
        await self._call("SetUserLinger", self.manager.set_user_linger, uid, enable, interactive)

    async def terminate_user(self, uid: int):
        await self._call("TerminateUser", self.manager.terminate_user, uid)

    async def kill_user(self, uid: int, signal: int):
        await self._call("KillUser", self.manager.kill_user, uid, signal)

    # -------------------------------------------------------------------------
    # Seats
    # -------------------------------------------------------------------------

    async def attach_device(self, seat_id: str, sysfs_path: str, interactive: bool = True):
        await self._call("AttachDevice", self.manager.attach_device, seat_id, sysfs_path, interactive)

    async def flush_devices(self, interactive: bool = True):
        await self._call("FlushDevices", self.manager.flush_devices, interactive)

    async def terminate_seat(self, seat_id: str):
        await self._call("TerminateSeat", self.manager.terminate_seat, seat_id)
