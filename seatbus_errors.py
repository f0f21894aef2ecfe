"""
Seatbus errors.

Every failure a verb can hit maps to one of these. Handlers raise them,
the batch helper and main() catch SeatbusError and report one line.
"""

from __future__ import annotations


class SeatbusError(Exception):
    """Base class for all seatbus failures."""


class UsageError(SeatbusError):
    """Unknown verb, wrong argument count, unusable option."""


class TransportError(SeatbusError):
    """A D-Bus call failed to send or came back as an error."""

    def __init__(self, method: str, message: str):
        super().__init__(f"Failed to issue method call: {message}")
        self.method = method
        self.remote_message = message


class MalformedReplyError(SeatbusError):
    """A reply did not have the shape we expected."""

    def __init__(self, detail: str | None = None):
        super().__init__("Failed to parse reply.")
        self.detail = detail


class UnknownUserError(SeatbusError, LookupError):
    """A user name did not resolve to a uid."""

    def __init__(self, user: str):
        super().__init__(f"User {user} unknown.")
        self.user = user
