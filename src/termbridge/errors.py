"""Exception taxonomy for termbridge.

Only ``ProcessStartError`` is fatal to a session. Everything else is logged
by the component that catches it and the affected unit (a message, a
command, a line of output) is dropped.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for termbridge errors."""


class ProcessStartError(BridgeError):
    """The wrapped program could not be launched in a PTY."""

    def __init__(self, command: list[str], reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start {' '.join(command)!r}: {reason}")


class TransportInitError(BridgeError):
    """A transport failed to initialize or bind a context.

    The session still runs, in pass-through mode only.
    """


class TransportSendError(BridgeError):
    """A message could not be delivered to the transport."""


class ParseAnomaly(BridgeError):
    """A line of terminal output had a shape the extractor cannot use."""


class RelayWriteError(BridgeError):
    """Writing keystrokes to the PTY failed."""
