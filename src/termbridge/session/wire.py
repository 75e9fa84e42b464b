"""Wire protocol: decouples the bridge from whoever watches it.

The orchestrator publishes what happens in a session (transcript turns,
relayed commands, status changes, errors, the program exiting) and any
number of in-process subscribers consume it. The CLI logs every event;
tests subscribe to assert on them.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    TURN = "turn"
    COMMAND = "command"
    STATUS = "status"
    ERROR = "error"
    PTY_EXIT = "pty_exit"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: bridge -> subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_turn(self, speaker: str, text: str) -> None:
        self.send(WireEvent(type=EventType.TURN, data={"speaker": speaker, "text": text}))

    def send_command(self, text: str, context_id: str) -> None:
        self.send(
            WireEvent(
                type=EventType.COMMAND,
                data={"text": text, "context_id": context_id},
            )
        )

    def send_status(self, message: str) -> None:
        self.send(WireEvent(type=EventType.STATUS, data={"message": message}))

    def send_error(self, error: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error}))

    def send_pty_exit(
        self,
        instance: str,
        exit_code: int | None,
        signal_number: int | None = None,
    ) -> None:
        """Notify subscribers that the wrapped program exited."""
        self.send(
            WireEvent(
                type=EventType.PTY_EXIT,
                data={
                    "instance": instance,
                    "exit_code": exit_code,
                    "signal": signal_number,
                },
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        if self._closed:
            return
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
