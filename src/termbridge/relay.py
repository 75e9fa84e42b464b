"""Command relay: types inbound messages into the wrapped program.

Commands are relayed strictly one at a time in arrival order. Each one is
typed the way a person would: clear whatever is on the input line, type the
text, pause so the program's line editor catches up, then press Enter. The
stop word skips the queue and sends the interrupt key straight away.
"""

from __future__ import annotations

import asyncio
import collections
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from termbridge.config import RelayConfig
from termbridge.errors import RelayWriteError

logger = logging.getLogger(__name__)

WriteFn = Callable[[str], None]


@dataclass(frozen=True)
class Command:
    """Text received from a transport, addressed to a session context."""

    text: str
    context_id: str
    received_at: float = field(default_factory=time.time)


class CommandRelay:
    """FIFO, single-flight keystroke relay.

    ``write`` sends keystrokes to the PTY and may raise RelayWriteError.
    ``is_running`` reports whether the session still accepts input; the
    drain loop stops as soon as it returns False.
    """

    def __init__(
        self,
        write: WriteFn,
        is_running: Callable[[], bool],
        config: RelayConfig | None = None,
    ) -> None:
        self.config = config or RelayConfig()
        self._write = write
        self._is_running = is_running
        self._queue: collections.deque[Command] = collections.deque()
        self._drain_task: asyncio.Task | None = None
        self._closed = False
        self.relayed = 0

    def submit(self, command: Command) -> None:
        """Accept a command. Must be called from the event loop thread."""
        if self._closed:
            logger.debug("Relay closed, dropping command %r", command.text[:40])
            return

        if command.text.strip() == self.config.stop_word:
            logger.info("Stop word received, interrupting")
            try:
                self._write(self.config.interrupt_key)
            except RelayWriteError as e:
                logger.error("Failed to send interrupt: %s", e)
            return

        self._queue.append(command)
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._queue and not self._closed:
            if not self._is_running():
                logger.debug("Session not running, %d command(s) left queued", len(self._queue))
                return
            command = self._queue.popleft()
            try:
                await self._relay(command)
            except RelayWriteError as e:
                logger.error("Dropping command %r: %s", command.text[:40], e)
                continue
            self.relayed += 1

    async def _relay(self, command: Command) -> None:
        cfg = self.config
        logger.debug("Relaying command (%d chars)", len(command.text))
        self._write(cfg.clear_line_key)
        self._write(command.text)
        await asyncio.sleep(cfg.submit_delay)
        self._write(cfg.submit_key)

    def close(self) -> None:
        """Discard queued commands. A command already being typed finishes."""
        self._closed = True
        if self._queue:
            logger.debug("Discarding %d queued command(s)", len(self._queue))
        self._queue.clear()

    async def wait_idle(self) -> None:
        """Wait for the active drain (if any) to finish."""
        task = self._drain_task
        if task is not None and not task.done():
            await task

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()
