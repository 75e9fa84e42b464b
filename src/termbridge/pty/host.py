"""Host terminal: the real terminal the bridge itself runs in.

The wrapped program's output is written here unmodified so a person at the
keyboard sees the normal session, and their keystrokes are forwarded to the
PTY byte for byte. Ctrl+C is kept local: it shuts the bridge down.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import sys
import termios
import tty
from typing import Any, Callable

logger = logging.getLogger(__name__)

INTERRUPT_KEY = b"\x03"


class HostTerminal:
    """Raw-mode stdin forwarding, stdout mirroring and resize notification."""

    def __init__(self, stdin_fd: int | None = None, stdout_fd: int | None = None) -> None:
        self.stdin_fd = sys.stdin.fileno() if stdin_fd is None else stdin_fd
        self.stdout_fd = sys.stdout.fileno() if stdout_fd is None else stdout_fd
        self._saved_attrs: list[Any] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reading = False
        self._winch_installed = False
        self._on_input: Callable[[bytes], None] | None = None
        self._on_interrupt: Callable[[], None] | None = None
        self._on_resize: Callable[[int, int], None] | None = None

    @property
    def interactive(self) -> bool:
        return os.isatty(self.stdin_fd)

    def size(self) -> tuple[int, int]:
        """Current ``(cols, rows)``; 80x24 when it cannot be determined."""
        size = shutil.get_terminal_size((80, 24))
        return size.columns, size.lines

    def write(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            try:
                written = os.write(self.stdout_fd, view)
            except BlockingIOError:
                continue
            except OSError as e:
                logger.debug("Host stdout write failed: %s", e)
                return
            view = view[written:]

    def attach(
        self,
        on_input: Callable[[bytes], None],
        on_interrupt: Callable[[], None],
        on_resize: Callable[[int, int], None],
    ) -> None:
        """Start forwarding. Must be called from the event loop thread."""
        self._loop = asyncio.get_running_loop()
        self._on_input = on_input
        self._on_interrupt = on_interrupt
        self._on_resize = on_resize

        if self.interactive:
            self._saved_attrs = termios.tcgetattr(self.stdin_fd)
            tty.setraw(self.stdin_fd)
            self._loop.add_reader(self.stdin_fd, self._on_stdin)
            self._reading = True

        try:
            self._loop.add_signal_handler(signal.SIGWINCH, self._on_winch)
            self._winch_installed = True
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug("SIGWINCH handler not installed: %s", e)

    def _on_stdin(self) -> None:
        try:
            data = os.read(self.stdin_fd, 4096)
        except OSError as e:
            logger.debug("Host stdin read failed: %s", e)
            data = b""
        if not data:
            self._stop_reading()
            return

        if INTERRUPT_KEY in data:
            before = data.split(INTERRUPT_KEY, 1)[0]
            if before and self._on_input:
                self._on_input(before)
            logger.info("Ctrl+C on host terminal, shutting down")
            if self._on_interrupt:
                self._on_interrupt()
            return

        if self._on_input:
            self._on_input(data)

    def _on_winch(self) -> None:
        cols, rows = self.size()
        logger.debug("Host terminal resized to %dx%d", cols, rows)
        if self._on_resize:
            self._on_resize(cols, rows)

    def _stop_reading(self) -> None:
        if self._reading and self._loop is not None:
            self._loop.remove_reader(self.stdin_fd)
        self._reading = False

    def detach(self) -> None:
        """Stop forwarding and restore the terminal mode."""
        self._stop_reading()
        if self._winch_installed and self._loop is not None:
            self._loop.remove_signal_handler(signal.SIGWINCH)
            self._winch_installed = False
        if self._saved_attrs is not None:
            try:
                termios.tcsetattr(self.stdin_fd, termios.TCSADRAIN, self._saved_attrs)
            except termios.error as e:
                logger.debug("Could not restore terminal mode: %s", e)
            self._saved_attrs = None
