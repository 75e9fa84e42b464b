"""PTY process: the wrapped program running in a pseudo-terminal."""

from __future__ import annotations

import asyncio
import enum
import fcntl
import functools
import logging
import os
import pty
import select
import signal
import struct
import subprocess
import termios
from dataclasses import dataclass, field
from typing import Callable

from termbridge.errors import ProcessStartError, RelayWriteError

logger = logging.getLogger(__name__)

OutputCallback = Callable[[bytes], None]
ExitCallback = Callable[["int | None", "int | None"], None]
ErrorCallback = Callable[[Exception], None]

READ_SIZE = 4096


class PTYStatus(enum.Enum):
    """Lifecycle states for a PTY process."""

    IDLE = "idle"  # Not started yet
    RUNNING = "running"
    STOPPING = "stopping"  # stop() requested, waiting for the process to die
    STOPPED = "stopped"  # Stopped by us
    EXITED = "exited"  # Process exited on its own


def set_winsize(fd: int, cols: int, rows: int) -> None:
    """Set the window size of the terminal behind ``fd``."""
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


@dataclass
class PTYProcess:
    """One program attached to a pseudo-terminal.

    - Spawned with subprocess.Popen in its own session/process group, so
      stop() can signal the whole tree
    - Output is read when the master fd becomes readable (loop.add_reader),
      never with a blocking read on the event loop
    - Every chunk goes to ``mirror`` (the host terminal) and to the output
      callback, in that order
    - The exit callback fires exactly once, whether the program exits on
      its own or is stopped
    """

    cwd: str = field(default_factory=os.getcwd)
    env: dict[str, str] = field(default_factory=dict)
    cols: int = 80
    rows: int = 24
    term: str = "xterm-256color"
    mirror: OutputCallback | None = None
    stop_timeout: float = 2.0

    command: list[str] = field(default_factory=list, init=False)
    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _pgid: int = field(default=0, init=False)
    _status: PTYStatus = field(default=PTYStatus.IDLE, init=False)
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False)
    _reaper: asyncio.Task | None = field(default=None, init=False)
    _exited: asyncio.Event | None = field(default=None, init=False)
    _exit_reported: bool = field(default=False, init=False)
    _on_output: OutputCallback | None = field(default=None, init=False)
    _on_exit: ExitCallback | None = field(default=None, init=False)
    _on_error: ErrorCallback | None = field(default=None, init=False)

    def set_on_output(self, callback: OutputCallback) -> None:
        self._on_output = callback

    def set_on_exit(self, callback: ExitCallback) -> None:
        """Set the callback receiving ``(exit_code, signal_number)``.

        One of the two is None: a program killed by a signal has no exit
        code and vice versa.
        """
        self._on_exit = callback

    def set_on_error(self, callback: ErrorCallback) -> None:
        self._on_error = callback

    async def start(self, command: str, args: list[str] | None = None) -> None:
        """Spawn ``command`` in a new PTY sized ``cols`` x ``rows``.

        Raises:
            ProcessStartError: the executable could not be launched.
        """
        if self._status is PTYStatus.RUNNING:
            return

        argv = [command, *(args or [])]
        master_fd, slave_fd = pty.openpty()
        try:
            set_winsize(slave_fd, self.cols, self.rows)
        except OSError as e:
            logger.debug("Could not set initial winsize: %s", e)

        env = {**os.environ, **self.env}
        env["TERM"] = self.term

        try:
            self._proc = subprocess.Popen(
                argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                env=env,
                cwd=self.cwd,
            )
        except OSError as e:
            os.close(master_fd)
            error = ProcessStartError(argv, str(e))
            logger.error("%s", error)
            if self._on_error:
                self._on_error(error)
            raise error from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        self.command = argv
        self._master_fd = master_fd
        self._pgid = os.getpgid(self._proc.pid)
        self._status = PTYStatus.RUNNING
        self._exit_reported = False
        self._exited = asyncio.Event()
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(master_fd, self._on_readable)

        logger.info(
            "PTY process started: pid=%d pgid=%d size=%dx%d cmd=%s",
            self._proc.pid,
            self._pgid,
            self.cols,
            self.rows,
            " ".join(argv),
        )

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, READ_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO: the slave side closed, i.e. the program is gone
            data = b""

        if not data:
            self._detach_reader()
            if self._status is PTYStatus.RUNNING and self._loop is not None:
                self._reaper = self._loop.create_task(self._reap())
            return

        if self.mirror is not None:
            try:
                self.mirror(data)
            except OSError as e:
                logger.debug("Mirror write failed: %s", e)
        if self._on_output is not None:
            try:
                self._on_output(data)
            except Exception:
                logger.exception("Error in output callback")

    def _detach_reader(self) -> None:
        if self._loop is not None and self._master_fd >= 0:
            try:
                self._loop.remove_reader(self._master_fd)
            except (ValueError, OSError):
                pass

    async def _reap(self) -> None:
        """Wait for the exited program and report its status."""
        if self._proc is None or self._loop is None:
            return
        returncode = await self._loop.run_in_executor(None, self._proc.wait)
        if self._status is PTYStatus.RUNNING:
            self._status = PTYStatus.EXITED
            self._close_fd()
            logger.info("PTY process exited (code=%s)", returncode)
        self._report_exit(returncode)

    def _report_exit(self, returncode: int | None) -> None:
        if self._exit_reported:
            return
        self._exit_reported = True
        if self._exited is not None:
            self._exited.set()
        if self._on_exit is None:
            return
        if returncode is not None and returncode < 0:
            code, sig = None, -returncode
        else:
            code, sig = returncode, None
        try:
            self._on_exit(code, sig)
        except Exception:
            logger.exception("Error in exit callback")

    def write(self, data: bytes | str) -> None:
        """Write keystrokes to the program.

        Dropped when the program is not running.

        Raises:
            RelayWriteError: the PTY rejected the write.
        """
        if self._status is not PTYStatus.RUNNING:
            logger.debug("PTY not running, dropping %d bytes of input", len(data))
            return
        if isinstance(data, str):
            data = data.encode("utf-8")

        view = memoryview(data)
        while view:
            try:
                written = os.write(self._master_fd, view)
            except BlockingIOError:
                select.select([], [self._master_fd], [], 1.0)
                continue
            except OSError as e:
                raise RelayWriteError(f"PTY write failed: {e}") from e
            view = view[written:]

    def resize(self, cols: int, rows: int) -> None:
        """Propagate a terminal size change and notify the program."""
        self.cols, self.rows = cols, rows
        if self._status is not PTYStatus.RUNNING:
            return
        try:
            set_winsize(self._master_fd, cols, rows)
            os.killpg(self._pgid, signal.SIGWINCH)
        except OSError as e:
            logger.debug("Resize to %dx%d failed: %s", cols, rows, e)

    async def stop(self) -> None:
        """Terminate the process group; escalate to SIGKILL if it lingers."""
        if self._status is not PTYStatus.RUNNING:
            return

        self._status = PTYStatus.STOPPING
        self._detach_reader()
        returncode: int | None = None
        try:
            os.killpg(self._pgid, signal.SIGTERM)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error terminating PTY process: %s", e)

        if self._proc is not None:
            loop = asyncio.get_running_loop()
            try:
                returncode = await loop.run_in_executor(
                    None, functools.partial(self._proc.wait, timeout=self.stop_timeout)
                )
            except subprocess.TimeoutExpired:
                logger.warning("PTY process ignored SIGTERM, killing pgid=%d", self._pgid)
                try:
                    os.killpg(self._pgid, signal.SIGKILL)
                except ProcessLookupError:
                    pass
                returncode = await loop.run_in_executor(None, self._proc.wait)

        self._close_fd()
        self._status = PTYStatus.STOPPED
        logger.info("PTY process stopped (code=%s)", returncode)
        self._report_exit(returncode)

    def _close_fd(self) -> None:
        if self._master_fd < 0:
            return
        self._detach_reader()
        try:
            os.close(self._master_fd)
        except OSError:
            pass
        self._master_fd = -1

    async def wait(self) -> None:
        """Wait until the exit has been reported."""
        if self._exited is None:
            return
        await self._exited.wait()

    @property
    def running(self) -> bool:
        return self._status is PTYStatus.RUNNING

    @property
    def status(self) -> PTYStatus:
        return self._status

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc else None
