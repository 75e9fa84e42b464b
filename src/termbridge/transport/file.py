"""File mailbox transport.

Commands are written to an input file (one request per save; ``#`` lines
are comments) and transcript batches are appended to an output file with
a timestamp header. Useful for local testing and as the reference
transport implementation.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

import aiofiles

from termbridge.config import FileTransportConfig
from termbridge.errors import TransportInitError, TransportSendError
from termbridge.transport.base import MessageHandler, SetupResult

logger = logging.getLogger(__name__)

INPUT_HEADER = (
    "# Add your command/prompt here\n"
    "# The entire file content will be sent as one request\n"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FileTransport:
    """Input file polled for commands, output file appended with turns."""

    def __init__(self, config: FileTransportConfig | None = None, **options) -> None:
        if config is None:
            config = FileTransportConfig(**options)
        self.config = config
        self.input_path = Path(config.input_path).expanduser().resolve()
        self.output_path = Path(config.output_path).expanduser().resolve()
        self.context_id: str | None = None
        self._handler: MessageHandler | None = None
        self._poll_task: asyncio.Task | None = None

    async def init(self) -> None:
        try:
            self.input_path.parent.mkdir(parents=True, exist_ok=True)
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            if not self.input_path.exists():
                await self._reset_input()
            async with aiofiles.open(self.output_path, "w", encoding="utf-8") as f:
                await f.write(f"# termbridge output - {_now()}\n\n")
        except OSError as e:
            raise TransportInitError(f"Cannot prepare mailbox files: {e}") from e

    async def setup(self, instance_name: str) -> SetupResult:
        self.context_id = f"file-{instance_name}"
        await self._reset_input()
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())
        return SetupResult(
            context_id=self.context_id,
            display_name=f"File Transport ({self.input_path} -> {self.output_path})",
        )

    def on_message(self, handler: MessageHandler) -> None:
        self._handler = handler

    async def send_message(self, context_id: str, text: str) -> None:
        try:
            async with aiofiles.open(self.output_path, "a", encoding="utf-8") as f:
                await f.write(f"[{_now()}]\n{text}\n\n")
        except OSError as e:
            raise TransportSendError(f"Cannot append to {self.output_path}: {e}") from e

    async def cleanup(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        try:
            async with aiofiles.open(self.output_path, "a", encoding="utf-8") as f:
                await f.write(f"\n# Session ended - {_now()}\n")
        except OSError as e:
            logger.debug("Could not write session end marker: %s", e)

    def get_init_tips(self) -> list[str]:
        return [
            f"Input:  {self._display(self.input_path)}",
            f"Output: {self._display(self.output_path)}",
        ]

    # -- polling ------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.poll_interval)
            try:
                await self.check_input()
            except OSError as e:
                logger.warning("Error polling input file: %s", e)

    async def check_input(self) -> str | None:
        """Deliver pending input as one command. Returns what was delivered."""
        if not self.input_path.exists():
            return None
        try:
            async with aiofiles.open(self.input_path, "r", encoding="utf-8", errors="replace") as f:
                content = await f.read()
        except OSError as e:
            logger.warning("Error reading input file %s: %s", self.input_path, e)
            return None

        command = "\n".join(
            line
            for line in content.strip().split("\n")
            if line.strip() and not line.strip().startswith("#")
        ).strip()
        if not command:
            return None

        await self._reset_input()
        if self._handler is not None and self.context_id is not None:
            try:
                self._handler(self.context_id, command)
            except Exception:
                logger.exception("Message handler failed")
        return command

    async def _reset_input(self) -> None:
        async with aiofiles.open(self.input_path, "w", encoding="utf-8") as f:
            await f.write(INPUT_HEADER)

    @staticmethod
    def _display(path: Path) -> str:
        try:
            return str(path.relative_to(Path.cwd().resolve()))
        except ValueError:
            return str(path)
