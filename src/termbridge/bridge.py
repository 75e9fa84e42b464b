"""Bridge orchestrator: one wrapped program, one transport, one session.

Wiring::

    PTYProcess --bytes--> HostTerminal (mirror, unmodified)
               \\-------> FlushScheduler --batch--> ConversationExtractor
                                                      |
                                       rendered turns v
                                                    outbox --> Transport.send_message

    Transport.on_message --> context check --> CommandRelay --> PTYProcess.write
    HostTerminal keystrokes -------------------------------> PTYProcess.write

Sends run in a dedicated task so output handling never waits on the
network. A transport that fails to come up leaves the session running in
pass-through mode: the program is still usable from the host terminal, it
just isn't bridged anywhere.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Any

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from termbridge.config import BridgeConfig
from termbridge.conversation import ConversationExtractor, render_turns
from termbridge.errors import (
    ProcessStartError,
    RelayWriteError,
    TransportInitError,
    TransportSendError,
)
from termbridge.pty import FlushScheduler, HostTerminal, PTYProcess
from termbridge.relay import Command, CommandRelay
from termbridge.session.wire import Wire
from termbridge.transport import Transport, create_transport, init_tips
from termbridge.transport.base import coerce_setup_result

logger = logging.getLogger(__name__)

STARTED_MESSAGE = "🟢 Instance started: {name}"
TERMINATED_MESSAGE = "🔴 Instance terminated: {name}"


@dataclass
class Session:
    """Runtime state of one bridged program."""

    instance_name: str
    context_id: str | None = None  # None when the transport is unavailable
    display_name: str = ""
    running: bool = False
    started_at: float | None = None
    stopped_at: float | None = None
    exit_code: int | None = None
    exit_signal: int | None = None

    @property
    def bridged(self) -> bool:
        return self.context_id is not None


def transport_options(config: BridgeConfig) -> dict[str, Any]:
    """Constructor options for the configured transport."""
    if config.transport == "file":
        return {**config.file.model_dump(), **config.transport_options}
    return dict(config.transport_options)


def build_transport(config: BridgeConfig) -> Transport:
    """Create the configured transport.

    Raises:
        TransportInitError: the transport cannot be created.
    """
    return create_transport(config.transport, transport_options(config))


@retry(
    retry=retry_if_exception_type((TransportSendError, ConnectionError, TimeoutError, OSError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _send_with_retry(transport: Transport, context_id: str, text: str) -> None:
    """Call transport.send_message with retry on transient errors."""
    await transport.send_message(context_id, text)


class BridgeOrchestrator:
    """Composes process, host terminal, scheduler, extractor, relay and transport.

    ``transport``, ``process`` and ``host`` may be injected; otherwise they
    are built from ``config``.
    """

    def __init__(
        self,
        config: BridgeConfig | None = None,
        transport: Transport | None = None,
        process: PTYProcess | None = None,
        host: HostTerminal | None = None,
        wire: Wire | None = None,
    ) -> None:
        self.config = config or BridgeConfig()
        self.transport = transport
        self.host = host if host is not None else HostTerminal()
        self.wire = wire or Wire()
        self.session = Session(instance_name=self.config.instance)

        if process is None:
            host_cols, host_rows = self.host.size()
            process = PTYProcess(
                cwd=self.config.cwd or os.getcwd(),
                cols=self.config.cols or host_cols,
                rows=self.config.rows or host_rows,
                mirror=self.host.write,
            )
        self.process = process

        self.extractor = ConversationExtractor(self.config.extractor)
        self.scheduler = FlushScheduler(self._on_flush, self.config.scheduler)
        self.relay = CommandRelay(
            write=self.process.write,
            is_running=lambda: self.session.running,
            config=self.config.relay,
        )

        self._outbox: asyncio.Queue[str | None] = asyncio.Queue()
        self._sender_task: asyncio.Task | None = None
        self._stop_task: asyncio.Task | None = None
        self._done = asyncio.Event()
        self._started = False
        self._transport_inited = False
        self._stopping = False

    # -- lifecycle ------------------------------------------------------------

    async def start(self) -> Session:
        """Bring up the transport, spawn the program and attach the host terminal.

        Raises:
            ProcessStartError: the program could not be launched. The
                transport is cleaned up before the error propagates.
        """
        if self._started:
            return self.session
        self._started = True
        name = self.session.instance_name

        await self._start_transport()
        self._sender_task = asyncio.create_task(self._send_loop())
        if self.session.bridged:
            self._enqueue(STARTED_MESSAGE.format(name=name))

        self.process.set_on_output(self._on_output)
        self.process.set_on_exit(self._on_exit)
        self.process.set_on_error(self._on_process_error)
        try:
            await self.process.start(self.config.command, self.config.args)
        except ProcessStartError:
            self._stopping = True
            await self._cancel_sender()
            await self._cleanup_transport()
            self.wire.close()
            self._done.set()
            raise

        self.session.running = True
        self.session.started_at = time.time()
        self.host.attach(
            on_input=self._on_host_input,
            on_interrupt=self._request_stop,
            on_resize=self.process.resize,
        )
        mode = "bridged" if self.session.bridged else "pass-through"
        logger.info("Session %s started (%s)", name, mode)
        self.wire.send_status(f"started ({mode})")
        return self.session

    async def _start_transport(self) -> None:
        try:
            if self.transport is None:
                self.transport = build_transport(self.config)
            await self.transport.init()
            self._transport_inited = True
            result = coerce_setup_result(await self.transport.setup(self.session.instance_name))
            self.transport.on_message(self._on_message)
        except Exception as e:
            error = e if isinstance(e, TransportInitError) else TransportInitError(str(e))
            logger.error("Transport unavailable, running in pass-through mode: %s", error)
            self.wire.send_error(f"transport: {error}")
            return
        self.session.context_id = result.context_id
        self.session.display_name = result.display_name
        logger.info("Transport ready: %s", result.display_name)

    async def stop(self) -> None:
        """Shut the session down. Safe to call more than once."""
        if not self._started:
            return
        if self._stopping:
            await self._done.wait()
            return
        self._stopping = True
        self.session.running = False
        name = self.session.instance_name

        self.scheduler.close()
        self.relay.close()
        if self.session.bridged:
            self._enqueue(TERMINATED_MESSAGE.format(name=name))
        await self._close_outbox(timeout=self.config.shutdown_timeout)

        await self.process.stop()
        self.host.detach()
        await self._cleanup_transport()

        self.session.stopped_at = time.time()
        logger.info("Session %s stopped", name)
        self.wire.send_status("stopped")
        self.wire.close()
        self._done.set()

    def _request_stop(self) -> None:
        if self._stopping or self._stop_task is not None:
            return
        self._stop_task = asyncio.get_running_loop().create_task(self.stop())

    async def wait(self) -> int | None:
        """Wait for the session to end. Returns the program's exit code."""
        await self._done.wait()
        return self.session.exit_code

    def init_tips(self) -> list[str]:
        if self.transport is None:
            return []
        return init_tips(self.transport)

    @property
    def running(self) -> bool:
        return self.session.running

    # -- outbound -------------------------------------------------------------

    def _on_output(self, data: bytes) -> None:
        self.scheduler.feed(data)

    def _on_flush(self, batch: str) -> None:
        turns = self.extractor.feed(batch)
        if not turns:
            return
        for turn in turns:
            self.wire.send_turn(turn.speaker.value, turn.text)
        if self.session.bridged:
            self._enqueue(render_turns(turns))

    def _enqueue(self, text: str) -> None:
        self._outbox.put_nowait(text)

    async def _send_loop(self) -> None:
        while True:
            text = await self._outbox.get()
            if text is None:
                return
            context_id = self.session.context_id
            if self.transport is None or context_id is None:
                continue
            try:
                await _send_with_retry(self.transport, context_id, text)
            except Exception as e:
                error = TransportSendError(f"Dropping message ({len(text)} chars): {e}")
                logger.error("%s", error)
                self.wire.send_error(str(error))

    async def _close_outbox(self, timeout: float) -> None:
        """Let the sender finish what is queued, then end it."""
        task, self._sender_task = self._sender_task, None
        if task is None:
            return
        self._outbox.put_nowait(None)
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Outbox not drained within %.1fs, dropping the rest", timeout)

    async def _cancel_sender(self) -> None:
        task, self._sender_task = self._sender_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_transport(self) -> None:
        if self.transport is None or not self._transport_inited:
            return
        try:
            await self.transport.cleanup()
        except Exception:
            logger.warning("Transport cleanup failed", exc_info=True)

    # -- inbound --------------------------------------------------------------

    def _on_message(self, context_id: str, text: str) -> None:
        if not self.session.running:
            logger.debug("Session not running, ignoring message")
            return
        if context_id != self.session.context_id:
            logger.warning(
                "Ignoring message for context %r (session is %r)",
                context_id,
                self.session.context_id,
            )
            return
        self.wire.send_command(text, context_id)
        self.relay.submit(Command(text=text, context_id=context_id))

    def _on_host_input(self, data: bytes) -> None:
        try:
            self.process.write(data)
        except RelayWriteError as e:
            logger.debug("Dropped host input: %s", e)

    # -- process events -------------------------------------------------------

    def _on_exit(self, code: int | None, sig: int | None) -> None:
        self.session.exit_code = code
        self.session.exit_signal = sig
        logger.info("Program exited (code=%s signal=%s)", code, sig)
        self.wire.send_pty_exit(self.session.instance_name, code, sig)
        self._request_stop()

    def _on_process_error(self, error: Exception) -> None:
        self.wire.send_error(str(error))
