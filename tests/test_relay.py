"""Tests for termbridge.relay.CommandRelay."""

from __future__ import annotations

import asyncio

from termbridge.config import RelayConfig
from termbridge.errors import RelayWriteError
from termbridge.relay import Command, CommandRelay


class RecordingPty:
    def __init__(self, fail_on: str | None = None) -> None:
        self.writes: list[str] = []
        self.running = True
        self.fail_on = fail_on

    def write(self, data: str) -> None:
        if data == self.fail_on:
            raise RelayWriteError("pty closed")
        self.writes.append(data)


def make_relay(pty: RecordingPty, submit_delay: float = 0.0) -> CommandRelay:
    return CommandRelay(
        write=pty.write,
        is_running=lambda: pty.running,
        config=RelayConfig(submit_delay=submit_delay),
    )


def cmd(text: str) -> Command:
    return Command(text=text, context_id="ctx")


class TestCommand:
    def test_received_at_defaults_to_now(self) -> None:
        assert cmd("x").received_at > 0


class TestRelayOrdering:
    async def test_single_command_keystrokes(self) -> None:
        pty = RecordingPty()
        relay = make_relay(pty)
        relay.submit(cmd("hello"))
        await relay.wait_idle()
        assert pty.writes == ["\x15", "hello", "\r"]
        assert relay.relayed == 1

    async def test_fifo_and_no_interleaving(self) -> None:
        pty = RecordingPty()
        relay = make_relay(pty, submit_delay=0.02)
        for text in ("one", "two", "three"):
            relay.submit(cmd(text))
        assert relay.pending == 3
        await relay.wait_idle()
        assert pty.writes == [
            "\x15", "one", "\r",
            "\x15", "two", "\r",
            "\x15", "three", "\r",
        ]

    async def test_submit_delay_before_enter(self) -> None:
        pty = RecordingPty()
        relay = make_relay(pty, submit_delay=0.1)
        relay.submit(cmd("slow"))
        await asyncio.sleep(0.03)
        assert pty.writes == ["\x15", "slow"]
        await relay.wait_idle()
        assert pty.writes[-1] == "\r"

    async def test_submit_while_draining_is_queued(self) -> None:
        pty = RecordingPty()
        relay = make_relay(pty, submit_delay=0.05)
        relay.submit(cmd("first"))
        await asyncio.sleep(0.01)
        relay.submit(cmd("second"))
        await relay.wait_idle()
        assert pty.writes == ["\x15", "first", "\r", "\x15", "second", "\r"]


class TestStopWord:
    async def test_stop_sends_escape_immediately(self) -> None:
        pty = RecordingPty()
        relay = make_relay(pty)
        relay.submit(cmd("STOP"))
        assert pty.writes == ["\x1b"]
        assert relay.pending == 0
        assert not relay.draining

    async def test_stop_jumps_the_queue(self) -> None:
        pty = RecordingPty()
        relay = make_relay(pty, submit_delay=0.05)
        relay.submit(cmd("long task"))
        relay.submit(cmd("queued"))
        relay.submit(cmd("  STOP  "))
        assert pty.writes == ["\x1b"]
        await relay.wait_idle()
        assert pty.writes == [
            "\x1b",
            "\x15", "long task", "\r",
            "\x15", "queued", "\r",
        ]

    async def test_stop_word_is_exact(self) -> None:
        pty = RecordingPty()
        relay = make_relay(pty)
        relay.submit(cmd("STOP the build"))
        await relay.wait_idle()
        assert pty.writes == ["\x15", "STOP the build", "\r"]

    async def test_custom_stop_word(self) -> None:
        pty = RecordingPty()
        relay = CommandRelay(pty.write, lambda: True, RelayConfig(stop_word="HALT"))
        relay.submit(cmd("HALT"))
        assert pty.writes == ["\x1b"]


class TestRelayFailures:
    async def test_write_error_drops_command_and_continues(self) -> None:
        pty = RecordingPty(fail_on="bad")
        relay = make_relay(pty)
        relay.submit(cmd("bad"))
        relay.submit(cmd("good"))
        await relay.wait_idle()
        assert pty.writes == ["\x15", "\x15", "good", "\r"]
        assert relay.relayed == 1

    async def test_not_running_stops_draining(self) -> None:
        pty = RecordingPty()
        pty.running = False
        relay = make_relay(pty)
        relay.submit(cmd("ignored"))
        await relay.wait_idle()
        assert pty.writes == []
        assert relay.pending == 1

    async def test_close_discards_pending(self) -> None:
        pty = RecordingPty()
        relay = make_relay(pty, submit_delay=0.05)
        relay.submit(cmd("in flight"))
        relay.submit(cmd("discarded"))
        await asyncio.sleep(0)
        relay.close()
        await relay.wait_idle()
        assert pty.writes == ["\x15", "in flight", "\r"]
        relay.submit(cmd("after close"))
        assert relay.pending == 0
