"""Tests for termbridge.transport.file.FileTransport."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from termbridge.config import FileTransportConfig
from termbridge.errors import TransportInitError
from termbridge.transport import Transport
from termbridge.transport.file import INPUT_HEADER, FileTransport


def make_transport(tmp_path: Path) -> FileTransport:
    return FileTransport(
        FileTransportConfig(
            input_path=str(tmp_path / "in" / "input.txt"),
            output_path=str(tmp_path / "out" / "output.txt"),
            poll_interval=60.0,
        )
    )


class TestFileTransportLifecycle:
    def test_satisfies_protocol(self, tmp_path: Path) -> None:
        assert isinstance(make_transport(tmp_path), Transport)

    def test_options_as_keywords(self, tmp_path: Path) -> None:
        transport = FileTransport(input_path=str(tmp_path / "a.txt"), poll_interval=1.0)
        assert transport.input_path == (tmp_path / "a.txt").resolve()
        assert transport.config.poll_interval == 1.0

    async def test_init_creates_files(self, tmp_path: Path) -> None:
        transport = make_transport(tmp_path)
        await transport.init()
        assert transport.input_path.read_text() == INPUT_HEADER
        assert transport.output_path.read_text().startswith("# termbridge output - ")

    async def test_init_keeps_existing_input(self, tmp_path: Path) -> None:
        transport = make_transport(tmp_path)
        transport.input_path.parent.mkdir(parents=True)
        transport.input_path.write_text("queued before start\n")
        await transport.init()
        assert transport.input_path.read_text() == "queued before start\n"

    async def test_init_failure(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        transport = FileTransport(
            FileTransportConfig(
                input_path=str(blocker / "input.txt"),
                output_path=str(tmp_path / "output.txt"),
            )
        )
        with pytest.raises(TransportInitError):
            await transport.init()

    async def test_setup_binds_context(self, tmp_path: Path) -> None:
        transport = make_transport(tmp_path)
        await transport.init()
        result = await transport.setup("demo")
        try:
            assert result.context_id == "file-demo"
            assert "File Transport" in result.display_name
            assert transport.input_path.read_text() == INPUT_HEADER
        finally:
            await transport.cleanup()

    async def test_cleanup_appends_marker(self, tmp_path: Path) -> None:
        transport = make_transport(tmp_path)
        await transport.init()
        await transport.setup("demo")
        await transport.cleanup()
        assert "# Session ended - " in transport.output_path.read_text()


class TestFileTransportMessages:
    async def test_send_message_appends_with_timestamp(self, tmp_path: Path) -> None:
        transport = make_transport(tmp_path)
        await transport.init()
        await transport.send_message("file-demo", "User: hi\n")
        await transport.send_message("file-demo", "Agent: hello\n")
        content = transport.output_path.read_text()
        assert "]\nUser: hi\n\n\n[" in content
        assert content.endswith("Agent: hello\n\n\n")
        assert content.count("[20") == 2

    async def test_input_delivered_as_one_command(self, tmp_path: Path) -> None:
        transport = make_transport(tmp_path)
        received: list[tuple[str, str]] = []
        transport.on_message(lambda ctx, text: received.append((ctx, text)))
        await transport.init()
        await transport.setup("demo")
        try:
            transport.input_path.write_text(INPUT_HEADER + "fix the tests\n# note\nthen commit\n\n")
            delivered = await transport.check_input()
            assert delivered == "fix the tests\nthen commit"
            assert received == [("file-demo", "fix the tests\nthen commit")]
            assert transport.input_path.read_text() == INPUT_HEADER
        finally:
            await transport.cleanup()

    async def test_comments_only_input_ignored(self, tmp_path: Path) -> None:
        transport = make_transport(tmp_path)
        received: list[tuple[str, str]] = []
        transport.on_message(lambda ctx, text: received.append((ctx, text)))
        await transport.init()
        await transport.setup("demo")
        try:
            assert await transport.check_input() is None
            assert received == []
        finally:
            await transport.cleanup()

    async def test_handler_error_does_not_break_polling(self, tmp_path: Path) -> None:
        transport = make_transport(tmp_path)

        def broken(ctx: str, text: str) -> None:
            raise RuntimeError("handler failed")

        transport.on_message(broken)
        await transport.init()
        await transport.setup("demo")
        try:
            transport.input_path.write_text("hello\n")
            assert await transport.check_input() == "hello"
            assert transport.input_path.read_text() == INPUT_HEADER
        finally:
            await transport.cleanup()


class TestFileTransportTips:
    def test_tips_relative_to_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        transport = FileTransport(input_path="input.txt", output_path="logs/output.txt")
        assert transport.get_init_tips() == [
            "Input:  input.txt",
            "Output: logs/output.txt",
        ]

    def test_tips_absolute_outside_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        work = tmp_path / "work"
        work.mkdir()
        monkeypatch.chdir(work)
        outside = (tmp_path / "elsewhere.txt").resolve()
        transport = FileTransport(input_path=str(outside))
        assert transport.get_init_tips()[0] == f"Input:  {outside}"


class TestFileTransportPolling:
    async def test_poll_loop_delivers_input(self, tmp_path: Path) -> None:
        transport = FileTransport(
            input_path=str(tmp_path / "input.txt"),
            output_path=str(tmp_path / "output.txt"),
            poll_interval=0.02,
        )
        received: list[tuple[str, str]] = []
        transport.on_message(lambda ctx, text: received.append((ctx, text)))
        await transport.init()
        await transport.setup("poller")
        try:
            transport.input_path.write_text("run the linter\n")
            for _ in range(100):
                if received:
                    break
                await asyncio.sleep(0.02)
            assert received == [("file-poller", "run the linter")]
        finally:
            await transport.cleanup()

    async def test_undecodable_input_does_not_stop_polling(self, tmp_path: Path) -> None:
        transport = FileTransport(
            input_path=str(tmp_path / "input.txt"),
            output_path=str(tmp_path / "output.txt"),
            poll_interval=0.02,
        )
        received: list[str] = []
        transport.on_message(lambda ctx, text: received.append(text))
        await transport.init()
        await transport.setup("poller")
        try:
            transport.input_path.write_bytes(b"bad \xff\xfe bytes\n")
            for _ in range(100):
                if received:
                    break
                await asyncio.sleep(0.02)
            assert received == ["bad \ufffd\ufffd bytes"]

            transport.input_path.write_text("hello\n")
            for _ in range(100):
                if len(received) == 2:
                    break
                await asyncio.sleep(0.02)
            assert received[1:] == ["hello"]
            assert transport._poll_task is not None
            assert not transport._poll_task.done()
        finally:
            await transport.cleanup()
