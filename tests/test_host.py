"""Tests for termbridge.pty.host.HostTerminal using pipes."""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from termbridge.pty.host import HostTerminal


@pytest.fixture
def pipes() -> Iterator[tuple[int, int, int, int]]:
    in_r, in_w = os.pipe()
    out_r, out_w = os.pipe()
    yield in_r, in_w, out_r, out_w
    for fd in (in_r, in_w, out_r, out_w):
        try:
            os.close(fd)
        except OSError:
            pass


class TestHostTerminal:
    def test_write_to_stdout(self, pipes: tuple[int, int, int, int]) -> None:
        in_r, _, out_r, out_w = pipes
        host = HostTerminal(stdin_fd=in_r, stdout_fd=out_w)
        host.write(b"\x1b[31mmirrored\x1b[0m")
        assert os.read(out_r, 1024) == b"\x1b[31mmirrored\x1b[0m"

    def test_pipe_is_not_interactive(self, pipes: tuple[int, int, int, int]) -> None:
        in_r, _, _, out_w = pipes
        assert HostTerminal(stdin_fd=in_r, stdout_fd=out_w).interactive is False

    def test_size(self, pipes: tuple[int, int, int, int]) -> None:
        in_r, _, _, out_w = pipes
        cols, rows = HostTerminal(stdin_fd=in_r, stdout_fd=out_w).size()
        assert cols > 0 and rows > 0

    async def test_input_forwarding_and_ctrl_c(self, pipes: tuple[int, int, int, int]) -> None:
        in_r, in_w, _, out_w = pipes
        host = HostTerminal(stdin_fd=in_r, stdout_fd=out_w)
        forwarded: list[bytes] = []
        interrupts: list[bool] = []
        resizes: list[tuple[int, int]] = []
        host.attach(forwarded.append, lambda: interrupts.append(True), lambda c, r: resizes.append((c, r)))
        try:
            os.write(in_w, b"hello")
            host._on_stdin()
            assert forwarded == [b"hello"]

            os.write(in_w, b"ab\x03cd")
            host._on_stdin()
            assert forwarded == [b"hello", b"ab"]
            assert interrupts == [True]

            host._on_winch()
            assert len(resizes) == 1
        finally:
            host.detach()

    async def test_detach_without_attach(self, pipes: tuple[int, int, int, int]) -> None:
        in_r, _, _, out_w = pipes
        HostTerminal(stdin_fd=in_r, stdout_fd=out_w).detach()
