"""Terminal text cleanup: ANSI escape and control character removal."""

from __future__ import annotations

import re

# CSI: ESC [ params intermediates final  (colors, cursor moves, clears, modes)
_CSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
# OSC: ESC ] ... terminated by BEL or ST (ESC \)
_OSC_RE = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)?")
# Two-byte escapes: ESC 7, ESC 8, ESC =, ESC >, ESC ( B ...
_ESC_RE = re.compile(r"\x1b(?:[()][0-9A-Za-z]|[@-Z\\-_=>78])")
# CSI remnants whose ESC byte was already lost (e.g. "[2K", "[1A", "[G")
_ORPHAN_CSI_RE = re.compile(r"\[(?:\d+(?:;\d+)*[ABCDHJK]|G)(?![A-Za-z])")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def _strip_once(text: str) -> str:
    text = _OSC_RE.sub("", text)
    text = _CSI_RE.sub("", text)
    text = _ESC_RE.sub("", text)
    return _ORPHAN_CSI_RE.sub("", text)


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text.

    Repeats until nothing changes: removing one sequence can splice the
    neighbours into a new one (``"[\\x1b[0m2K"`` -> ``"[2K"``).
    """
    while True:
        cleaned = _strip_once(text)
        if cleaned == text:
            return cleaned
        text = cleaned


def strip_control(text: str) -> str:
    """Remove C0 control characters and DEL.

    Newlines and tabs are kept verbatim; everything else in 0x00-0x1F and
    0x7F (carriage returns, Ctrl+U echoes, bells, stray ESC bytes) goes.
    """
    return _CONTROL_RE.sub("", text)


def clean_text(text: str) -> str:
    """Strip escape sequences and control characters; idempotent."""
    while True:
        cleaned = strip_control(strip_ansi(text))
        if cleaned == text:
            return cleaned
        text = cleaned
