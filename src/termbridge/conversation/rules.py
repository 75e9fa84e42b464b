"""Line classification table for terminal conversation output.

Every cleaned line is classified by walking ``LineClassifier.rules`` top to
bottom; the first rule whose predicate matches decides the line's kind.
The order is the policy:

    a. permission-dialog trigger
    b. permission-dialog resolution (only while a dialog is open)
    c. UI chrome (box drawing, hint strings)
    d. user-input marker (prompt glyph + text)
    e. agent-turn marker (response glyph)
    f. progress indicator (spinner, verb, elapsed time, tokens)
    g. terminator (blank line or a bare, freshly redrawn prompt)
    h. content

What each kind *does* is up to the extractor's state machine.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Callable

from termbridge.config import ExtractorConfig
from termbridge.errors import ParseAnomaly

_SIDE_BORDERS = "│║┃"


class LineKind(enum.Enum):
    PERMISSION_TRIGGER = "permission_trigger"
    PERMISSION_RESOLUTION = "permission_resolution"
    CHROME = "chrome"
    USER_MARKER = "user_marker"
    AGENT_MARKER = "agent_marker"
    PROGRESS = "progress"
    TERMINATOR = "terminator"
    CONTENT = "content"


@dataclass(frozen=True)
class Line:
    """A classified line.

    ``payload`` is the marker's trailing text for markers, the tool name for
    permission triggers and the line itself for content.
    """

    kind: LineKind
    text: str
    payload: str = ""


# A predicate returns the payload on a match, None otherwise.
Predicate = Callable[[str], "str | None"]


@dataclass(frozen=True)
class LineRule:
    kind: LineKind
    predicate: Predicate
    dialog_only: bool = False


def unwrap_line(raw: str) -> str:
    """Trim a line and peel off the side borders of a box frame."""
    text = raw.strip()
    if text[:1] in _SIDE_BORDERS:
        text = text[1:]
    if text[-1:] in _SIDE_BORDERS:
        text = text[:-1]
    return text.strip()


class LineClassifier:
    """Ordered ``(predicate, kind)`` table built from an ExtractorConfig."""

    def __init__(self, config: ExtractorConfig | None = None) -> None:
        self.config = config or ExtractorConfig()
        cfg = self.config
        self._triggers = [re.compile(p) for p in cfg.permission_triggers]
        self._resolutions = [re.compile(p) for p in cfg.permission_resolutions]
        self._progress = re.compile(cfg.progress_pattern)
        self._box = frozenset(cfg.box_characters)
        self._hints = tuple(cfg.chrome_hints)
        self._chrome_lines = frozenset(cfg.chrome_lines)
        self._prompts = tuple(cfg.prompt_glyphs)

        self.rules: list[LineRule] = [
            LineRule(LineKind.PERMISSION_TRIGGER, self._match_trigger),
            LineRule(
                LineKind.PERMISSION_RESOLUTION,
                self._match_resolution,
                dialog_only=True,
            ),
            LineRule(LineKind.CHROME, self._match_chrome),
            LineRule(LineKind.USER_MARKER, self._match_user),
            LineRule(LineKind.AGENT_MARKER, self._match_agent),
            LineRule(LineKind.PROGRESS, self._match_progress),
            LineRule(LineKind.TERMINATOR, self._match_terminator),
            LineRule(LineKind.CONTENT, lambda text: text),
        ]

    def classify(self, raw: str, in_dialog: bool = False) -> Line:
        """Classify one cleaned line.

        Raises:
            ParseAnomaly: the line carries undecodable bytes.
        """
        text = unwrap_line(raw)
        if "\ufffd" in text:
            raise ParseAnomaly(f"undecodable bytes in line: {text[:40]!r}")
        for rule in self.rules:
            if rule.dialog_only and not in_dialog:
                continue
            payload = rule.predicate(text)
            if payload is not None:
                return Line(kind=rule.kind, text=text, payload=payload)
        return Line(kind=LineKind.CONTENT, text=text, payload=text)

    # -- predicates ---------------------------------------------------------

    def _match_trigger(self, text: str) -> str | None:
        for pattern in self._triggers:
            m = pattern.search(text)
            if m:
                if m.groups() and m.group(1):
                    return m.group(1)
                return self.config.default_tool_label
        return None

    def _match_resolution(self, text: str) -> str | None:
        for pattern in self._resolutions:
            if pattern.search(text):
                return text
        return None

    def _match_chrome(self, text: str) -> str | None:
        if any(ch in self._box for ch in text):
            return ""
        if any(hint in text for hint in self._hints) or text in self._chrome_lines:
            return ""
        return None

    def _match_user(self, text: str) -> str | None:
        for glyph in self._prompts:
            if text.startswith(glyph):
                rest = text[len(glyph):].strip()
                return rest or None
        return None

    def _match_agent(self, text: str) -> str | None:
        glyph = self.config.response_glyph
        if text.startswith(glyph):
            return text[len(glyph):].strip()
        return None

    def is_progress(self, text: str) -> bool:
        return self._progress.match(text) is not None

    def _match_progress(self, text: str) -> str | None:
        return "" if self.is_progress(text) else None

    def _match_terminator(self, text: str) -> str | None:
        if not text or text in self._prompts:
            return ""
        return None
