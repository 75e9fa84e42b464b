"""Conversation extractor: terminal output in, user/agent turns out.

The wrapped program redraws its UI constantly: the prompt box is repainted
on every keystroke, finished answers are re-printed when the screen
scrolls, spinners tick every few hundred milliseconds. The extractor walks
the cleaned output line by line through a small state machine and keeps
just enough memory (open buffer, last emitted text per speaker, a recency
cache of agent lines) to emit each turn once.

State persists across ``feed()`` calls because a flush boundary can split a
turn anywhere. Create one extractor per session.
"""

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable

from termbridge.config import ExtractorConfig
from termbridge.conversation.recency import RecencyCache
from termbridge.conversation.rules import Line, LineClassifier, LineKind
from termbridge.errors import ParseAnomaly
from termbridge.text import clean_text

logger = logging.getLogger(__name__)


class Speaker(enum.Enum):
    USER = "User"
    AGENT = "Agent"


class CaptureState(enum.Enum):
    IDLE = "idle"
    CAPTURING_USER = "capturing_user"
    CAPTURING_AGENT = "capturing_agent"
    IN_PERMISSION_DIALOG = "in_permission_dialog"


@dataclass(frozen=True)
class ConversationTurn:
    speaker: Speaker
    text: str

    def render(self) -> str:
        return f"{self.speaker.value}: {self.text}\n"


def render_turns(turns: list[ConversationTurn]) -> str:
    """Render a batch of turns, separated by blank lines."""
    return "\n".join(turn.render() for turn in turns)


class ConversationExtractor:
    """Stateful line parser producing ConversationTurns.

    Never raises for odd input: a line that cannot be handled is logged at
    debug level and dropped.
    """

    def __init__(
        self,
        config: ExtractorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or ExtractorConfig()
        self.classifier = LineClassifier(self.config)
        self.recent = RecencyCache(window=self.config.dedup_window, clock=clock)
        self._noise_patterns = [re.compile(p) for p in self.config.agent_noise_patterns]

        self._state = CaptureState.IDLE
        self._buffer: list[str] = []
        self._last_emitted: dict[Speaker, str] = {}
        self._dialog_announced = False
        self._pending: list[ConversationTurn] = []

        self._handlers: dict[LineKind, Callable[[Line], None]] = {
            LineKind.PERMISSION_TRIGGER: self._on_permission_trigger,
            LineKind.PERMISSION_RESOLUTION: self._on_ignored,
            LineKind.CHROME: self._on_ignored,
            LineKind.USER_MARKER: self._on_user_marker,
            LineKind.AGENT_MARKER: self._on_agent_marker,
            LineKind.PROGRESS: self._on_ignored,
            LineKind.TERMINATOR: self._on_terminator,
            LineKind.CONTENT: self._on_content,
        }

    @property
    def state(self) -> CaptureState:
        return self._state

    def last_emitted(self, speaker: Speaker) -> str | None:
        return self._last_emitted.get(speaker)

    # -- public API ---------------------------------------------------------

    def feed(self, raw: str) -> list[ConversationTurn]:
        """Consume one flushed batch of raw terminal output.

        Returns the turns completed by this batch, in order.
        """
        self._pending = []
        try:
            text = clean_text(raw)
        except Exception:
            logger.debug("Dropping batch that could not be cleaned", exc_info=True)
            return []

        self.recent.evict()
        lines = text.split("\n")
        # The newline ending a batch closes its last line; it is not a
        # blank line of its own.
        if lines[-1] == "":
            lines.pop()
        for raw_line in lines:
            try:
                self._handle(raw_line)
            except ParseAnomaly as e:
                logger.debug("Dropped line: %s", e)
            except Exception:
                logger.debug("Dropped line %r", raw_line[:80], exc_info=True)

        self._settle()
        turns, self._pending = self._pending, []
        return turns

    def process(self, raw: str) -> str | None:
        """Like ``feed()`` but returns the rendered batch, or None."""
        turns = self.feed(raw)
        if not turns:
            return None
        return render_turns(turns)

    def reset(self) -> None:
        """Forget all state, as for a fresh session."""
        self._state = CaptureState.IDLE
        self._buffer = []
        self._last_emitted.clear()
        self._dialog_announced = False
        self.recent.clear()

    # -- state machine ------------------------------------------------------

    def _handle(self, raw_line: str) -> None:
        in_dialog = self._state is CaptureState.IN_PERMISSION_DIALOG
        line = self.classifier.classify(raw_line, in_dialog=in_dialog)

        if in_dialog:
            if line.kind is LineKind.PERMISSION_RESOLUTION:
                self._leave_dialog()
                return
            resumes = line.kind in (LineKind.USER_MARKER, LineKind.AGENT_MARKER) or (
                line.kind is LineKind.TERMINATOR and line.text != ""
            )
            if not resumes:
                return
            self._leave_dialog()

        self._handlers[line.kind](line)

    def _on_ignored(self, line: Line) -> None:
        pass

    def _on_permission_trigger(self, line: Line) -> None:
        if self._state is CaptureState.IN_PERMISSION_DIALOG:
            return
        self._close_turn()
        self._state = CaptureState.IN_PERMISSION_DIALOG
        if not self._dialog_announced:
            self._dialog_announced = True
            self._emit(Speaker.AGENT, f"[Permission requested for {line.payload}]")

    def _leave_dialog(self) -> None:
        logger.debug("Permission dialog resolved")
        self._state = CaptureState.IDLE
        self._dialog_announced = False

    def _on_user_marker(self, line: Line) -> None:
        if self._state is CaptureState.CAPTURING_AGENT:
            self._close_turn()
        # A user marker while already capturing is the prompt being redrawn
        # as the user types; the latest rendering wins.
        self._state = CaptureState.CAPTURING_USER
        self._buffer = [line.payload]

    def _on_agent_marker(self, line: Line) -> None:
        self._close_turn()
        self._state = CaptureState.CAPTURING_AGENT
        self._buffer = []
        if line.payload and not self.classifier.is_progress(line.payload):
            self._append_agent(line.payload)

    def _on_terminator(self, line: Line) -> None:
        self._close_turn()
        self._state = CaptureState.IDLE

    def _on_content(self, line: Line) -> None:
        if self._state is CaptureState.CAPTURING_USER:
            self._buffer.append(line.text)
        elif self._state is CaptureState.CAPTURING_AGENT:
            if not self._is_agent_noise(line.text):
                self._append_agent(line.text)

    # -- buffers ------------------------------------------------------------

    def _append_agent(self, text: str) -> None:
        if self.recent.check_and_add(text):
            self._buffer.append(text)

    def _is_agent_noise(self, text: str) -> bool:
        if any(noise in text for noise in self.config.agent_noise):
            return True
        return any(p.search(text) for p in self._noise_patterns)

    def _close_turn(self) -> None:
        """Emit the open buffer (if any) for the current capture state."""
        if self._state is CaptureState.CAPTURING_USER:
            speaker = Speaker.USER
        elif self._state is CaptureState.CAPTURING_AGENT:
            speaker = Speaker.AGENT
        else:
            return
        text = "\n".join(self._buffer).strip()
        self._buffer = []
        if text:
            self._emit(speaker, text)

    def _settle(self) -> None:
        """End-of-batch decision for an open agent turn.

        An agent turn that ends mid-sentence ("Starting response...") is
        held for the next batch. Anything else is emitted now; the state
        stays CAPTURING_AGENT so further lines form a follow-on turn.
        """
        if not self.config.settle_open_agent_turn:
            return
        if self._state is not CaptureState.CAPTURING_AGENT or not self._buffer:
            return
        if self._buffer[-1].endswith(tuple(self.config.continuation_suffixes)):
            return
        self._close_turn()

    def _emit(self, speaker: Speaker, text: str) -> None:
        if self._last_emitted.get(speaker) == text:
            logger.debug("Suppressed repeated %s turn", speaker.value)
            return
        self._last_emitted[speaker] = text
        self._pending.append(ConversationTurn(speaker=speaker, text=text))
