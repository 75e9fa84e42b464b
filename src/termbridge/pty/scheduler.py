"""Flush scheduler: decides when buffered PTY output is worth parsing."""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Callable

from termbridge.config import SchedulerConfig
from termbridge.text import clean_text

logger = logging.getLogger(__name__)

FlushCallback = Callable[[str], None]

# Cleaned characters remembered across chunks for the completion check
_TAIL_SIZE = 256


class FlushScheduler:
    """Accumulate output chunks and flush them as one batch.

    Two ways a batch is flushed:

    * **Completion**: the buffer holds an agent response marker and the
      idle prompt box has just been redrawn underneath it (the output ends
      with the box's closing corner). The UI is back at rest, so the batch
      is flushed right away.
    * **Debounce**: otherwise every chunk restarts a timer and the batch
      is flushed once the output has been quiet for ``debounce`` seconds.

    The flush callback is called synchronously on the event loop. If it
    raises, the batch is logged and dropped.
    """

    def __init__(
        self,
        on_flush: FlushCallback,
        config: SchedulerConfig | None = None,
    ) -> None:
        self.config = config or SchedulerConfig()
        self._on_flush = on_flush
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._chunks: list[str] = []
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False
        self._tail = ""
        self._seen_marker = False
        self._seen_prompt = False
        self._seen_frame = False
        self.flush_count = 0

    def feed(self, chunk: bytes | str) -> None:
        """Append a chunk and either flush now or (re)arm the debounce timer."""
        if self._closed:
            return
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return

        self._chunks.append(text)
        self._cancel_timer()
        if self._update_completion(text):
            logger.debug("Prompt redrawn after response, flushing immediately")
            self.flush()
            return
        self._timer = asyncio.get_running_loop().call_later(
            self.config.debounce, self._on_timer
        )

    def _update_completion(self, text: str) -> bool:
        cfg = self.config
        window = self._tail + clean_text(text)
        self._seen_marker = self._seen_marker or cfg.response_marker in window
        self._seen_prompt = self._seen_prompt or cfg.ready_prompt in window
        self._seen_frame = self._seen_frame or cfg.prompt_frame in window
        self._tail = window[-_TAIL_SIZE:]
        return (
            self._seen_marker
            and self._seen_prompt
            and self._seen_frame
            and window.rstrip().endswith(cfg.prompt_closing)
        )

    def is_complete(self) -> bool:
        """True if the buffered output ends on a freshly drawn idle prompt."""
        return (
            self._seen_marker
            and self._seen_prompt
            and self._seen_frame
            and self._tail.rstrip().endswith(self.config.prompt_closing)
        )

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def flush(self) -> None:
        """Hand everything buffered to the flush callback."""
        self._cancel_timer()
        if not self._chunks:
            return
        batch = "".join(self._chunks)
        self._chunks = []
        self._tail = ""
        self._seen_marker = self._seen_prompt = self._seen_frame = False
        self.flush_count += 1
        try:
            self._on_flush(batch)
        except Exception:
            logger.exception("Flush handler failed, dropping %d chars", len(batch))

    def close(self) -> None:
        """Cancel the timer and flush what is left. Later chunks are ignored."""
        if self._closed:
            return
        rest = self._decoder.decode(b"", final=True)
        if rest:
            self._chunks.append(rest)
        self.flush()
        self._closed = True

    @property
    def pending(self) -> bool:
        """True while a batch is buffered."""
        return bool(self._chunks)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    @property
    def buffered(self) -> str:
        return "".join(self._chunks)
