"""Time-keyed cache of recently emitted lines."""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable


class RecencyCache:
    """Remembers lines for ``window`` seconds after they were first recorded.

    Terminal redraws re-print lines that were already captured; checking
    them against this cache drops the echo while still letting the same
    text through again once the window has passed.

    Entries are kept in insertion order, which is also timestamp order, so
    eviction only ever pops from the front.
    """

    def __init__(
        self,
        window: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window = window
        self._clock = clock
        self._entries: OrderedDict[str, float] = OrderedDict()

    def evict(self) -> None:
        """Drop entries older than the window."""
        cutoff = self._clock() - self.window
        while self._entries:
            line, seen_at = next(iter(self._entries.items()))
            if seen_at >= cutoff:
                break
            self._entries.popitem(last=False)

    def seen(self, line: str) -> bool:
        """Return True if ``line`` was recorded within the window."""
        self.evict()
        return line in self._entries

    def add(self, line: str) -> None:
        self._entries[line] = self._clock()
        self._entries.move_to_end(line)

    def check_and_add(self, line: str) -> bool:
        """Record ``line`` unless already present. Returns True if it was new."""
        if self.seen(line):
            return False
        self.add(line)
        return True

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        self.evict()
        return len(self._entries)

    def __contains__(self, line: object) -> bool:
        return isinstance(line, str) and self.seen(line)
