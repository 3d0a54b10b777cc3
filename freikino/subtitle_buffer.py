"""A live, thread-safe ASS document that grows while subtitles are extracted."""

from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass(frozen=True)
class SubtitleSnapshot:
    """A consistent view of a live subtitle buffer.

    ``generation`` grows with every change to the buffer, so a reader can
    tell whether anything new arrived since its last snapshot. ``complete``
    is set once extraction has finished.
    """

    ass_text: str = ""
    generation: int = 0
    complete: bool = False


class SubtitleLiveBuffer:
    """Header plus an event list that a background scan appends to.

    Every change bumps the generation while the lock is held. A snapshot
    therefore never reports a generation whose events are missing from its
    text.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._header = ""
        self._events = ""
        self._generation = 0
        self._complete = False

    def publish_document(self, text: str) -> None:
        """Replace the whole content with a finished document."""
        with self._lock:
            self._header = ""
            self._events = text
            self._generation += 1

    def set_header(self, header: str) -> None:
        """Set the Script Info / Styles / Events header."""
        with self._lock:
            self._header = header
            self._generation += 1

    def append_events(self, lines: str) -> None:
        """Append Dialogue lines; appending nothing changes nothing."""
        if not lines:
            return
        with self._lock:
            self._events += lines
            self._generation += 1

    def mark_complete(self) -> None:
        """Record that extraction has finished."""
        with self._lock:
            self._complete = True
            self._generation += 1

    def snapshot(self) -> SubtitleSnapshot:
        """Return the current document, generation and completion flag."""
        with self._lock:
            return SubtitleSnapshot(
                ass_text=self._header + self._events,
                generation=self._generation,
                complete=self._complete,
            )