"""Duplicate-event suppression for folder watches.

inotify (and friends) fire several events for one logical write, e.g.
create + modify + modify on truncate/write/close. The debouncer collapses
them so a file is queued once per window.
"""

import threading
import time

# Debounce window: ignore events for the same path within this period
DEBOUNCE_SECONDS = 2.0


class EventDebouncer:
    """Thread-safe per-path debounce table.

    Called from watchdog observer threads, so the table sits behind a
    ``threading.Lock``. Entries are never expired; the table is bounded by
    the number of distinct paths seen.
    """

    def __init__(self, window: float = DEBOUNCE_SECONDS) -> None:
        self._window = window
        self._last_seen: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def window(self) -> float:
        return self._window

    def should_suppress(self, path: str, now: float | None = None) -> bool:
        """Return True if ``path`` was seen within the window.

        A suppressed event does not refresh the timestamp, so a steady
        stream of events still lets one through every window.
        """
        if now is None:
            now = time.monotonic()
        with self._lock:
            last = self._last_seen.get(path)
            if last is not None and now - last < self._window:
                return True
            self._last_seen[path] = now
            return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_seen)
