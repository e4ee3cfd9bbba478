"""
In-memory buffer of LogEntry objects awaiting delivery.
"""

import threading
from typing import List

from sentinel_sdk.entry import Batch, LogEntry


class RecordBuffer:
    """Unbounded, ordered queue of pending entries.

    All state is guarded by a single lock so enqueue() can be called from
    any number of request threads while the flush thread drains. Nothing
    here performs I/O, so every method returns in bounded time.

    Once begin_shutdown() has been called, enqueue() rejects new entries
    but entries already held stay available to drain().
    """

    def __init__(self):
        self._entries: List[LogEntry] = []
        # Reentrant: a signal handler may shut down while the main thread
        # is inside enqueue()
        self._lock = threading.RLock()
        self._shutting_down = False

    def enqueue(self, entry: LogEntry) -> bool:
        """Append an entry. Returns False if the buffer is shutting down."""
        with self._lock:
            if self._shutting_down:
                return False
            self._entries.append(entry)
            return True

    def drain(self) -> Batch:
        """Remove and return all buffered entries, oldest first."""
        with self._lock:
            entries, self._entries = self._entries, []
        return tuple(entries)

    def size(self) -> int:
        """Number of buffered entries."""
        with self._lock:
            return len(self._entries)

    def begin_shutdown(self) -> None:
        """Stop accepting entries. Safe to call more than once."""
        with self._lock:
            self._shutting_down = True

    @property
    def is_shutting_down(self) -> bool:
        with self._lock:
            return self._shutting_down

    def __len__(self) -> int:
        return self.size()
