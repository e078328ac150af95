"""
In-process keyed locks.

Serializes the check-and-insert for one slot (and one patient) among the
threads of a single worker process. Row locks in the database cover writers
in other processes.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Sequence

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class KeyedLockManager:
    """Hands out one mutex per key and forgets keys nobody is waiting on"""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    def _checkout(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.holders += 1
            return entry

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                return
            entry.holders -= 1
            if entry.holders <= 0:
                del self._entries[key]

    @contextmanager
    def hold(self, keys: Sequence[Hashable], timeout: float) -> Iterator[bool]:
        """
        Acquire every key or none of them.

        Yields True when all locks were taken within ``timeout`` seconds,
        False otherwise. Keys are taken in a stable order so two callers
        asking for overlapping sets cannot deadlock.
        """
        ordered = sorted(set(keys), key=repr)
        acquired = []
        ok = True
        try:
            for key in ordered:
                entry = self._checkout(key)
                if entry.lock.acquire(timeout=timeout):
                    acquired.append((key, entry))
                else:
                    self._checkin(key)
                    logger.warning(f"Timed out after {timeout}s waiting for lock {key!r}")
                    ok = False
                    break
            yield ok
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


# Process-wide registry used by the reservation engine and state machine
booking_locks = KeyedLockManager()
