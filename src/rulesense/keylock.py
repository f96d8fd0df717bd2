"""
Key-partitioned locking.

``KeyLock`` serialises callers that present the same key while letting
callers with different keys proceed in parallel. Locks for a key exist
only while someone holds or waits for them.

Usage:
    locks = KeyLock()
    with locks.locked("http_requests_total"):
        ...
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyLock:
    """A lock per key, created on first use and dropped when unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def lock(self, key: Hashable) -> None:
        """Block until ``key`` is held by the caller."""
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
        entry.lock.acquire()

    def unlock(self, key: Hashable) -> None:
        """
        Release ``key``.

        Raises:
            RuntimeError: If ``key`` is not currently held.
        """
        with self._guard:
            entry = self._entries.get(key)
            if entry is None or not entry.lock.locked():
                raise RuntimeError(f"unlock of unlocked key: {key!r}")
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]
            entry.lock.release()

    @contextmanager
    def locked(self, key: Hashable) -> Iterator[None]:
        self.lock(key)
        try:
            yield
        finally:
            self.unlock(key)

    def __len__(self) -> int:
        """Number of keys currently held or waited for."""
        with self._guard:
            return len(self._entries)
