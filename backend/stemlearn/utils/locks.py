"""Per-key locks for serializing updates to one student's aggregates."""

from __future__ import annotations

import threading
from contextlib import contextmanager


class KeyedLocks:
    """Hands out one re-entrant lock per key.

    Two writers for the same key run one after the other; writers for
    different keys never wait on each other. A key's lock is dropped once
    nobody holds or waits for it.
    """

    def __init__(self):
        self._locks = {}
        self._users = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]


student_locks = KeyedLocks()
