"""
Per-entity mutexes

Row locks (SELECT ... FOR UPDATE) serialize writers on PostgreSQL, but SQLite
ignores them. Every read-check-write sequence therefore also holds the lock
for its entity key, so two enrollments into one offering, or two attempts for
one (quiz, student) pair, never interleave inside this process.
"""
import threading
from contextlib import contextmanager
from typing import Dict


class KeyedLock:
    """
    A threading.Lock per key, created on first use

    Entries are reference counted: the lock for a key is dropped as soon as
    its last holder or waiter leaves, so the map only holds keys in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _acquire_entry(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _release_entry(self, key: str) -> None:
        with self._guard:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str):
        lock = self._acquire_entry(key)
        try:
            with lock:
                yield
        finally:
            self._release_entry(key)


# Global instance
entity_locks = KeyedLock()
