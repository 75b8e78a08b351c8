"""
Per-key lock registry: at most one holder per key, independent keys never block each other.

Entries are reference counted and dropped once nobody holds or waits on them.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, List, Optional


class LockTimeout(TimeoutError):
    """The key's lock could not be acquired before the deadline."""


class KeyedLocks:

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, holders + waiters]
        self._locks: Dict[Hashable, List] = {}

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable):
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def acquire(self, key: Hashable, timeout: Optional[float] = None) -> bool:
        """
        Take the lock for ``key``. Returns False if not acquired within ``timeout`` seconds.

        A successful acquire must be paired with ``release``, which may run on another thread.
        """
        lock = self._checkout(key)
        acquired = lock.acquire(timeout=-1 if timeout is None else max(timeout, 0))
        if not acquired:
            self._checkin(key)
        return acquired

    def release(self, key: Hashable):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                raise RuntimeError(f"Release of unheld key {key!r}")
            entry[0].release()
        self._checkin(key)

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None):
        """Hold the lock for ``key``; raise ``LockTimeout`` if not acquired within ``timeout`` seconds."""
        if not self.acquire(key, timeout=timeout):
            raise LockTimeout(f"Timed out after {timeout}s waiting for {key!r}")
        try:
            yield
        finally:
            self.release(key)

    def is_held(self, key: Hashable) -> bool:
        with self._guard:
            entry = self._locks.get(key)
        return entry is not None and entry[0].locked()

    def __len__(self):
        with self._guard:
            return len(self._locks)
