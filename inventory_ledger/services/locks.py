import threading
from contextlib import contextmanager


class KeyedLock:
    """One mutex per key, created on first use.

    Serializes check-then-append sequences for a single SKU while leaving
    unrelated SKUs free to proceed. Only covers threads of this process.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str):
        with self._lock_for(key):
            yield

    def __len__(self) -> int:
        return len(self._locks)
