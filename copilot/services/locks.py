"""Per-key mutual exclusion."""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class KeyedLock:
    """One lock per key, created on demand and dropped when no holder or waiter remains.

    The registry mutex only guards the lock table; callers for different keys
    never wait on each other.
    """

    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._mutex:
            lock, refs = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, refs + 1)

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._mutex:
                _, refs = self._locks[key]
                if refs <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, refs - 1)

    def __len__(self) -> int:
        with self._mutex:
            return len(self._locks)
