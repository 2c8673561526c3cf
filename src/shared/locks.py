"""Per-key mutual exclusion for in-process writers.

One lock per key (order id, variant id), created on demand and discarded
once no thread holds or waits for it. Multiple keys are always acquired in
sorted order so two callers can never deadlock on each other.
"""

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager


class KeyedLocks:
    def __init__(self, namespace: str = ""):
        self.namespace = namespace
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._refcounts: dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
                self._refcounts[key] = 0
            self._refcounts[key] += 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Hold the locks for every key until the block exits."""
        with self.hold_all(keys):
            yield

    @contextmanager
    def hold_all(self, keys: Iterable[str]) -> Iterator[None]:
        ordered = sorted({str(key) for key in keys})
        acquired: list[tuple[str, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                lock.acquire()
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
