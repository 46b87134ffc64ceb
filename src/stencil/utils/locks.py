"""Per-key re-entrant in-process locks."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class KeyedLocks:
    """Re-entrant lock per key, dropped once no thread holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._checkout(key)
        try:
            with lock:
                yield
        finally:
            self._checkin(key)

    # ----- Internals -----

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = [threading.RLock(), 0]
                self._locks[key] = slot
            slot[1] += 1
            return slot[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            slot = self._locks[key]
            slot[1] -= 1
            if slot[1] == 0:
                del self._locks[key]


__all__ = ["KeyedLocks"]
