"""Per-key mutual exclusion.

Two uploads of the same (account, filename) share a staging path and a
version counter, so the pipeline holds a lock for that pair from the
moment bytes are staged until the upload record is written. Locks for
idle keys are dropped so the table does not grow with every filename
ever seen.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._locks: Dict[Hashable, List] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
