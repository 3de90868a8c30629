"""Short-lived response cache shared by the ingestion and refresh paths."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Hashable

from cachetools import TTLCache

# Sentinel returned by :meth:`ResponseCache.lookup` when no fresh entry exists.
MISS = object()


class ResponseCache:
    """TTL map keyed by request identity.

    ``None`` is a legitimate cached value (a negative result), so lookups
    report absence with :data:`MISS`. Expiry is lazy; nothing runs in the
    background.
    """

    def __init__(
        self,
        ttl: float = 1.0,
        maxsize: int = 4096,
        *,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = float(ttl)
        self._data: TTLCache = TTLCache(maxsize=max(1, int(maxsize)), ttl=self.ttl, timer=timer)
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    def lookup(self, key: Hashable) -> Any:
        if self.ttl <= 0:
            self.misses += 1
            return MISS
        with self._lock:
            value = self._data.get(key, MISS)
        if value is MISS:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def store(self, key: Hashable, value: Any) -> None:
        if self.ttl <= 0:
            return
        with self._lock:
            self._data[key] = value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            self._data.expire()
            return len(self._data)


__all__ = ["MISS", "ResponseCache"]
