"""Bounded in-process caches."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")


class BoundedCache(Generic[V]):
    """Thread-safe LRU cache with an optional time-to-live.

    When full, the least-recently-used entry is evicted on insert.  With a
    ``ttl``, an entry older than ``ttl`` seconds is dropped when it is next
    looked up and expired entries are purged before an eviction.
    """

    def __init__(
        self,
        maxsize: int,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be > 0")
        self.maxsize = maxsize
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def _expired(self, stored_at: float, now: float) -> bool:
        return self.ttl is not None and now - stored_at >= self.ttl

    def get(self, key: Hashable) -> Optional[V]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            stored_at, value = entry
            if self._expired(stored_at, now):
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def put(self, key: Hashable, value: V) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (now, value)
            self._entries.move_to_end(key)
            if len(self._entries) > self.maxsize:
                self._purge_expired(now)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)

    def get_or_create(self, key: Hashable, factory: Callable[[], V]) -> V:
        value = self.get(key)
        if value is None:
            value = factory()
            self.put(key, value)
        return value

    def _purge_expired(self, now: float) -> None:
        if self.ttl is None:
            return
        stale = [k for k, (stored_at, _) in self._entries.items() if self._expired(stored_at, now)]
        for k in stale:
            del self._entries[k]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
