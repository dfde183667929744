"""
In-memory response cache: bounded LRU with lazy TTL expiry.

Keyed by the request fingerprint; values are validated answers shared
read-only between cache hits.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from app.core.config import CACHE_CAPACITY, CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    inserted_at: float


class ResponseCache:
    """
    Least-recently-used mapping with a per-entry time-to-live.

    Expired entries are only dropped when read, so size() can include
    entries that have expired but were not looked up since.
    """

    def __init__(
        self,
        capacity: int = CACHE_CAPACITY,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value (bumping its recency) or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.inserted_at > self.ttl_seconds:
                del self._entries[key]
                logger.info("[cache:get] expired key_len=%d size=%d", len(key), len(self._entries))
                return None
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: str, value: Any) -> None:
        """Insert at the most-recently-used end, evicting the LRU entry when full."""
        with self._lock:
            self._entries.pop(key, None)
            if len(self._entries) >= self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.info("[cache:set] evicted key_len=%d", len(evicted))
            self._entries[key] = CacheEntry(value=value, inserted_at=self._clock())

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)
