# ArcGIS OM Approval MCP Server
# File: cache.py
# Version: v1

"""In-process TTL cache for layer metadata (field aliases).

Layer schemas change rarely, while the alias lookup is one extra ArcGIS
round trip per screen. TTL and size come from ``OmApprovalConfig``.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0


class TTLCache:
    """TTL cache with oldest-first eviction once ``max_entries`` is exceeded.

    A ttl or size of 0 disables caching entirely.
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        max_entries: int = 32,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = int(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._store: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0 and self.max_entries > 0

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None when missing or expired."""
        entry = self._store.get(key) if self.enabled else None
        if entry is None:
            self._stats.misses += 1
            return None

        expires_at, value = entry
        if expires_at <= self._clock():
            self._store.pop(key, None)
            self._stats.misses += 1
            self._stats.expirations += 1
            return None

        self._store.move_to_end(key)
        self._stats.hits += 1
        return value

    def set(self, key: Hashable, value: Any) -> None:
        if not self.enabled:
            return

        self._store[key] = (self._clock() + self.ttl_seconds, value)
        self._store.move_to_end(key)

        while len(self._store) > self.max_entries:
            self._store.popitem(last=False)
            self._stats.evictions += 1

    def clear(self) -> None:
        self._store.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "ttl_seconds": self.ttl_seconds,
            "max_entries": self.max_entries,
            "size": len(self._store),
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "evictions": self._stats.evictions,
            "expirations": self._stats.expirations,
        }
