"""
In-process cache for search responses, keyed by the raw query string.

Entries expire after a fixed TTL; when full, the oldest entry is evicted.
Each worker process has its own cache.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Any, Callable

from core import settings


class SearchCache:
    def __init__(
        self,
        *,
        ttl_s: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_s = ttl_s
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def put(self, key: str, value: Any) -> None:
        if self.ttl_s <= 0:
            return None
        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + self.ttl_s, value)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


_cache: SearchCache | None = None


def search_cache() -> SearchCache:
    global _cache
    if _cache is None:
        _cache = SearchCache(
            ttl_s=settings.search_cache_ttl_s(),
            max_entries=settings.search_cache_max_entries(),
        )
    return _cache
