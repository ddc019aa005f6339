"""In-process memo for derived analytics keyed by corpus version."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Hashable, Optional, Tuple

from config import settings

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, int, Hashable]


class AnalyticsCache:
    """LRU of computed payloads. A bumped corpus version makes old entries unreachable."""

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max(int(max_entries or settings.ANALYTICS_CACHE_SIZE), 1)
        self._entries: "OrderedDict[CacheKey, Any]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    async def get_or_compute(
        self,
        kind: str,
        user_id: str,
        version: int,
        compute: Callable[[], Awaitable[Any]],
        params: Hashable = None,
    ) -> Any:
        key: CacheKey = (kind, user_id, int(version), params)
        async with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                return self._entries[key]
            self.misses += 1

        value = await compute()

        async with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted analytics cache entry {evicted[:3]}")
        return value

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)


analytics_cache = AnalyticsCache()
