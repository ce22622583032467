"""In-process cache with per-entry TTL and LRU/LFU/TTL eviction.

All mutations run without awaiting anything, so on a single event loop
no caller ever observes a half-applied ``set`` or ``invalidate_pattern``.
"""

import asyncio
import math
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from src.cache.base import CacheStats, EvictionStrategy

logger = structlog.get_logger(__name__)

EVICTION_FRACTION = 0.1


@dataclass
class CacheEntry:
    """One stored value plus its bookkeeping."""

    value: Any
    stored_at: float
    ttl: float
    access_count: int = 1
    last_accessed_at: float = 0.0

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.stored_at + self.ttl


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """
    Compile a cache invalidation pattern.

    ``*`` matches any run of characters (including none); everything else
    is literal. The pattern may match anywhere in the key.

    Example:
        >>> bool(compile_pattern("/content/*").search("aem:GET:/content/a:x:v1"))
        True
    """
    parts = (re.escape(part) for part in pattern.split("*"))
    return re.compile(".*".join(parts), re.DOTALL)


class MemoryCache:
    """
    Bounded in-memory cache.

    Usage:
        cache = MemoryCache(max_size=1000, default_ttl=300)
        await cache.set("aem:GET:/content/site.json:abc:v1", payload)
        payload = await cache.get("aem:GET:/content/site.json:abc:v1")

    Attributes:
        max_size: Maximum number of entries
        default_ttl: TTL in seconds used when ``set`` gets none
        strategy: Eviction strategy applied when full
        cleanup_interval: Seconds between background sweeps
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 300.0,
        strategy: EvictionStrategy = EvictionStrategy.LRU,
        cleanup_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.max_size = max_size
        self.default_ttl = default_ttl
        self.strategy = EvictionStrategy(strategy)
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._stats = CacheStats(max_size=max_size)
        self._cleanup_task: Optional[asyncio.Task] = None

    async def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        entry = self._entries.get(key)

        if entry is None:
            self._stats.misses += 1
            return None

        if entry.is_expired(now):
            del self._entries[key]
            self._stats.misses += 1
            logger.debug("cache_entry_expired", key=key)
            return None

        entry.access_count += 1
        entry.last_accessed_at = now
        self._stats.hits += 1
        return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()

        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict()

        self._entries[key] = CacheEntry(
            value=value,
            stored_at=now,
            ttl=self.default_ttl if ttl is None else ttl,
            last_accessed_at=now,
        )
        self._stats.sets += 1

    async def delete(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self._stats.deletes += 1
        return True

    async def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return False
        return True

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key containing a match of ``pattern``; return how many."""
        regex = compile_pattern(pattern)
        doomed = [key for key in self._entries if regex.search(key)]
        for key in doomed:
            del self._entries[key]

        self._stats.deletes += len(doomed)
        logger.debug("cache_pattern_invalidated", pattern=pattern, deleted=len(doomed))
        return len(doomed)

    async def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info("cache_cleared", deleted=count)

    async def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            sets=self._stats.sets,
            deletes=self._stats.deletes,
            size=len(self._entries),
            max_size=self.max_size,
        )

    def _evict(self) -> None:
        count = max(1, math.floor(self.max_size * EVICTION_FRACTION))

        if self.strategy == EvictionStrategy.LFU:
            sort_key: Callable[[CacheEntry], float] = lambda e: e.access_count
        elif self.strategy == EvictionStrategy.TTL:
            sort_key = lambda e: e.expires_at
        else:
            sort_key = lambda e: e.last_accessed_at

        victims = sorted(self._entries.items(), key=lambda item: sort_key(item[1]))[:count]
        for key, _ in victims:
            del self._entries[key]

        logger.debug(
            "cache_evicted",
            strategy=self.strategy.value,
            evicted=len(victims),
        )

    def purge_expired(self) -> int:
        """Remove every expired entry now; return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def start_cleanup(self) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.debug("cache_cleanup_started", interval=self.cleanup_interval)

    async def stop_cleanup(self) -> None:
        task = self._cleanup_task
        self._cleanup_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("cache_cleanup_stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.purge_expired()
            if removed:
                logger.debug("cache_cleanup_swept", removed=removed)

    def __len__(self) -> int:
        return len(self._entries)
