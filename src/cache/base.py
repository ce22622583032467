"""Cache backend contract shared by the in-memory and Redis backends."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable


class EvictionStrategy(str, Enum):
    """Which entries to drop first when a memory cache is full."""

    LRU = "lru"
    LFU = "lfu"
    TTL = "ttl"


@dataclass
class CacheStats:
    """Counters reported by ``CacheBackend.stats()``."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["hit_rate"] = round(self.hit_rate, 4)
        return data


@runtime_checkable
class CacheBackend(Protocol):
    """
    Async key/value cache with per-entry TTL (seconds).

    ``get`` returns None on a miss; backends never raise for an
    unavailable store except where documented.
    """

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def has(self, key: str) -> bool: ...

    async def invalidate_pattern(self, pattern: str) -> int: ...

    async def clear(self) -> None: ...

    async def stats(self) -> CacheStats: ...
