"""Response caching layer for AEM requests.

This package provides:
- The backend contract and statistics (CacheBackend, CacheStats)
- In-memory cache with LRU/LFU/TTL eviction (MemoryCache)
- Redis backend with connection pooling (RedisCacheBackend, RedisConnection)
- Cache key generation (CacheKeyGenerator)
- TTL policies (CacheTTL)
- Graceful fail-open behavior for Redis
"""

from src.cache.base import CacheBackend, CacheStats, EvictionStrategy
from src.cache.connection import RedisConnection
from src.cache.keys import CacheKeyGenerator
from src.cache.memory import CacheEntry, MemoryCache
from src.cache.redis_cache import RedisCacheBackend
from src.cache.ttl import CacheTTL

__all__ = [
    # Contract
    "CacheBackend",
    "CacheStats",
    "EvictionStrategy",
    # Backends
    "MemoryCache",
    "CacheEntry",
    "RedisCacheBackend",
    "RedisConnection",
    # Key generation
    "CacheKeyGenerator",
    # TTL policies
    "CacheTTL",
]
