"""Redis cache backend with fail-open error handling.

Values are stored as JSON envelopes ``{data, cached_at, ttl}`` with SETEX.
When Redis is unavailable every read is a miss and every write a no-op
(or a raised CacheUnavailableError in strict-write mode).
"""

import json
import math
import re
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from src.aem.exceptions import CacheUnavailableError
from src.cache.base import CacheStats
from src.cache.connection import RedisConnection

logger = structlog.get_logger(__name__)

# Redis glob metacharacters other than "*"
_GLOB_SPECIAL = re.compile(r"([?\[\]\\^])")


def to_redis_pattern(pattern: str) -> str:
    """
    Escape a cache pattern so only ``*`` keeps its wildcard meaning.

    Example:
        >>> to_redis_pattern("aem:GET:/content/[dam]*")
        'aem:GET:/content/\\\\[dam\\\\]*'
    """
    return _GLOB_SPECIAL.sub(r"\\\1", pattern)


def ttl_seconds(ttl: float) -> int:
    """Redis expiry in whole seconds, rounded up, never below 1."""
    return max(1, math.ceil(ttl))


class RedisCacheBackend:
    """
    Cache backend over redis.asyncio.

    Usage:
        backend = RedisCacheBackend(RedisConnection("redis://localhost:6379/0"))
        await backend.set("aem:GET:/content/site.json:abc:v1", data, ttl=300)

    Attributes:
        connection: Pooled Redis connection
        default_ttl: TTL in seconds used when ``set`` gets none
        namespace: Key prefix that ``clear`` is restricted to
        raise_on_write_error: Raise CacheUnavailableError instead of
            silently skipping failed writes
    """

    def __init__(
        self,
        connection: RedisConnection,
        default_ttl: float = 300.0,
        namespace: str = "aem:",
        raise_on_write_error: bool = False,
        scan_count: int = 500,
    ) -> None:
        self.connection = connection
        self.default_ttl = default_ttl
        self.namespace = namespace
        self.raise_on_write_error = raise_on_write_error
        self.scan_count = scan_count
        self._stats = CacheStats()

    @property
    def redis(self):
        return self.connection.client

    async def get(self, key: str) -> Optional[Any]:
        if not self.redis:
            logger.debug("cache_get_skipped", reason="redis_not_available", key=key)
            self._stats.misses += 1
            return None

        try:
            value = await self.redis.get(key)
        except Exception as e:
            logger.error(
                "cache_get_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._stats.misses += 1
            return None

        if value is None:
            logger.debug("cache_miss", key=key)
            self._stats.misses += 1
            return None

        try:
            cached_data = json.loads(value)
            data = cached_data["data"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error("cache_get_json_decode_error", key=key, error=str(e))
            # Invalid cached data - delete it
            await self.delete(key)
            self._stats.misses += 1
            return None

        logger.debug("cache_hit", key=key, ttl=cached_data.get("ttl"))
        self._stats.hits += 1
        return data

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if not self.redis:
            logger.debug("cache_set_skipped", reason="redis_not_available", key=key)
            if self.raise_on_write_error:
                raise CacheUnavailableError("Redis client not initialized")
            return

        expiry = ttl_seconds(self.default_ttl if ttl is None else ttl)

        try:
            payload = json.dumps(
                {
                    "data": value,
                    "cached_at": datetime.now(timezone.utc).isoformat(),
                    "ttl": expiry,
                }
            )
            await self.redis.setex(key, expiry, payload)

        except (TypeError, ValueError) as e:
            logger.error(
                "cache_set_serialization_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            if self.raise_on_write_error:
                raise CacheUnavailableError(
                    "Value is not JSON-serializable", details={"key": key}
                ) from e
            return

        except Exception as e:
            logger.error(
                "cache_set_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            if self.raise_on_write_error:
                raise CacheUnavailableError(
                    f"Cache write failed: {e}", details={"key": key}
                ) from e
            return

        self._stats.sets += 1
        logger.debug("cache_set", key=key, ttl=expiry)

    async def delete(self, key: str) -> bool:
        if not self.redis:
            logger.debug("cache_delete_skipped", reason="redis_not_available", key=key)
            return False

        try:
            result = await self.redis.delete(key)
        except Exception as e:
            logger.error(
                "cache_delete_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        deleted = bool(result)
        if deleted:
            self._stats.deletes += 1
        logger.debug("cache_delete", key=key, deleted=deleted)
        return deleted

    async def has(self, key: str) -> bool:
        if not self.redis:
            return False

        try:
            return bool(await self.redis.exists(key))
        except Exception as e:
            logger.error(
                "cache_has_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key containing a match of ``pattern``; return how many."""
        return await self._delete_matching(f"*{to_redis_pattern(pattern)}*", pattern)

    async def clear(self) -> None:
        deleted = await self._delete_matching(
            f"{to_redis_pattern(self.namespace)}*", self.namespace
        )
        logger.info("cache_cleared", deleted=deleted)

    async def _delete_matching(self, match: str, pattern: str) -> int:
        if not self.redis:
            logger.debug("cache_invalidate_skipped", reason="redis_not_available")
            return 0

        try:
            keys = [
                key
                async for key in self.redis.scan_iter(match=match, count=self.scan_count)
            ]
            if not keys:
                return 0
            deleted = int(await self.redis.delete(*keys))
        except Exception as e:
            logger.error(
                "cache_invalidate_error",
                pattern=pattern,
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0

        self._stats.deletes += deleted
        logger.debug("cache_pattern_invalidated", pattern=pattern, deleted=deleted)
        return deleted

    async def _namespace_size(self) -> int:
        match = f"{to_redis_pattern(self.namespace)}*"
        count = 0
        async for _ in self.redis.scan_iter(match=match, count=self.scan_count):
            count += 1
        return count

    async def stats(self) -> CacheStats:
        """Counters plus the number of keys under ``namespace``."""
        size = 0
        if self.redis:
            try:
                size = await self._namespace_size()
            except Exception as e:
                logger.warning("cache_size_unavailable", error=str(e))

        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            sets=self._stats.sets,
            deletes=self._stats.deletes,
            size=size,
            max_size=0,
        )

    async def ping(self) -> bool:
        return await self.connection.ping()

    async def close(self) -> None:
        await self.connection.close()
