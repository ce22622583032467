"""Build the configured cache backend."""

from typing import Optional, Union

import structlog

from src.aem.config import CacheConfig
from src.cache.connection import RedisConnection
from src.cache.memory import MemoryCache
from src.cache.redis_cache import RedisCacheBackend

logger = structlog.get_logger(__name__)


def create_cache(config: CacheConfig) -> Optional[Union[MemoryCache, RedisCacheBackend]]:
    """
    Create the cache described by ``config``.

    Returns:
        None when caching is disabled, a RedisCacheBackend when
        ``redis_url`` is set, else a MemoryCache
    """
    if not config.enabled:
        logger.info("cache_disabled")
        return None

    if config.redis_url:
        logger.info("cache_backend_selected", backend="redis")
        return RedisCacheBackend(
            RedisConnection(config.redis_url),
            default_ttl=config.ttl,
            raise_on_write_error=config.raise_on_write_error,
        )

    logger.info(
        "cache_backend_selected",
        backend="memory",
        max_size=config.max_size,
        strategy=config.strategy.value,
    )
    return MemoryCache(
        max_size=config.max_size,
        default_ttl=config.ttl,
        strategy=config.strategy,
        cleanup_interval=config.cleanup_interval,
    )
