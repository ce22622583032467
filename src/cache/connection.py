"""Redis connection and pooling management.

This module provides the RedisConnection class, which owns the pooled
client used by the Redis cache backend and degrades to "unavailable"
instead of raising when Redis cannot be configured.
"""

from typing import Optional

import redis.asyncio as redis
import structlog
from redis.asyncio.connection import ConnectionPool

logger = structlog.get_logger(__name__)

DEFAULT_MAX_CONNECTIONS = 20


class RedisConnection:
    """
    Redis connection manager with connection pooling.

    Attributes:
        url: Redis URL (credentials are never logged)
        pool: Redis connection pool
        client: Redis client instance, None when unavailable
    """

    def __init__(
        self,
        url: str,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        socket_timeout: float = 5.0,
    ) -> None:
        self.url = url
        self.max_connections = max_connections
        self.socket_timeout = socket_timeout
        self.pool: Optional[ConnectionPool] = None
        self.client: Optional[redis.Redis] = None
        self._initialize_pool()

    @classmethod
    def from_client(cls, client: redis.Redis, url: str = "redis://injected") -> "RedisConnection":
        """Wrap an existing client (tests, shared application clients)."""
        connection = cls.__new__(cls)
        connection.url = url
        connection.max_connections = DEFAULT_MAX_CONNECTIONS
        connection.socket_timeout = 5.0
        connection.pool = None
        connection.client = client
        return connection

    def _initialize_pool(self) -> None:
        try:
            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
                retry_on_timeout=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            logger.info(
                "redis_pool_initialized",
                max_connections=self.max_connections,
                redis_url=self.url.split("@")[-1],
            )

        except Exception as e:
            logger.error(
                "redis_pool_initialization_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            # Fail open: cache unavailable, requests continue uncached
            self.client = None
            self.pool = None

    async def ping(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis answered, False otherwise
        """
        if not self.client:
            logger.warning("redis_ping_failed", reason="client_not_initialized")
            return False

        try:
            result = await self.client.ping()
            logger.debug("redis_ping_success", result=result)
            return bool(result)

        except Exception as e:
            logger.error(
                "redis_ping_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def close(self) -> None:
        """Close the client and disconnect the pool."""
        try:
            if self.client:
                await self.client.aclose()
                logger.info("redis_client_closed")

            if self.pool:
                await self.pool.disconnect()
                logger.info("redis_pool_disconnected")

        except Exception as e:
            logger.error(
                "redis_close_error",
                error=str(e),
                error_type=type(e).__name__,
            )

    def is_available(self) -> bool:
        """
        Check if the Redis client is configured.

        Note:
            This only checks if the client exists, not if Redis is reachable.
            Use ping() for a real health check.
        """
        return self.client is not None
