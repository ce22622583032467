"""Cache key generation for consistent, deterministic cache keys.

This module provides the CacheKeyGenerator class for generating
hashed cache keys from the HTTP method, the AEM path and the query
parameters of a request.
"""

import hashlib
import json
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class CacheKeyGenerator:
    """
    Generate consistent cache keys for AEM requests.

    Cache keys follow the pattern: aem:{METHOD}:{path}:{params_hash}:{version}

    The params_hash is generated using MD5 hashing of sorted parameters
    to ensure deterministic key generation (same params = same key).
    Paths may contain ':' (``jcr:content``), so parsing anchors the
    fixed fields at both ends.

    Attributes:
        PREFIX: Namespace shared by all keys
        VERSION: Cache schema version (increment when response format changes)
    """

    PREFIX = "aem"
    VERSION = "v1"

    @staticmethod
    def hash_params(params: Optional[Dict[str, Any]]) -> str:
        """First 12 hex chars of the MD5 of the canonical params JSON."""
        params_str = json.dumps(params or {}, sort_keys=True, default=str)
        return hashlib.md5(params_str.encode()).hexdigest()[:12]

    @staticmethod
    def generate(method: str, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Generate cache key for an AEM request.

        Args:
            method: HTTP method (case-insensitive)
            path: AEM path, e.g. "/content/site/en.json"
            params: Query parameters

        Returns:
            Cache key string in format: aem:{METHOD}:{path}:{hash}:{version}

        Example:
            >>> key = CacheKeyGenerator.generate("get", "/content/site.json", {"depth": 1})
            >>> key.startswith("aem:GET:/content/site.json:")
            True
        """
        params_hash = CacheKeyGenerator.hash_params(params)
        cache_key = (
            f"{CacheKeyGenerator.PREFIX}:{method.upper()}:{path}:"
            f"{params_hash}:{CacheKeyGenerator.VERSION}"
        )

        logger.debug(
            "cache_key_generated",
            method=method.upper(),
            path=path,
            params_hash=params_hash,
        )

        return cache_key

    @staticmethod
    def parse(cache_key: str) -> Dict[str, str]:
        """
        Parse cache key back to components.

        Args:
            cache_key: Cache key string to parse

        Returns:
            Dictionary with keys prefix, method, path, params_hash, version

        Raises:
            ValueError: If cache key format is invalid

        Example:
            >>> parsed = CacheKeyGenerator.parse("aem:GET:/content/a/jcr:content.json:0123456789ab:v1")
            >>> parsed["path"]
            '/content/a/jcr:content.json'
        """
        head = cache_key.split(":", 2)
        tail = head[-1].rsplit(":", 2) if len(head) == 3 else []

        if len(head) != 3 or len(tail) != 3 or not all(head[:2]) or not tail[0]:
            raise ValueError(
                f"Invalid cache key format: {cache_key}. "
                "Expected prefix:METHOD:path:hash:version"
            )

        return {
            "prefix": head[0],
            "method": head[1],
            "path": tail[0],
            "params_hash": tail[1],
            "version": tail[2],
        }

    @staticmethod
    def pattern_for_path(path_prefix: str) -> str:
        """
        Invalidation pattern covering every cached request under a path.

        Example:
            >>> CacheKeyGenerator.pattern_for_path("/content/site")
            'aem:*:/content/site*'
        """
        return f"{CacheKeyGenerator.PREFIX}:*:{path_prefix}*"
