"""TTL (Time To Live) policies for different AEM resource families.

This module defines cache expiration policies based on how often each
kind of AEM content changes.
"""

from enum import Enum

import structlog

logger = structlog.get_logger(__name__)


class CacheTTL(Enum):
    """
    Cache TTL policies for AEM resources.

    - Status endpoints (workflow, replication): very short TTL
    - Search results: short TTL
    - Content and packages: medium TTL
    - Assets and taxonomy: long TTL

    Values are in seconds.
    """

    WORKFLOW_STATUS = 30
    REPLICATION_STATUS = 30
    QUERY_RESULTS = 60
    PACKAGES = 120
    CONTENT = 300
    ASSETS = 600
    TAGS = 1800
    TEMPLATES = 1800

    @staticmethod
    def for_request(path: str) -> int:
        """
        Determine TTL based on the requested AEM path.

        Args:
            path: Request path

        Returns:
            TTL in seconds

        Example:
            >>> CacheTTL.for_request("/bin/querybuilder.json")
            60
        """
        lowered = path.lower()

        if "querybuilder" in lowered:
            ttl = CacheTTL.QUERY_RESULTS.value
        elif lowered.startswith("/content/dam") or "/api/assets" in lowered:
            ttl = CacheTTL.ASSETS.value
        elif lowered.startswith("/content/cq:tags") or "/tagging" in lowered:
            ttl = CacheTTL.TAGS.value
        elif "/templates" in lowered:
            ttl = CacheTTL.TEMPLATES.value
        elif "workflow" in lowered:
            ttl = CacheTTL.WORKFLOW_STATUS.value
        elif "replication" in lowered:
            ttl = CacheTTL.REPLICATION_STATUS.value
        elif "/crx/packmgr" in lowered:
            ttl = CacheTTL.PACKAGES.value
        else:
            ttl = CacheTTL.CONTENT.value

        logger.debug("ttl_determined", path=path, ttl_seconds=ttl)

        return ttl
