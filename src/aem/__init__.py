"""
AEM as a Cloud Service request core.

This package provides:
- AEMHttpClient: the resilient request pipeline (src.aem.client)
- Authentication managers for basic, bearer, OAuth and service accounts
- ResponseNormalizer: upstream payload classification
- HttpxTransport: pooled HTTP transport
- Configuration models loaded from the environment
- The AEMError exception hierarchy (re-exported here)

Example:
    >>> from src.aem.client import create_aem_client
    >>> async with create_aem_client() as client:
    ...     response = await client.get("/content/site/en.json")
"""

from src.aem.exceptions import (
    AEMError,
    AuthenticationError,
    AuthorizationError,
    CacheUnavailableError,
    CircuitOpenError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    ServerError,
    UnknownError,
    ValidationError,
    classify_exception,
    error_for_code,
)

__all__ = [
    "AEMError",
    "AuthenticationError",
    "AuthorizationError",
    "CacheUnavailableError",
    "CircuitOpenError",
    "NetworkError",
    "NotFoundError",
    "RequestTimeoutError",
    "ServerError",
    "UnknownError",
    "ValidationError",
    "classify_exception",
    "error_for_code",
]
