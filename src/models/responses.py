"""
Pydantic response models for the AEM request pipeline.

Defines the uniform envelope returned by every pipeline call, the
structured error shape, and the health check response.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class ErrorType(str, Enum):
    """Closed error taxonomy surfaced to callers."""

    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class StructuredError(BaseModel):
    """
    Taxonomy-tagged error returned in failed envelopes.

    Attributes:
        code: Error category from ErrorType
        message: Human-readable error message
        recoverable: Whether a higher layer may retry the call later
        retry_after_ms: Suggested wait before retrying, in milliseconds
        details: Redacted diagnostic context
    """

    code: ErrorType = Field(..., description="Error category")
    message: str = Field(..., min_length=1, description="Human-readable error message")
    recoverable: bool = Field(False, description="Whether retrying later may succeed")
    retry_after_ms: Optional[int] = Field(
        None,
        ge=0,
        description="Suggested wait before retrying, in milliseconds",
    )
    details: Optional[dict[str, Any]] = Field(
        None,
        description="Additional (redacted) error context",
    )

    model_config = ConfigDict(
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "code": "SERVER_ERROR",
                "message": "GET /content/site.json: Server error: Service Unavailable",
                "recoverable": True,
                "retry_after_ms": 30000,
                "details": {"status": 503, "attempts": 3},
            }
        },
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResponseMetadata(BaseModel):
    """
    Metadata included in every envelope.

    Provides correlation and timing information about a single pipeline call.
    """

    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the envelope was produced (UTC)",
    )
    request_id: str = Field(
        ...,
        min_length=1,
        description="Correlation id of the pipeline call",
    )
    duration_ms: float = Field(
        0.0,
        ge=0,
        description="Pipeline execution time in milliseconds",
    )
    cached: bool = Field(
        False,
        description="Whether the result was served from cache",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "timestamp": "2025-11-05T12:34:56.789012+00:00",
                "request_id": "4f6c7a3e-5b1d-4c4e-9a59-0c8f3fd1e2a1",
                "duration_ms": 45.2,
                "cached": True,
            }
        }
    )


# Generic type for envelope data
T = TypeVar("T")


class AEMResponse(BaseModel, Generic[T]):
    """
    Uniform envelope returned by the request pipeline.

    Exactly one of ``data`` / ``error`` is meaningful, selected by ``success``.

    Example:
        >>> response = AEMResponse(
        ...     success=True,
        ...     data={"hits": []},
        ...     metadata=ResponseMetadata(request_id="abc", duration_ms=12.5),
        ... )
    """

    success: bool = Field(..., description="Whether the call succeeded")
    data: Optional[T] = Field(None, description="Normalized upstream data")
    error: Optional[StructuredError] = Field(None, description="Structured error")
    metadata: ResponseMetadata = Field(..., description="Correlation and timing metadata")

    @classmethod
    def ok(
        cls,
        data: Any,
        request_id: str,
        duration_ms: float = 0.0,
        cached: bool = False,
    ) -> "AEMResponse":
        """Build a successful envelope."""
        return cls(
            success=True,
            data=data,
            metadata=ResponseMetadata(
                request_id=request_id,
                duration_ms=round(duration_ms, 2),
                cached=cached,
            ),
        )

    @classmethod
    def fail(
        cls,
        error: StructuredError,
        request_id: str,
        duration_ms: float = 0.0,
    ) -> "AEMResponse":
        """Build a failed envelope."""
        return cls(
            success=False,
            error=error,
            metadata=ResponseMetadata(
                request_id=request_id,
                duration_ms=round(duration_ms, 2),
                cached=False,
            ),
        )


class HealthCheckResponse(BaseModel):
    """
    Health check response for the request core.

    Used by operators to verify the upstream, the cache and the breaker.
    """

    status: str = Field(
        ...,
        description="Overall health status (healthy, degraded, unhealthy)",
    )
    components: dict[str, str] = Field(
        ...,
        description="Health status of individual components",
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Per-component diagnostic information",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "components": {
                    "upstream": "healthy",
                    "cache": "healthy",
                    "circuit_breaker": "healthy",
                },
                "details": {"circuit_breaker": {"state": "CLOSED"}},
            }
        }
    )
