"""
Resilience primitives for upstream calls.

- CircuitBreaker / CircuitBreakerRegistry: per-target fail-fast state machine
- RetryExecutor / RetryPolicy: bounded retries with exponential backoff
- Result / RetryResult: outcome values passed between layers

Example:
    >>> from src.resilience import CircuitBreakerRegistry, RetryExecutor, RetryPolicy
    >>> breaker = CircuitBreakerRegistry().get("aem-author.example.com:443")
    >>> executor = RetryExecutor(RetryPolicy.for_upstream())
"""

from src.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerStats,
    CircuitState,
)
from src.resilience.result import Result, RetryResult
from src.resilience.retry import RetryAttempt, RetryExecutor, RetryPolicy

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitBreakerStats",
    "CircuitState",
    # Retry
    "RetryAttempt",
    "RetryExecutor",
    "RetryPolicy",
    # Results
    "Result",
    "RetryResult",
]
