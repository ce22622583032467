"""
Structured logging configuration using structlog.

Every record passes through the redaction processor, and records emitted
while a pipeline call runs carry its ``request_id`` and ``operation`` via
structlog's contextvars.
"""
import logging
import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator, MutableMapping, Optional

import structlog

from src.utils.redaction import redact


def redact_sensitive(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """
    structlog processor replacing password/token/secret-named values.

    The event name itself is left untouched.
    """
    event = event_dict.pop("event", None)
    redacted = redact(dict(event_dict))
    event_dict.clear()
    event_dict.update(redacted)
    if event is not None:
        event_dict["event"] = event
    return event_dict


def build_processors(json_output: bool) -> list[Any]:
    """Processor chain shared by console and JSON output."""
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive,
    ]
    if json_output:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Configure structured logging with structlog.

    Args:
        level: Log level name; defaults to LOG_LEVEL or INFO
        json_output: JSON lines instead of console rendering; defaults to
            JSON unless ENVIRONMENT=development
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_output is None:
        json_output = os.getenv("ENVIRONMENT", "production") != "development"

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    structlog.configure(
        processors=build_processors(json_output),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("aem_request_started", method="GET", path="/content.json")
    """
    return structlog.get_logger(name)


@contextmanager
def request_context(request_id: str, operation: str) -> Iterator[None]:
    """Bind request_id and operation to every record logged inside the block."""
    with structlog.contextvars.bound_contextvars(request_id=request_id, operation=operation):
        yield


def log_request_execution(
    operation: str,
    request_id: str,
    duration_ms: float,
    cached: bool,
    error: str | None = None,
    **extra: Any,
) -> None:
    """
    Log one pipeline call in structured format.

    Args:
        operation: Logical operation name (e.g. "GET /content/site.json")
        request_id: Correlation id of the call
        duration_ms: Execution time in milliseconds
        cached: Whether result was served from cache
        error: Error code if the call failed
        **extra: Additional context to log
    """
    logger = get_logger("request_execution")

    log_data = {
        "operation": operation,
        "request_id": request_id,
        "duration_ms": round(duration_ms, 2),
        "cached": cached,
        "error": error,
        **extra,
    }

    if error:
        logger.error("request_execution_failed", **log_data)
    else:
        logger.info("request_execution_success", **log_data)
