"""
Response normalization for AEM upstream answers.

Turns a TransportResponse into a Result: HTTP error statuses and AEM error
payloads hidden behind 2xx become classified AEMError values, and the
bodies of well-known AEM endpoints (package manager, query builder,
workflow, replication) are reshaped into stable dictionaries.
"""

from typing import Any, Dict

import structlog

from src.aem.exceptions import (
    AEMError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    RequestTimeoutError,
    ServerError,
    UnknownError,
    ValidationError,
    error_for_code,
)
from src.aem.transport import TransportResponse
from src.models.responses import ErrorType
from src.resilience.result import Result
from src.utils.redaction import redact

logger = structlog.get_logger(__name__)

RATE_LIMIT_RETRY_AFTER_MS = 60000
SERVER_ERROR_RETRY_AFTER_MS = 30000
MAX_BODY_DETAIL_CHARS = 2000

JAVA_EXCEPTION_CODES: Dict[str, ErrorType] = {
    "javax.jcr.AccessDeniedException": ErrorType.AUTHORIZATION_ERROR,
    "javax.jcr.security.AccessControlException": ErrorType.AUTHORIZATION_ERROR,
    "javax.jcr.PathNotFoundException": ErrorType.NOT_FOUND_ERROR,
    "javax.jcr.ItemNotFoundException": ErrorType.NOT_FOUND_ERROR,
    "javax.jcr.InvalidItemStateException": ErrorType.VALIDATION_ERROR,
    "javax.jcr.RepositoryException": ErrorType.SERVER_ERROR,
    "java.net.SocketTimeoutException": ErrorType.TIMEOUT_ERROR,
    "java.net.ConnectException": ErrorType.NETWORK_ERROR,
    "java.io.IOException": ErrorType.NETWORK_ERROR,
}


def map_java_exception(name: Any) -> ErrorType:
    """
    Map a Java exception class name (fully qualified or simple) to a code.

    Anything that is not a class name (numeric codes, None) maps to SERVER_ERROR.

    Example:
        >>> map_java_exception("PathNotFoundException")
        <ErrorType.NOT_FOUND_ERROR: 'NOT_FOUND_ERROR'>
    """
    if not isinstance(name, str) or not name:
        return ErrorType.SERVER_ERROR
    if name in JAVA_EXCEPTION_CODES:
        return JAVA_EXCEPTION_CODES[name]
    simple = name.rsplit(".", 1)[-1]
    for qualified, code in JAVA_EXCEPTION_CODES.items():
        if qualified.rsplit(".", 1)[-1] == simple:
            return code
    return ErrorType.SERVER_ERROR


def parse_retry_after(headers: Dict[str, str], default_ms: int) -> int:
    """Retry-After (seconds) in milliseconds, or ``default_ms``."""
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                return max(0, int(float(value) * 1000))
            except (TypeError, ValueError):
                return default_ms
    return default_ms


def _body_detail(body: Any) -> Any:
    if isinstance(body, str) and len(body) > MAX_BODY_DETAIL_CHARS:
        body = body[:MAX_BODY_DETAIL_CHARS] + "..."
    return redact(body)


def _message_from(value: Any, fallback: str) -> str:
    if isinstance(value, dict):
        return str(value.get("message") or value.get("title") or fallback)
    if value:
        return str(value)
    return fallback


class ResponseNormalizer:
    """
    Normalizer for AEM HTTP responses.

    All normalization methods are static and can be called without
    instantiation.

    Example:
        >>> result = ResponseNormalizer.normalize(response, "GET /bin/querybuilder.json")
        >>> if result.success:
        ...     hits = result.value["hits"]
    """

    @staticmethod
    def normalize(response: TransportResponse, operation: str) -> Result:
        """
        Classify and reshape one upstream response.

        Args:
            response: Raw upstream response
            operation: Logical operation name, e.g. "GET /crx/packmgr/list.jsp"

        Returns:
            Result carrying reshaped data or a classified AEMError
        """
        if not response.is_success:
            error = ResponseNormalizer.error_from_status(response, operation)
            logger.debug(
                "upstream_error_status",
                operation=operation,
                status=response.status_code,
                error_code=error.code.value,
            )
            return Result.fail(error)

        body = response.body
        if isinstance(body, dict) and ResponseNormalizer.is_error_body(body):
            error = ResponseNormalizer.error_from_body(body, response.status_code, operation)
            logger.debug(
                "upstream_error_payload",
                operation=operation,
                status=response.status_code,
                error_code=error.code.value,
            )
            return Result.fail(error)

        return Result.ok(ResponseNormalizer.reshape(body, operation))

    @staticmethod
    def error_from_status(response: TransportResponse, operation: str) -> AEMError:
        status = response.status_code
        details = {"status": status, "operation": operation, "body": _body_detail(response.body)}
        message = f"{operation}: {ResponseNormalizer._upstream_message(response.body, status)}"

        if status in (400, 422):
            return ValidationError(message, details=details)
        if status == 401:
            return AuthenticationError(message, details=details)
        if status == 403:
            return AuthorizationError(message, details=details)
        if status == 404:
            return NotFoundError(message, details=details)
        if status == 408:
            return RequestTimeoutError(message, details=details)
        if status == 429:
            return ServerError(
                message,
                status_code=status,
                recoverable=True,
                retry_after_ms=parse_retry_after(response.headers, RATE_LIMIT_RETRY_AFTER_MS),
                details=details,
            )
        if status >= 500:
            return ServerError(
                message,
                status_code=status,
                recoverable=True,
                retry_after_ms=SERVER_ERROR_RETRY_AFTER_MS,
                details=details,
            )
        return UnknownError(message, details=details)

    @staticmethod
    def _upstream_message(body: Any, status: int) -> str:
        fallback = f"HTTP {status}"
        if isinstance(body, dict):
            for key in ("message", "error", "title", "status.message"):
                if body.get(key):
                    return _message_from(body[key], fallback)
        return fallback

    @staticmethod
    def is_error_body(body: Dict[str, Any]) -> bool:
        """True when a 2xx body still describes a failure."""
        if body.get("success") is False:
            return True
        if body.get("error") or body.get("exception"):
            return True

        status = body.get("status")
        if status == "error":
            return True
        if isinstance(status, (int, float)) and not isinstance(status, bool):
            return status >= 400
        return False

    @staticmethod
    def error_from_body(body: Dict[str, Any], status: int, operation: str) -> AEMError:
        code = ErrorType.SERVER_ERROR
        message = "AEM operation failed"

        if body.get("error"):
            error = body["error"]
            message = _message_from(error, message)
            if isinstance(error, dict):
                code = map_java_exception(error.get("code") or error.get("type"))
        elif body.get("exception"):
            exception = body["exception"]
            message = _message_from(exception, message)
            if isinstance(exception, dict):
                code = map_java_exception(exception.get("class") or exception.get("type"))
            else:
                code = map_java_exception(str(exception).split(":", 1)[0].strip())
        elif body.get("message"):
            message = str(body["message"])

        recoverable = code in (
            ErrorType.NETWORK_ERROR,
            ErrorType.TIMEOUT_ERROR,
            ErrorType.SERVER_ERROR,
        )

        retry_after_ms = None
        raw_retry = body.get("retryAfter") or body.get("retry-after")
        if raw_retry is not None:
            try:
                retry_after_ms = max(0, int(float(raw_retry) * 1000))
            except (TypeError, ValueError):
                retry_after_ms = None

        return error_for_code(
            code,
            f"{operation}: {message}",
            recoverable=recoverable,
            retry_after_ms=retry_after_ms,
            details={"status": status, "operation": operation, "body": _body_detail(body)},
        )

    @staticmethod
    def reshape(body: Any, operation: str) -> Any:
        """Reshape known AEM response families; pass anything else through."""
        if not isinstance(body, dict):
            return body

        if "package" in operation.lower() or "packmgr" in operation.lower():
            if isinstance(body.get("results"), list):
                return ResponseNormalizer.normalize_packages(body)

        if "success" in body and "hits" in body:
            return ResponseNormalizer.normalize_query_builder(body)

        if "workflowInstances" in body or "workflowModels" in body:
            return ResponseNormalizer.normalize_workflow(body)

        if "agents" in body or "distributionAgents" in body:
            return ResponseNormalizer.normalize_replication(body)

        return body

    @staticmethod
    def normalize_packages(body: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "packages": [
                {
                    "name": pkg.get("name"),
                    "group": pkg.get("group"),
                    "version": pkg.get("version"),
                    "path": pkg.get("path"),
                    "size": pkg.get("size"),
                    "created": pkg.get("created"),
                    "last_modified": pkg.get("lastModified"),
                    "installed": str(pkg.get("installed")).lower() == "true",
                    "built_with": pkg.get("builtWith"),
                }
                for pkg in body["results"]
            ]
        }

    @staticmethod
    def normalize_query_builder(body: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "success": body.get("success"),
            "total": body.get("total"),
            "offset": body.get("offset"),
            "hits": [
                {
                    "path": hit.get("path"),
                    "title": hit.get("title"),
                    "excerpt": hit.get("excerpt"),
                    "last_modified": hit.get("lastModified"),
                    "score": hit.get("score"),
                }
                for hit in body.get("hits") or []
            ],
        }

    @staticmethod
    def normalize_workflow(body: Dict[str, Any]) -> Dict[str, Any]:
        if "workflowInstances" in body:
            return {
                "instances": [
                    {
                        "id": instance.get("id"),
                        "model_path": instance.get("model"),
                        "payload_path": instance.get("payload"),
                        "state": instance.get("state"),
                        "start_time": instance.get("startTime"),
                        "end_time": instance.get("endTime"),
                        "initiator": instance.get("initiator"),
                    }
                    for instance in body["workflowInstances"] or []
                ]
            }

        return {
            "models": [
                {
                    "path": model.get("path"),
                    "title": model.get("title"),
                    "description": model.get("description"),
                    "version": model.get("version"),
                }
                for model in body["workflowModels"] or []
            ]
        }

    @staticmethod
    def normalize_replication(body: Dict[str, Any]) -> Dict[str, Any]:
        agents = body.get("agents") or body.get("distributionAgents") or []
        return {
            "agents": [
                {
                    "name": agent.get("name"),
                    "title": agent.get("title"),
                    "description": agent.get("description"),
                    "enabled": agent.get("enabled"),
                    "valid": agent.get("valid"),
                    "queue": agent.get("queue"),
                }
                for agent in agents
            ]
        }
