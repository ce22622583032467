"""
Resilient HTTP client for AEM as a Cloud Service.

Every call goes through the same pipeline:

    cache check (GET only)
      -> circuit breaker
        -> retry executor
          -> auth headers -> transport -> normalizer
    -> cache write
    -> AEMResponse envelope

The client never raises for upstream or transport failures; callers get
an AEMResponse whose ``error`` carries the classified StructuredError.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from pydantic import BaseModel, Field

from src.aem.auth import AuthManager, create_auth_manager
from src.aem.config import AEMConfig
from src.aem.exceptions import AEMError, UnknownError
from src.aem.normalizer import ResponseNormalizer
from src.aem.transport import HttpxTransport, Transport
from src.cache.base import CacheBackend
from src.cache.factory import create_cache
from src.cache.keys import CacheKeyGenerator
from src.cache.memory import MemoryCache
from src.cache.redis_cache import RedisCacheBackend
from src.cache.ttl import CacheTTL
from src.models.responses import AEMResponse, ErrorType, HealthCheckResponse
from src.resilience.circuit_breaker import CircuitBreakerRegistry, CircuitState
from src.resilience.result import Result, RetryResult
from src.resilience.retry import RetryExecutor, RetryPolicy
from src.utils.logger import log_request_execution, request_context
from src.utils.metrics import OperationTimer, PerformanceMonitor

logger = structlog.get_logger(__name__)

DEFAULT_HEALTH_PATH = "/libs/granite/core/content/login.html"


class RequestContextOverride(BaseModel):
    """Caller-supplied names for logs and metrics."""

    operation: Optional[str] = None
    resource: Optional[str] = None


class RequestOptions(BaseModel):
    """
    Per-call pipeline options.

    Attributes:
        cache: Read from and write to the cache (GET only)
        cache_ttl: TTL in seconds for the cache write (default by path)
        timeout: Per-attempt timeout in seconds (default from config)
        retries: False disables retries, an int sets the attempt count
        circuit_breaker: Route the call through the target's breaker
        headers: Extra request headers (override auth headers)
        context: Operation/resource names for logs and metrics
    """

    cache: bool = True
    cache_ttl: Optional[float] = Field(None, gt=0)
    timeout: Optional[float] = Field(None, gt=0)
    retries: Union[bool, int] = True
    circuit_breaker: bool = True
    headers: dict[str, str] = Field(default_factory=dict)
    context: Optional[RequestContextOverride] = None


@dataclass
class RequestContext:
    """Identity of one pipeline call."""

    request_id: str
    method: str
    path: str
    operation: str
    resource: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(cls, method: str, path: str, options: RequestOptions) -> "RequestContext":
        override = options.context or RequestContextOverride()
        return cls(
            request_id=str(uuid.uuid4()),
            method=method,
            path=path,
            operation=override.operation or f"{method} {path}",
            resource=override.resource or path,
        )


class AEMHttpClient:
    """
    Request pipeline for one AEM environment.

    Collaborators that are not injected are created from ``config`` and
    owned (closed) by the client. Injected cache and breaker registry
    instances can be shared between clients.

    Usage:
        async with AEMHttpClient(AEMConfig.from_env()) as client:
            response = await client.get("/content/site/en.json", params={"depth": 1})
            if response.success:
                page = response.data

    Attributes:
        config: Connection settings
        cache: Response cache, None when caching is disabled
        breakers: Circuit breaker registry
        monitor: Performance aggregates
    """

    def __init__(
        self,
        config: AEMConfig,
        *,
        transport: Optional[Transport] = None,
        auth: Optional[AuthManager] = None,
        cache: Optional[CacheBackend] = None,
        enable_cache: bool = True,
        breakers: Optional[CircuitBreakerRegistry] = None,
        enable_circuit_breaker: bool = True,
        retry_policy: Optional[RetryPolicy] = None,
        monitor: Optional[PerformanceMonitor] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        health_path: str = DEFAULT_HEALTH_PATH,
    ) -> None:
        self.config = config
        self.health_path = health_path
        self._owned: list[Any] = []

        if transport is None:
            transport = HttpxTransport(config.base_url, timeout=config.timeout)
            self._owned.append(transport)
        self.transport = transport

        if auth is None:
            auth = create_auth_manager(config.auth)
            self._owned.append(auth)
        self.auth = auth

        if not enable_cache:
            cache = None
        elif cache is None:
            cache = create_cache(config.cache)
            if cache is not None:
                self._owned.append(cache)
        self.cache = cache

        if breakers is None:
            breakers = CircuitBreakerRegistry(config.circuit_breaker)
        self.breakers = breakers
        self.enable_circuit_breaker = enable_circuit_breaker
        self.breaker_name = config.breaker_name

        self.retry_policy = retry_policy or RetryPolicy.for_upstream(
            max_attempts=config.retry_attempts,
            base_delay=config.retry_delay,
            timeout=config.timeout,
        )
        self._executor = RetryExecutor(self.retry_policy, sleep=sleep)
        self.normalizer = ResponseNormalizer()
        self.monitor = monitor if monitor is not None else PerformanceMonitor()

        logger.info(
            "aem_client_initialized",
            base_url=config.base_url,
            auth_type=config.auth.type.value,
            cache=type(self.cache).__name__ if self.cache is not None else None,
            circuit_breaker=enable_circuit_breaker,
        )

    async def __aenter__(self) -> "AEMHttpClient":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def start(self) -> None:
        """Start background work owned by the client (cache cleanup)."""
        if isinstance(self.cache, MemoryCache) and any(r is self.cache for r in self._owned):
            self.cache.start_cleanup()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        body: Any = None,
        files: Optional[dict[str, Any]] = None,
        options: Optional[RequestOptions] = None,
    ) -> AEMResponse:
        """
        Execute one request through the pipeline.

        Args:
            method: HTTP method
            path: AEM path relative to the configured base URL
            params: Query parameters
            body: JSON body, or form fields when ``files`` is given
            files: Multipart files (httpx format)
            options: Per-call options

        Returns:
            AEMResponse envelope; never raises for upstream failures
        """
        options = options or RequestOptions()
        method = method.upper()
        context = RequestContext.create(method, path, options)
        timer = self.monitor.start_operation(context.request_id, context.operation)

        with request_context(context.request_id, context.operation):
            logger.debug("aem_request_started", method=method, path=path)

            try:
                response = await self._execute(context, timer, params, body, files, options)
            except Exception as e:
                logger.exception("aem_request_unexpected_error", error_type=type(e).__name__)
                error = UnknownError(
                    str(e) or "An unknown error occurred",
                    details={"error_type": type(e).__name__},
                )
                response = AEMResponse.fail(
                    error.to_structured(),
                    context.request_id,
                    timer.end(success=False),
                )

        log_request_execution(
            operation=context.operation,
            request_id=context.request_id,
            duration_ms=response.metadata.duration_ms,
            cached=response.metadata.cached,
            error=response.error.code if response.error else None,
            resource=context.resource,
        )
        return response

    async def _execute(
        self,
        context: RequestContext,
        timer: OperationTimer,
        params: Optional[dict[str, Any]],
        body: Any,
        files: Optional[dict[str, Any]],
        options: RequestOptions,
    ) -> AEMResponse:
        cache_key = None
        if context.method == "GET" and self.cache is not None and options.cache:
            cache_key = CacheKeyGenerator.generate(context.method, context.path, params)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.debug("cache_hit", request_id=context.request_id, key=cache_key)
                return AEMResponse.ok(
                    cached,
                    context.request_id,
                    timer.end(success=True),
                    cached=True,
                )

        policy = self._policy_for(options)
        attempt = partial(self._attempt, context, params, body, files, options, policy)

        async def run_with_retry() -> Result:
            return await self._executor.execute(
                attempt,
                policy=policy,
                context=context.operation,
            )

        if self.enable_circuit_breaker and options.circuit_breaker:
            breaker = self.breakers.get(self.breaker_name)
            result = await breaker.execute(run_with_retry)
        else:
            result = await run_with_retry()

        if not result.success:
            error = self._annotate_failure(result, policy)
            return AEMResponse.fail(
                error.to_structured(),
                context.request_id,
                timer.end(success=False),
            )

        if cache_key is not None and result.value is not None:
            ttl = options.cache_ttl or CacheTTL.for_request(context.path)
            try:
                await self.cache.set(cache_key, result.value, ttl)
            except AEMError as e:
                logger.warning(
                    "cache_write_failed",
                    request_id=context.request_id,
                    key=cache_key,
                    error=e.message,
                )

        return AEMResponse.ok(
            result.value,
            context.request_id,
            timer.end(success=True),
        )

    async def _attempt(
        self,
        context: RequestContext,
        params: Optional[dict[str, Any]],
        body: Any,
        files: Optional[dict[str, Any]],
        options: RequestOptions,
        policy: RetryPolicy,
    ) -> Result:
        headers = await self.auth.get_headers()
        headers.update(options.headers)

        json_body = None
        form = None
        if files is not None:
            form = body
        elif body is not None:
            json_body = body

        response = await self.transport.invoke(
            context.method,
            context.path,
            params=params,
            json=json_body,
            data=form,
            files=files,
            headers=headers,
            timeout=policy.timeout,
        )

        result = self.normalizer.normalize(response, context.operation)
        if response.status_code == 401:
            self.auth.invalidate()
        return result

    def _policy_for(self, options: RequestOptions) -> RetryPolicy:
        update: dict[str, Any] = {}
        if isinstance(options.retries, bool):
            if not options.retries:
                update["max_attempts"] = 1
        else:
            update["max_attempts"] = max(1, options.retries)
        if options.timeout is not None:
            update["timeout"] = options.timeout
        return self.retry_policy.model_copy(update=update) if update else self.retry_policy

    @staticmethod
    def _annotate_failure(result: Result, policy: RetryPolicy) -> AEMError:
        error = result.error or UnknownError()
        if isinstance(result, RetryResult):
            error.with_details(attempts=result.attempts)
            if policy.max_attempts > 1 and result.attempts >= policy.max_attempts:
                error.with_details(retries_exhausted=True)
        return error

    async def get(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        options: Optional[RequestOptions] = None,
    ) -> AEMResponse:
        return await self.request("GET", path, params=params, options=options)

    async def post(
        self,
        path: str,
        body: Any = None,
        params: Optional[dict[str, Any]] = None,
        options: Optional[RequestOptions] = None,
    ) -> AEMResponse:
        return await self.request("POST", path, params=params, body=body, options=options)

    async def put(
        self,
        path: str,
        body: Any = None,
        params: Optional[dict[str, Any]] = None,
        options: Optional[RequestOptions] = None,
    ) -> AEMResponse:
        return await self.request("PUT", path, params=params, body=body, options=options)

    async def delete(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        options: Optional[RequestOptions] = None,
    ) -> AEMResponse:
        return await self.request("DELETE", path, params=params, options=options)

    async def upload(
        self,
        path: str,
        files: dict[str, Any],
        fields: Optional[dict[str, Any]] = None,
        options: Optional[RequestOptions] = None,
    ) -> AEMResponse:
        """Multipart POST (DAM asset uploads, package uploads)."""
        return await self.request("POST", path, body=fields, files=files, options=options)

    async def get_stats(self) -> dict[str, Any]:
        """Breaker, cache and per-operation performance statistics."""
        stats: dict[str, Any] = {"performance": self.monitor.get_metrics()}
        if self.enable_circuit_breaker:
            stats["circuit_breaker"] = self.breakers.get(self.breaker_name).stats().to_dict()
        if self.cache is not None:
            stats["cache"] = (await self.cache.stats()).to_dict()
        return stats

    async def clear_cache(self, pattern: Optional[str] = None) -> int:
        """
        Invalidate cached responses.

        Args:
            pattern: Glob (``*`` only) over cache keys; everything if omitted

        Returns:
            Number of entries removed
        """
        if self.cache is None:
            return 0
        if pattern is not None:
            return await self.cache.invalidate_pattern(pattern)

        size = (await self.cache.stats()).size
        await self.cache.clear()
        return size

    def reset_circuit_breaker(self) -> None:
        self.breakers.get(self.breaker_name).reset()

    async def health_check(self) -> HealthCheckResponse:
        """
        Probe the upstream, the cache and the breaker.

        The upstream probe bypasses cache, retries and the breaker so it
        never changes breaker state.
        """
        components: dict[str, str] = {}
        details: dict[str, Any] = {}

        probe = await self.request(
            "GET",
            self.health_path,
            options=RequestOptions(cache=False, retries=False, circuit_breaker=False),
        )
        if probe.success:
            components["upstream"] = "healthy"
        elif probe.error.code in (
            ErrorType.AUTHENTICATION_ERROR,
            ErrorType.AUTHORIZATION_ERROR,
            ErrorType.NOT_FOUND_ERROR,
        ):
            # Reachable, but the probe itself was refused
            components["upstream"] = "degraded"
        else:
            components["upstream"] = "unhealthy"
        details["upstream"] = {
            "duration_ms": probe.metadata.duration_ms,
            "error": probe.error.code if probe.error else None,
        }

        if self.cache is None:
            components["cache"] = "disabled"
        elif isinstance(self.cache, RedisCacheBackend):
            components["cache"] = "healthy" if await self.cache.ping() else "unhealthy"
        else:
            components["cache"] = "healthy"

        if self.enable_circuit_breaker:
            breaker_stats = self.breakers.get(self.breaker_name).stats()
            components["circuit_breaker"] = {
                CircuitState.CLOSED: "healthy",
                CircuitState.HALF_OPEN: "degraded",
                CircuitState.OPEN: "unhealthy",
            }[breaker_stats.state]
            details["circuit_breaker"] = breaker_stats.to_dict()

        if components["upstream"] == "unhealthy":
            status = "unhealthy"
        elif any(value in ("degraded", "unhealthy") for value in components.values()):
            status = "degraded"
        else:
            status = "healthy"

        logger.info("aem_health_check", status=status, components=components)
        return HealthCheckResponse(status=status, components=components, details=details)

    async def close(self) -> None:
        """Release every collaborator the client created."""
        for resource in self._owned:
            if isinstance(resource, MemoryCache):
                await resource.stop_cleanup()
            elif isinstance(resource, RedisCacheBackend):
                await resource.close()
            elif isinstance(resource, AuthManager):
                await resource.close()
            else:
                await resource.aclose()
        self._owned.clear()
        logger.info("aem_client_closed", base_url=self.config.base_url)


def create_aem_client(config: Optional[AEMConfig] = None, **kwargs: Any) -> AEMHttpClient:
    """
    Create a client with default collaborators.

    Args:
        config: Connection settings (loaded from the environment if omitted)
        **kwargs: Collaborator overrides passed to AEMHttpClient

    Example:
        >>> client = create_aem_client()
        >>> response = await client.get("/bin/querybuilder.json", params={"path": "/content"})
    """
    return AEMHttpClient(config or AEMConfig.from_env(), **kwargs)
