"""
HTTP transport for AEM requests.

The pipeline only depends on the ``Transport`` protocol; HttpxTransport is
the pooled implementation used in production and ``httpx.MockTransport``
can be plugged into it for tests.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)

MAX_REDIRECTS = 5
USER_AGENT = "aem-request-core/1.0"


@dataclass
class TransportResponse:
    """Raw upstream answer before normalization."""

    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class Transport(Protocol):
    """
    Sends one HTTP request.

    Raises only transport-level errors (connect, read, timeout); an HTTP
    error status is returned as a TransportResponse.
    """

    async def invoke(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
        data: Optional[dict[str, Any]] = None,
        files: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse: ...

    async def aclose(self) -> None: ...


def parse_body(response: httpx.Response) -> Any:
    """JSON when the body parses as JSON, else text, else None."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpxTransport:
    """
    Transport over one long-lived ``httpx.AsyncClient``.

    Attributes:
        base_url: Scheme, host, port and base path of the AEM instance
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_connections: int = 10,
        max_keepalive_connections: int = 5,
        keepalive_expiry: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
                keepalive_expiry=keepalive_expiry,
            ),
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )
        logger.debug("http_transport_created", base_url=base_url)

    async def invoke(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
        data: Optional[dict[str, Any]] = None,
        files: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        kwargs: dict[str, Any] = {"params": params, "headers": headers}
        if json is not None:
            kwargs["json"] = json
        if data is not None:
            kwargs["data"] = data
        if files is not None:
            kwargs["files"] = files
        if timeout is not None:
            kwargs["timeout"] = timeout

        response = await self._client.request(method.upper(), url, **kwargs)

        logger.debug(
            "http_response_received",
            method=method.upper(),
            url=url,
            status=response.status_code,
        )
        return TransportResponse(
            status_code=response.status_code,
            body=parse_body(response),
            headers=dict(response.headers),
        )

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        await self._client.aclose()
        logger.debug("http_transport_closed", base_url=self.base_url)
