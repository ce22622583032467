"""
Authentication managers for AEM as a Cloud Service.

Modes:
- basic: static ``Authorization: Basic`` header
- bearer: static access token that never expires
- oauth: client-credentials grant against Adobe IMS
- service-account: exchange of a pre-signed JWT assertion at Adobe IMS

Token-based managers refresh lazily from ``get_headers()``. Concurrent
callers share one in-flight refresh.
"""

import asyncio
import base64
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
import structlog

from src.aem.config import AuthConfig, AuthType
from src.aem.exceptions import AuthenticationError

logger = structlog.get_logger(__name__)

TOKEN_PATH = "/ims/token/v3"
JWT_EXCHANGE_PATH = "/ims/exchange/jwt"


@dataclass(frozen=True)
class AuthToken:
    """An access token and the monotonic time at which it stops being used."""

    value: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class AuthManager:
    """Base class: produces request headers for one auth mode."""

    auth_type: AuthType

    async def get_headers(self) -> dict[str, str]:
        raise NotImplementedError

    def invalidate(self) -> None:
        """Drop any cached credential so the next call re-authenticates."""

    async def close(self) -> None:
        """Release resources owned by the manager."""


class BasicAuthManager(AuthManager):
    auth_type = AuthType.BASIC

    def __init__(self, username: str, password: str) -> None:
        encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
        self._header = f"Basic {encoded}"

    async def get_headers(self) -> dict[str, str]:
        return {"Authorization": self._header}


class BearerAuthManager(AuthManager):
    auth_type = AuthType.BEARER

    def __init__(self, access_token: str) -> None:
        self._header = f"Bearer {access_token}"

    async def get_headers(self) -> dict[str, str]:
        return {"Authorization": self._header}


class TokenAuthManager(AuthManager):
    """
    Base for modes that obtain short-lived tokens from Adobe IMS.

    Subclasses implement ``_request_token`` returning the IMS JSON body.

    Attributes:
        ims_url: IMS base URL
        expiry_margin: Seconds subtracted from ``expires_in`` so a token is
            replaced before IMS stops accepting it
    """

    def __init__(
        self,
        config: AuthConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        expiry_margin: float = 60.0,
        request_timeout: float = 30.0,
    ) -> None:
        self.config = config
        self.ims_url = config.ims_url.rstrip("/")
        self.expiry_margin = expiry_margin
        self._clock = clock
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=request_timeout)
        self._token: Optional[AuthToken] = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def token(self) -> Optional[AuthToken]:
        return self._token

    async def get_headers(self) -> dict[str, str]:
        token = self._token
        if token is None or token.is_expired(self._clock()):
            token = await self._refresh()
        return {"Authorization": f"Bearer {token.value}"}

    def invalidate(self) -> None:
        if self._token is not None:
            logger.info("auth_token_invalidated", auth_type=self.auth_type.value)
        self._token = None

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _refresh(self) -> AuthToken:
        async with self._lock:
            # Another caller may have refreshed while this one waited
            token = self._token
            if token is not None and not token.is_expired(self._clock()):
                return token

            logger.debug("auth_token_refresh_started", auth_type=self.auth_type.value)
            body = await self._request_token()

            access_token = body.get("access_token") if isinstance(body, dict) else None
            if not access_token:
                raise AuthenticationError(
                    f"Invalid {self.auth_type.value} response: missing access token",
                    retryable=False,
                )

            expires_in = float(body.get("expires_in", 3600))
            lifetime = max(0.0, expires_in - self.expiry_margin)
            token = AuthToken(value=access_token, expires_at=self._clock() + lifetime)
            self._token = token
            self.refresh_count += 1

            logger.info(
                "auth_token_refreshed",
                auth_type=self.auth_type.value,
                expires_in=expires_in,
                token_type=body.get("token_type"),
            )
            return token

    async def _post_form(self, path: str, form: dict[str, str]) -> dict[str, Any]:
        url = f"{self.ims_url}{path}"
        try:
            response = await self._http.post(
                url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.error(
                "auth_token_refresh_failed",
                auth_type=self.auth_type.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise AuthenticationError(
                f"{self.auth_type.value} token refresh failed: {e}",
                retryable=False,
                details={"error_type": type(e).__name__},
            ) from e

        if response.status_code != 200:
            logger.error(
                "auth_token_refresh_failed",
                auth_type=self.auth_type.value,
                status=response.status_code,
            )
            raise AuthenticationError(
                f"{self.auth_type.value} token refresh failed with status {response.status_code}",
                retryable=False,
                details={"status": response.status_code},
            )

        try:
            return response.json()
        except ValueError as e:
            raise AuthenticationError(
                f"Invalid {self.auth_type.value} response: body is not JSON",
                retryable=False,
            ) from e

    async def _request_token(self) -> dict[str, Any]:
        raise NotImplementedError


class OAuthManager(TokenAuthManager):
    """Client-credentials grant against the IMS token endpoint."""

    auth_type = AuthType.OAUTH

    async def _request_token(self) -> dict[str, Any]:
        form = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id or "",
            "client_secret": self.config.client_secret.get_secret_value(),
        }
        if self.config.scope:
            form["scope"] = self.config.scope
        return await self._post_form(TOKEN_PATH, form)


class ServiceAccountAuthManager(TokenAuthManager):
    """
    Exchanges a service-account JWT assertion for an access token.

    The assertion is signed outside this process (for example by the
    deployment's secret manager) and supplied via configuration.
    """

    auth_type = AuthType.SERVICE_ACCOUNT

    async def _request_token(self) -> dict[str, Any]:
        form = {
            "client_id": self.config.client_id or "",
            "client_secret": self.config.client_secret.get_secret_value(),
            "jwt_token": self.config.service_account_jwt.get_secret_value(),
        }
        return await self._post_form(JWT_EXCHANGE_PATH, form)


def create_auth_manager(
    config: AuthConfig,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], float] = time.monotonic,
) -> AuthManager:
    """
    Build the manager for ``config.type``.

    Args:
        config: Validated auth configuration
        http_client: Client used for IMS calls (one is created if omitted)
        clock: Monotonic clock used for token expiry
    """
    if config.type == AuthType.BASIC:
        return BasicAuthManager(config.username, config.password.get_secret_value())
    if config.type == AuthType.BEARER:
        return BearerAuthManager(config.access_token.get_secret_value())
    if config.type == AuthType.OAUTH:
        return OAuthManager(config, http_client=http_client, clock=clock)
    if config.type == AuthType.SERVICE_ACCOUNT:
        return ServiceAccountAuthManager(config, http_client=http_client, clock=clock)
    raise ValueError(f"Unsupported auth type: {config.type}")
