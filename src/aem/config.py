"""
Environment-driven configuration for the AEM request core.

Every model can be built directly (tests, embedding applications) or
loaded from environment variables with ``from_env()``. Invalid values
surface as pydantic ValidationError at startup.
"""

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, SecretStr, model_validator

from src.cache.base import EvictionStrategy
from src.resilience.circuit_breaker import CircuitBreakerConfig

DEFAULT_IMS_URL = "https://ims-na1.adobelogin.com"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class AuthType(str, Enum):
    """How requests authenticate against AEM."""

    BASIC = "basic"
    BEARER = "bearer"
    OAUTH = "oauth"
    SERVICE_ACCOUNT = "service-account"


class AuthConfig(BaseModel):
    """
    Credentials for one auth mode.

    Only the fields the selected mode needs are required.
    """

    type: AuthType = AuthType.BASIC
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    client_id: Optional[str] = None
    client_secret: Optional[SecretStr] = None
    access_token: Optional[SecretStr] = None
    service_account_jwt: Optional[SecretStr] = None
    ims_url: str = DEFAULT_IMS_URL
    scope: Optional[str] = None

    @model_validator(mode="after")
    def _check_credentials(self) -> "AuthConfig":
        if self.type == AuthType.BASIC and (not self.username or self.password is None):
            raise ValueError("basic auth requires username and password")
        if self.type == AuthType.BEARER and self.access_token is None:
            raise ValueError("bearer auth requires access_token")
        if self.type == AuthType.OAUTH and (not self.client_id or self.client_secret is None):
            raise ValueError("oauth requires client_id and client_secret")
        if self.type == AuthType.SERVICE_ACCOUNT and (
            not self.client_id
            or self.client_secret is None
            or self.service_account_jwt is None
        ):
            raise ValueError(
                "service-account auth requires client_id, client_secret and service_account_jwt"
            )
        return self

    @classmethod
    def from_env(cls) -> "AuthConfig":
        """
        Load credentials from AEM_* variables.

        Without AEM_AUTH_TYPE the mode is inferred: an access token means
        bearer, a client id and secret mean oauth, otherwise basic.
        """
        auth_type = os.getenv("AEM_AUTH_TYPE")
        if not auth_type:
            if os.getenv("AEM_ACCESS_TOKEN"):
                auth_type = AuthType.BEARER.value
            elif os.getenv("AEM_CLIENT_ID") and os.getenv("AEM_CLIENT_SECRET"):
                auth_type = AuthType.OAUTH.value
            else:
                auth_type = AuthType.BASIC.value

        return cls(
            type=AuthType(auth_type.lower()),
            username=os.getenv("AEM_USERNAME"),
            password=os.getenv("AEM_PASSWORD"),
            client_id=os.getenv("AEM_CLIENT_ID"),
            client_secret=os.getenv("AEM_CLIENT_SECRET"),
            access_token=os.getenv("AEM_ACCESS_TOKEN"),
            service_account_jwt=os.getenv("AEM_SERVICE_ACCOUNT_JWT"),
            ims_url=os.getenv("AEM_IMS_URL", DEFAULT_IMS_URL),
            scope=os.getenv("AEM_IMS_SCOPE"),
        )


class CacheConfig(BaseModel):
    """Response cache settings. Durations are in seconds."""

    enabled: bool = True
    ttl: float = Field(300.0, gt=0, description="Default entry TTL")
    max_size: int = Field(1000, ge=1, description="Memory cache capacity")
    strategy: EvictionStrategy = EvictionStrategy.LRU
    cleanup_interval: float = Field(60.0, gt=0, description="Background sweep period")
    redis_url: Optional[str] = Field(None, description="Use Redis instead of memory when set")
    raise_on_write_error: bool = False

    @classmethod
    def from_env(cls) -> "CacheConfig":
        return cls(
            enabled=_env_bool("CACHE_ENABLED", True),
            ttl=float(os.getenv("CACHE_TTL", "300")),
            max_size=int(os.getenv("CACHE_MAX_SIZE", "1000")),
            strategy=EvictionStrategy(os.getenv("CACHE_STRATEGY", "lru").lower()),
            cleanup_interval=float(os.getenv("CACHE_CLEANUP_INTERVAL", "60")),
            redis_url=os.getenv("REDIS_URL") or None,
            raise_on_write_error=_env_bool("CACHE_RAISE_ON_WRITE_ERROR", False),
        )


class AEMConfig(BaseModel):
    """
    Connection settings for one AEM environment.

    Example:
        >>> config = AEMConfig(
        ...     host="author-p1-e1.adobeaemcloud.com",
        ...     auth=AuthConfig(type=AuthType.BEARER, access_token="t"),
        ... )
        >>> config.base_url
        'https://author-p1-e1.adobeaemcloud.com:443'
    """

    host: str = Field(..., min_length=1)
    port: Optional[int] = Field(None, ge=1, le=65535)
    protocol: str = Field("https", pattern="^https?$")
    base_path: str = ""
    timeout: float = Field(30.0, gt=0, description="Per-attempt timeout in seconds")
    retry_attempts: int = Field(3, ge=1)
    retry_delay: float = Field(1.0, ge=0, description="Backoff base delay in seconds")
    auth: AuthConfig
    cache: CacheConfig = Field(default_factory=CacheConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    @property
    def effective_port(self) -> int:
        if self.port is not None:
            return self.port
        return 443 if self.protocol == "https" else 80

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.effective_port}{self.base_path.rstrip('/')}"

    @property
    def breaker_name(self) -> str:
        """Circuit breaker key for this target."""
        return f"aem-{self.host}:{self.effective_port}"

    @classmethod
    def from_env(cls) -> "AEMConfig":
        port = os.getenv("AEM_PORT")
        return cls(
            host=os.getenv("AEM_HOST", ""),
            port=int(port) if port else None,
            protocol=os.getenv("AEM_PROTOCOL", "https").lower(),
            base_path=os.getenv("AEM_BASE_PATH", ""),
            timeout=float(os.getenv("AEM_TIMEOUT", "30")),
            retry_attempts=int(os.getenv("AEM_RETRY_ATTEMPTS", "3")),
            retry_delay=float(os.getenv("AEM_RETRY_DELAY", "1")),
            auth=AuthConfig.from_env(),
            cache=CacheConfig.from_env(),
            circuit_breaker=CircuitBreakerConfig.from_env(),
        )
