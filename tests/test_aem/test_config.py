"""Unit tests for environment-driven configuration."""

import pydantic
import pytest

from src.aem.config import AEMConfig, AuthConfig, AuthType, CacheConfig
from src.cache.base import EvictionStrategy

AEM_VARS = [
    "AEM_HOST",
    "AEM_PORT",
    "AEM_PROTOCOL",
    "AEM_BASE_PATH",
    "AEM_TIMEOUT",
    "AEM_RETRY_ATTEMPTS",
    "AEM_AUTH_TYPE",
    "AEM_USERNAME",
    "AEM_PASSWORD",
    "AEM_CLIENT_ID",
    "AEM_CLIENT_SECRET",
    "AEM_ACCESS_TOKEN",
    "AEM_SERVICE_ACCOUNT_JWT",
    "REDIS_URL",
    "CACHE_ENABLED",
    "CACHE_STRATEGY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in AEM_VARS:
        monkeypatch.delenv(name, raising=False)


class TestAuthConfig:
    """Test suite for AuthConfig."""

    def test_basic_requires_credentials(self):
        with pytest.raises(pydantic.ValidationError):
            AuthConfig(type=AuthType.BASIC, username="admin")

    def test_oauth_requires_client(self):
        with pytest.raises(pydantic.ValidationError):
            AuthConfig(type=AuthType.OAUTH, client_id="id")

    def test_service_account_requires_jwt(self):
        with pytest.raises(pydantic.ValidationError):
            AuthConfig(type=AuthType.SERVICE_ACCOUNT, client_id="id", client_secret="s")

    def test_secrets_hidden_in_repr(self):
        config = AuthConfig(type=AuthType.BASIC, username="admin", password="hunter2")

        assert "hunter2" not in repr(config)

    def test_infers_bearer(self, monkeypatch):
        monkeypatch.setenv("AEM_ACCESS_TOKEN", "tok")

        assert AuthConfig.from_env().type == AuthType.BEARER

    def test_infers_oauth(self, monkeypatch):
        monkeypatch.setenv("AEM_CLIENT_ID", "id")
        monkeypatch.setenv("AEM_CLIENT_SECRET", "secret")

        assert AuthConfig.from_env().type == AuthType.OAUTH

    def test_explicit_type(self, monkeypatch):
        monkeypatch.setenv("AEM_AUTH_TYPE", "service-account")
        monkeypatch.setenv("AEM_CLIENT_ID", "id")
        monkeypatch.setenv("AEM_CLIENT_SECRET", "secret")
        monkeypatch.setenv("AEM_SERVICE_ACCOUNT_JWT", "eyJ...")

        assert AuthConfig.from_env().type == AuthType.SERVICE_ACCOUNT


class TestCacheConfig:
    """Test suite for CacheConfig."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CACHE_ENABLED", "false")
        monkeypatch.setenv("CACHE_STRATEGY", "LFU")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")

        config = CacheConfig.from_env()

        assert config.enabled is False
        assert config.strategy == EvictionStrategy.LFU
        assert config.redis_url == "redis://cache:6379/0"

    def test_defaults(self):
        config = CacheConfig.from_env()

        assert config.enabled is True
        assert config.ttl == 300
        assert config.max_size == 1000
        assert config.redis_url is None


class TestAEMConfig:
    """Test suite for AEMConfig."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("AEM_HOST", "author-p1-e1.adobeaemcloud.com")
        monkeypatch.setenv("AEM_ACCESS_TOKEN", "tok")
        monkeypatch.setenv("AEM_TIMEOUT", "10")

        config = AEMConfig.from_env()

        assert config.base_url == "https://author-p1-e1.adobeaemcloud.com:443"
        assert config.breaker_name == "aem-author-p1-e1.adobeaemcloud.com:443"
        assert config.timeout == 10

    def test_missing_host_fails(self, monkeypatch):
        monkeypatch.setenv("AEM_ACCESS_TOKEN", "tok")

        with pytest.raises(pydantic.ValidationError):
            AEMConfig.from_env()

    def test_explicit_port_and_base_path(self):
        config = AEMConfig(
            host="localhost",
            port=4502,
            protocol="http",
            base_path="/author/",
            auth=AuthConfig(type=AuthType.BASIC, username="admin", password="admin"),
        )

        assert config.base_url == "http://localhost:4502/author"
        assert config.breaker_name == "aem-localhost:4502"

    def test_rejects_bad_protocol(self):
        with pytest.raises(pydantic.ValidationError):
            AEMConfig(
                host="localhost",
                protocol="ftp",
                auth=AuthConfig(type=AuthType.BEARER, access_token="t"),
            )
