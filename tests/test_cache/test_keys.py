"""Unit tests for cache key generation."""

import pytest

from src.cache.keys import CacheKeyGenerator


class TestCacheKeyGenerator:
    """Test suite for CacheKeyGenerator class."""

    def test_generate_basic_key(self):
        """Test basic cache key generation."""
        key = CacheKeyGenerator.generate("GET", "/content/site.json", {"depth": 1})

        assert key.startswith("aem:GET:/content/site.json:")
        assert key.endswith(":v1")

    def test_generate_uppercases_method(self):
        """Test that the method is normalized to upper case."""
        key1 = CacheKeyGenerator.generate("get", "/content/site.json")
        key2 = CacheKeyGenerator.generate("GET", "/content/site.json")

        assert key1 == key2

    def test_generate_order_independent(self):
        """Test that parameter order doesn't affect key."""
        params1 = {"path": "/content", "type": "cq:Page", "p.limit": 10}
        params2 = {"p.limit": 10, "type": "cq:Page", "path": "/content"}

        key1 = CacheKeyGenerator.generate("GET", "/bin/querybuilder.json", params1)
        key2 = CacheKeyGenerator.generate("GET", "/bin/querybuilder.json", params2)

        assert key1 == key2

    def test_generate_different_params_different_keys(self):
        """Test that different params generate different keys."""
        key1 = CacheKeyGenerator.generate("GET", "/content/site.json", {"depth": 1})
        key2 = CacheKeyGenerator.generate("GET", "/content/site.json", {"depth": 2})

        assert key1 != key2

    def test_generate_different_paths_different_keys(self):
        """Test that different paths generate different keys."""
        key1 = CacheKeyGenerator.generate("GET", "/content/a.json")
        key2 = CacheKeyGenerator.generate("GET", "/content/b.json")

        assert key1 != key2

    def test_none_and_empty_params_share_key(self):
        """Test that missing params hash like an empty mapping."""
        assert CacheKeyGenerator.generate("GET", "/content") == CacheKeyGenerator.generate(
            "GET", "/content", {}
        )

    def test_generate_hash_length(self):
        """Test that hash is exactly 12 characters."""
        key = CacheKeyGenerator.generate("GET", "/content/site.json", {"q": "test"})

        assert len(CacheKeyGenerator.parse(key)["params_hash"]) == 12

    def test_generate_with_non_json_values(self):
        """Test that non-JSON values are stringified rather than rejected."""
        from datetime import date

        key = CacheKeyGenerator.generate("GET", "/content", {"since": date(2024, 1, 1)})

        assert key.endswith(":v1")

    def test_parse_valid_key(self):
        """Test parsing a valid cache key."""
        parsed = CacheKeyGenerator.parse("aem:GET:/content/site.json:a3f8d9c2e1b4:v1")

        assert parsed == {
            "prefix": "aem",
            "method": "GET",
            "path": "/content/site.json",
            "params_hash": "a3f8d9c2e1b4",
            "version": "v1",
        }

    def test_parse_path_with_colons(self):
        """Test that JCR paths containing ':' round-trip."""
        key = CacheKeyGenerator.generate("GET", "/content/site/jcr:content.json", {"a": 1})

        parsed = CacheKeyGenerator.parse(key)

        assert parsed["path"] == "/content/site/jcr:content.json"
        assert parsed["method"] == "GET"

    def test_parse_invalid_key_raises_error(self):
        """Test that parsing invalid key raises ValueError."""
        with pytest.raises(ValueError) as exc_info:
            CacheKeyGenerator.parse("aem:GET:invalid")

        assert "Invalid cache key format" in str(exc_info.value)

    def test_pattern_for_path(self):
        """Test subtree invalidation pattern."""
        assert CacheKeyGenerator.pattern_for_path("/content/site") == "aem:*:/content/site*"
