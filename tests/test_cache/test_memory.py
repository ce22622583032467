"""Unit tests for the in-memory cache."""

import asyncio

import pytest

from src.cache.base import CacheBackend, EvictionStrategy
from src.cache.memory import MemoryCache, compile_pattern


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestMemoryCache:
    """Test suite for MemoryCache class."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return MemoryCache(max_size=10, default_ttl=300, clock=clock)

    def test_implements_backend_contract(self, cache):
        """Test that MemoryCache satisfies the CacheBackend protocol."""
        assert isinstance(cache, CacheBackend)

    def test_rejects_zero_capacity(self):
        """Test that max_size must be positive."""
        with pytest.raises(ValueError):
            MemoryCache(max_size=0)

    @pytest.mark.asyncio
    async def test_set_then_get(self, cache):
        """Test a stored value is returned and counted as a hit."""
        await cache.set("k", {"title": "Home"})

        assert await cache.get("k") == {"title": "Home"}
        stats = await cache.stats()
        assert stats.hits == 1
        assert stats.sets == 1

    @pytest.mark.asyncio
    async def test_get_missing_counts_miss(self, cache):
        """Test get() on a missing key returns None and counts a miss."""
        assert await cache.get("missing") is None
        assert (await cache.stats()).misses == 1

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, cache, clock):
        """Test that an entry is served until its TTL passes, then removed."""
        await cache.set("k", "v", ttl=0.1)

        clock.advance(0.05)
        assert await cache.get("k") == "v"

        clock.advance(0.1)
        assert await cache.get("k") is None
        assert len(cache) == 0
        stats = await cache.stats()
        assert stats.hits == 1
        assert stats.misses == 1

    @pytest.mark.asyncio
    async def test_entry_absent_at_exact_expiry(self, cache, clock):
        """Test an entry is gone exactly at stored_at + ttl."""
        await cache.set("k", "v", ttl=10)

        clock.advance(9.5)
        assert await cache.has("k") is True

        clock.advance(0.5)
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_default_ttl_used_when_none(self, cache, clock):
        """Test set() without ttl falls back to the default TTL."""
        await cache.set("k", "v")

        clock.advance(299)
        assert await cache.has("k") is True

        clock.advance(2)
        assert await cache.has("k") is False

    @pytest.mark.asyncio
    async def test_has_does_not_touch_stats(self, cache):
        """Test has() leaves hit/miss counters untouched."""
        await cache.set("k", "v")

        assert await cache.has("k") is True
        assert await cache.has("other") is False
        stats = await cache.stats()
        assert stats.hits == 0
        assert stats.misses == 0

    @pytest.mark.asyncio
    async def test_delete(self, cache):
        """Test delete() reports whether a key was removed."""
        await cache.set("k", "v")

        assert await cache.delete("k") is True
        assert await cache.delete("k") is False
        assert (await cache.stats()).deletes == 1

    @pytest.mark.asyncio
    async def test_lru_eviction(self, clock):
        """Test the least recently used entry is evicted when full."""
        cache = MemoryCache(max_size=3, default_ttl=300, clock=clock)
        for key in ("a", "b", "c"):
            await cache.set(key, key)
            clock.advance(1)

        await cache.get("a")
        clock.advance(1)
        await cache.set("d", "d")

        assert await cache.has("a")
        assert not await cache.has("b")
        assert await cache.has("c")
        assert await cache.has("d")

    @pytest.mark.asyncio
    async def test_lfu_eviction(self, clock):
        """Test the least frequently used entry is evicted when full."""
        cache = MemoryCache(
            max_size=3, default_ttl=300, strategy=EvictionStrategy.LFU, clock=clock
        )
        for key in ("a", "b", "c"):
            await cache.set(key, key)
        await cache.get("a")
        await cache.get("c")

        await cache.set("d", "d")

        assert not await cache.has("b")
        assert len(cache) == 3

    @pytest.mark.asyncio
    async def test_ttl_eviction(self, clock):
        """Test the entry closest to expiry is evicted when full."""
        cache = MemoryCache(
            max_size=3, default_ttl=300, strategy=EvictionStrategy.TTL, clock=clock
        )
        await cache.set("long", 1, ttl=600)
        await cache.set("short", 2, ttl=10)
        await cache.set("medium", 3, ttl=100)

        await cache.set("new", 4)

        assert not await cache.has("short")
        assert await cache.has("long")

    @pytest.mark.asyncio
    async def test_evicts_ten_percent(self, clock):
        """Test that a full cache drops floor(10%) of its entries."""
        cache = MemoryCache(max_size=20, default_ttl=300, clock=clock)
        for i in range(20):
            await cache.set(f"k{i}", i)
            clock.advance(1)

        await cache.set("new", "x")

        assert len(cache) == 19
        assert not await cache.has("k0")
        assert not await cache.has("k1")
        assert await cache.has("k2")

    @pytest.mark.asyncio
    async def test_overwrite_never_evicts(self, clock):
        """Test overwriting an existing key on a full cache keeps every entry."""
        cache = MemoryCache(max_size=2, default_ttl=300, clock=clock)
        await cache.set("a", 1)
        await cache.set("b", 2)

        await cache.set("a", 3)

        assert len(cache) == 2
        assert await cache.get("a") == 3

    @pytest.mark.asyncio
    async def test_invalidate_pattern(self, cache):
        """Test glob invalidation removes only matching keys."""
        await cache.set("aem:GET:/content/site/a.json:h:v1", 1)
        await cache.set("aem:GET:/content/site/b.json:h:v1", 2)
        await cache.set("aem:GET:/content/other.json:h:v1", 3)

        deleted = await cache.invalidate_pattern("aem:*:/content/site*")

        assert deleted == 2
        assert await cache.has("aem:GET:/content/other.json:h:v1")

    @pytest.mark.asyncio
    async def test_invalidate_pattern_matches_inside_key(self, cache):
        """Test a bare path pattern removes keys containing that path."""
        await cache.set("aem:GET:/content/site/en.json:h:v1", 1)
        await cache.set("aem:GET:/content/other.json:h:v1", 2)

        assert await cache.invalidate_pattern("/content/site*") == 1
        assert await cache.invalidate_pattern("/content/site*") == 0
        assert await cache.has("aem:GET:/content/other.json:h:v1")

    @pytest.mark.asyncio
    async def test_invalidate_pattern_is_idempotent(self, cache):
        """Test invalidating the same pattern twice deletes nothing the second time."""
        await cache.set("aem:GET:/content/a:h:v1", 1)

        assert await cache.invalidate_pattern("aem:*") == 1
        assert await cache.invalidate_pattern("aem:*") == 0

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        """Test clear() empties the cache."""
        await cache.set("a", 1)
        await cache.set("b", 2)

        await cache.clear()

        assert (await cache.stats()).size == 0

    @pytest.mark.asyncio
    async def test_stats_hit_rate(self, cache):
        """Test hit rate is hits over lookups."""
        await cache.set("k", "v")
        await cache.get("k")
        await cache.get("k")
        await cache.get("k")
        await cache.get("missing")

        stats = (await cache.stats()).to_dict()

        assert stats["hit_rate"] == 0.75
        assert stats["size"] == 1
        assert stats["max_size"] == 10

    def test_purge_expired(self, clock):
        """Test purge_expired() removes only expired entries."""
        cache = MemoryCache(max_size=10, default_ttl=300, clock=clock)
        asyncio.run(cache.set("old", 1, ttl=1))
        asyncio.run(cache.set("fresh", 2, ttl=100))

        clock.advance(5)

        assert cache.purge_expired() == 1
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_cleanup_task_sweeps_expired_entries(self, clock):
        """Test the background cleanup removes expired entries."""
        cache = MemoryCache(max_size=10, default_ttl=300, cleanup_interval=0.01, clock=clock)
        await cache.set("old", 1, ttl=1)
        clock.advance(5)

        cache.start_cleanup()
        await asyncio.sleep(0.05)
        await cache.stop_cleanup()

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_stop_cleanup_without_start(self, cache):
        """Test stop_cleanup() is a no-op when nothing runs."""
        await cache.stop_cleanup()


class TestCompilePattern:
    """Test suite for glob pattern compilation."""

    def test_star_matches_empty(self):
        assert compile_pattern("aem:*").search("aem:")

    def test_other_characters_are_literal(self):
        regex = compile_pattern("aem:GET:/bin/querybuilder.json?p=1*")

        assert regex.search("aem:GET:/bin/querybuilder.json?p=1:abc:v1")
        assert not regex.search("aem:GET:/bin/querybuilderXjson?p=1:abc:v1")

    def test_match_anywhere_in_key(self):
        assert compile_pattern("/content/site*").search("aem:GET:/content/site/en.json:h:v1")
        assert not compile_pattern("/content/site*").search("aem:GET:/content/other.json:h:v1")
