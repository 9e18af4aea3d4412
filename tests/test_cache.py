"""Tests for the TTL cache."""

from quantumania.cache import CacheEntry, TTLCache, cache_key


class TestCacheKey:
    def test_params_order_does_not_matter(self):
        assert cache_key("jobs", {"limit": 50, "offset": 0}) == cache_key(
            "jobs", {"offset": 0, "limit": 50}
        )

    def test_no_params(self):
        assert cache_key("backends") == cache_key("backends", {})
        assert cache_key("backends") != cache_key("jobs")

    def test_different_params_differ(self):
        assert cache_key("jobs", {"limit": 50}) != cache_key("jobs", {"limit": 100})


class TestCacheEntry:
    def test_validity_window(self):
        entry = CacheEntry(value="x", timestamp=100.0, ttl=15.0)
        assert entry.is_valid(100.0)
        assert entry.is_valid(114.999)
        assert not entry.is_valid(115.0)


class TestTTLCache:
    def test_hit_inside_ttl(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("jobs", [1, 2, 3], ttl=15)
        clock.advance(15 - 0.001)
        assert cache.get("jobs") == [1, 2, 3]

    def test_miss_after_ttl(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("jobs", [1, 2, 3], ttl=15)
        clock.advance(15 + 0.001)
        assert cache.get("jobs") is None
        # Expired entries are evicted on read
        assert len(cache) == 0

    def test_default_ttl(self, clock):
        cache = TTLCache(default_ttl=5, clock=clock)
        cache.set("queue", 4)
        clock.advance(4)
        assert "queue" in cache
        clock.advance(2)
        assert "queue" not in cache

    def test_set_replaces_and_restarts_ttl(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("k", "old", ttl=10)
        clock.advance(8)
        cache.set("k", "new", ttl=10)
        clock.advance(8)
        assert cache.get("k") == "new"

    def test_stats(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("missing")

        stats = cache.stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["size"] == 1
        assert abs(stats["hit_rate"] - 2 / 3) < 1e-9

    def test_empty_stats(self):
        assert TTLCache().stats() == {"hits": 0, "misses": 0, "hit_rate": 0.0, "size": 0}

    def test_remove(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("a", 1)
        assert cache.remove("a") is True
        assert cache.remove("a") is False
        assert cache.get("a") is None

    def test_clear(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")

        cache.clear()

        assert len(cache) == 0
        assert cache.get("b") is None
        assert cache.stats()["hits"] == 0
