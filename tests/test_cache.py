"""Tests for the result cache."""

from __future__ import annotations

from dualmem.memory.cache import ResultCache, cache_key
from dualmem.memory.models import MemoryQuery


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestCacheKey:
    def test_same_query_same_key(self):
        a = MemoryQuery(type="knowledge", query="retry", context={"b": 1, "a": 2})
        b = MemoryQuery(type="knowledge", query="retry", context={"a": 2, "b": 1})
        assert cache_key(a) == cache_key(b)

    def test_limit_defaults_to_ten(self):
        a = MemoryQuery(type="knowledge", query="retry")
        b = MemoryQuery(type="knowledge", query="retry", limit=10)
        assert cache_key(a) == cache_key(b)

    def test_only_embedding_prefix_counts(self):
        a = MemoryQuery(type="knowledge", query="q", embedding=[1, 2, 3, 4, 5, 6])
        b = MemoryQuery(type="knowledge", query="q", embedding=[1, 2, 3, 4, 5, 99])
        c = MemoryQuery(type="knowledge", query="q", embedding=[0, 2, 3, 4, 5, 6])
        assert cache_key(a) == cache_key(b)
        assert cache_key(a) != cache_key(c)


class TestResultCache:
    def test_valid_until_ttl(self):
        clock = FakeClock()
        cache = ResultCache(ttl=600, clock=clock)
        cache.put("k", ["x"])

        clock.now += 599
        entry = cache.get("k")
        assert entry is not None
        assert entry.result == ["x"]
        assert entry.hits == 2

        clock.now += 1  # exactly ttl
        assert cache.get("k") is None
        assert "k" in cache

    def test_cleanup_drops_old_and_cold_entries(self):
        clock = FakeClock()
        cache = ResultCache(max_age=1800, min_hits=2, clock=clock)
        cache.put("cold", 1)
        cache.put("warm", 2)
        cache.get("warm")

        assert cache.cleanup() == 1
        assert "cold" not in cache
        assert "warm" in cache

        clock.now += 1801
        assert cache.cleanup() == 1
        assert len(cache) == 0

    def test_trim_keeps_most_hit(self):
        cache = ResultCache(clock=FakeClock())
        for i in range(12):
            cache.put(f"k{i}", i)
        for _ in range(3):
            cache.get("k7")
            cache.get("k3")

        assert cache.trim(ceiling=12, keep=2) == 0
        assert cache.trim(ceiling=10, keep=2) == 10
        assert set(cache._entries) == {"k7", "k3"}

    def test_clear(self):
        cache = ResultCache()
        cache.put("k", 1)
        cache.clear()
        assert len(cache) == 0
