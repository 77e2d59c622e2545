"""
Tests for the read-through cache.
"""
import time

from app.cache import CacheKeys, CacheSweeper, ReadThroughCache, invalidate_order_cache


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestReadThroughCache:

    def test_entries_expire_lazily(self):
        clock = FakeClock()
        cache = ReadThroughCache(clock=clock)
        cache.set("k", "v", ttl=30)

        clock.advance(30)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None
        assert cache.stats()["size"] == 0

    def test_get_or_load_calls_loader_once(self):
        cache = ReadThroughCache()
        calls = []

        def loader():
            calls.append(1)
            return ["order"]

        assert cache.get_or_load("orders:student:st-1", loader) == ["order"]
        assert cache.get_or_load("orders:student:st-1", loader) == ["order"]
        assert len(calls) == 1

    def test_load_racing_an_invalidation_is_not_stored(self):
        cache = ReadThroughCache()
        key = CacheKeys.user_orders("st-1", "student")

        def loader():
            # an order mutation commits while this read is in flight
            invalidate_order_cache(cache)
            return ["stale list"]

        assert cache.get_or_load(key, loader) == ["stale list"]
        assert cache.get(key) is None
        assert cache.get_or_load(key, lambda: ["fresh list"]) == ["fresh list"]
        assert cache.get(key) == ["fresh list"]

    def test_delete_and_clear_bump_generation(self):
        cache = ReadThroughCache()
        start = cache.generation
        cache.delete("missing")
        cache.clear()
        assert cache.generation == start + 2

    def test_none_results_are_cached(self):
        cache = ReadThroughCache()
        calls = []

        def loader():
            calls.append(1)
            return None

        cache.get_or_load("pricing:agent:ag-1", loader)
        cache.get_or_load("pricing:agent:ag-1", loader)
        assert len(calls) == 1

    def test_invalidate_order_cache_drops_only_order_lists(self):
        cache = ReadThroughCache()
        cache.set(CacheKeys.user_orders("st-1", "student"), [])
        cache.set(CacheKeys.user_orders("op-1", "super_agent"), [])
        cache.set(CacheKeys.pricing_config(), {"word_tiers": {}})

        assert invalidate_order_cache(cache) == 2
        assert cache.stats()["keys"] == [CacheKeys.pricing_config()]

    def test_cleanup_removes_expired_entries(self):
        clock = FakeClock()
        cache = ReadThroughCache(clock=clock)
        cache.set("short", 1, ttl=10)
        cache.set("long", 2, ttl=100)

        clock.advance(50)
        assert cache.cleanup() == 1
        assert cache.stats()["keys"] == ["long"]

    def test_delete_and_clear(self):
        cache = ReadThroughCache()
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.clear()
        assert cache.stats()["size"] == 0


class TestCacheSweeper:

    def test_sweeps_in_background_until_stopped(self):
        clock = FakeClock()
        cache = ReadThroughCache(clock=clock)
        cache.set("stale", 1, ttl=1)
        clock.advance(5)

        sweeper = CacheSweeper(cache, interval_seconds=0.01)
        sweeper.start()
        try:
            deadline = time.monotonic() + 2
            while cache.stats()["size"] and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            sweeper.stop()

        assert cache.stats()["size"] == 0
        assert sweeper._thread is None
