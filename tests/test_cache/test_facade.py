"""Tests for CacheFacade -- tier ordering, promotion, keys and invalidation."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from tiercache.cache import CacheFacade, PersistentCache, VolatileCache, create_cache
from tiercache.clock import ManualClock
from tiercache.metrics import MetricsCollector
from tiercache.models import CacheCategory, CacheConfig


# ------------------------------------------------------------------ #
# Tier ordering and promotion
# ------------------------------------------------------------------ #


class TestTiers:
    def test_set_writes_both_tiers(self, cache: CacheFacade) -> None:
        cache.set("cat_1", {"name": "Brakes"}, ttl=1800)
        assert cache.volatile.get("cat_1") == {"name": "Brakes"}
        assert cache.persistent is not None
        assert cache.persistent.get("cat_1") == {"name": "Brakes"}

    def test_round_trip(self, cache: CacheFacade) -> None:
        cache.set("cat_1", {"id": 1, "name": "Brakes"}, ttl=1800)
        assert cache.get("cat_1") == {"id": 1, "name": "Brakes"}

    def test_persistent_hit_is_promoted(self, cache: CacheFacade) -> None:
        cache.set("cat_1", [1, 2, 3], ttl=1800)
        cache.volatile.clear()

        assert cache.get("cat_1") == [1, 2, 3]
        assert "cat_1" in cache.volatile

    def test_promotion_uses_default_ttl(self, cache: CacheFacade, clock: ManualClock) -> None:
        cache.set("cat_1", "v", ttl=1800)
        cache.volatile.clear()
        cache.get("cat_1")

        clock.advance(cache.config.default_ttl_seconds + 1)
        assert cache.volatile.get("cat_1") is None
        assert cache.get("cat_1") == "v"

    def test_allow_persistent_false_skips_durable_tier(self, cache: CacheFacade) -> None:
        cache.set("k", "v", ttl=60)
        cache.volatile.clear()
        assert cache.get("k", allow_persistent=False) is None
        assert cache.get("k", allow_persistent=False, default="d") == "d"

    def test_persist_false_stays_in_memory(self, cache: CacheFacade) -> None:
        cache.set("k", "v", ttl=60, persist=False)
        assert cache.persistent is not None
        assert cache.persistent.get("k") is None
        assert cache.get("k") == "v"

    def test_memory_only_overwrite_drops_persisted_value(self, cache: CacheFacade) -> None:
        cache.set("k", "v1", ttl=1000)
        cache.set("k", "v2", ttl=1000, persist=False)
        cache.volatile.clear()
        assert cache.get("k") is None

    def test_unserialisable_overwrite_never_serves_old_value(self, cache: CacheFacade) -> None:
        cache.set("k", "v1", ttl=1000)
        cache.set("k", {1, 2}, ttl=1000)
        assert cache.get("k") == {1, 2}
        cache.volatile.delete("k")
        assert cache.get("k") is None

    def test_overwrite_with_persistence_disabled(
        self, store_dir: Path, clock: ManualClock
    ) -> None:
        volatile = VolatileCache(clock=clock)
        persistent = PersistentCache(store_dir, clock=clock)
        try:
            persistent.set("k", "v1", ttl=1000)
            facade = CacheFacade(volatile, persistent, CacheConfig(enabled_persistent=False))
            facade.set("k", "v2", ttl=1000)
            volatile.clear()
            assert facade.get("k") is None
        finally:
            persistent.close()

    def test_survives_restart(self, store_dir: Path, clock: ManualClock) -> None:
        first = create_cache(store_dir, clock=clock)
        first.set("brands_{}", ["acme"], ttl=1800)
        first.close()

        second = create_cache(store_dir, clock=clock)
        try:
            assert second.get("brands_{}") == ["acme"]
        finally:
            second.close()

    def test_expiry_in_both_tiers(self, cache: CacheFacade, clock: ManualClock) -> None:
        cache.set("k", "v", ttl=5)
        clock.advance(5.001)
        assert cache.get("k") is None

    def test_delete_and_clear(self, cache: CacheFacade) -> None:
        cache.set("a", 1)
        cache.set("b", 2)
        cache.delete("a")
        assert cache.get("a") is None
        cache.clear()
        assert cache.get("b") is None
        assert cache.get_stats()["storage_size"] == 0


class TestMemoryOnly:
    def test_without_store_dir(self, clock: ManualClock) -> None:
        facade = create_cache(None, clock=clock)
        assert facade.persistent is None
        facade.set("k", "v")
        assert facade.get("k") == "v"
        assert facade.get_stats()["storage"] is None

    def test_persistence_disabled_in_config(self, store_dir: Path, clock: ManualClock) -> None:
        facade = create_cache(store_dir, CacheConfig(enabled_persistent=False), clock=clock)
        assert facade.persistent is None

    def test_unavailable_store_still_caches_in_memory(self, clock: ManualClock) -> None:
        volatile = VolatileCache(clock=clock)
        persistent = PersistentCache(clock=clock)
        facade = CacheFacade(volatile, persistent)

        assert persistent.available is False
        facade.set("k", "v")
        assert facade.get("k") == "v"


# ------------------------------------------------------------------ #
# Keys and invalidation
# ------------------------------------------------------------------ #


class TestKeys:
    def test_param_order_does_not_matter(self) -> None:
        a = CacheFacade.generate_key("products", {"page": 1, "brand": "acme"})
        b = CacheFacade.generate_key("products", {"brand": "acme", "page": 1})
        assert a == b

    def test_key_shape(self) -> None:
        key = CacheFacade.generate_key("products", {"page": 2, "brand": "acme"})
        assert key == 'products_{"brand":"acme","page":2}'

    def test_nested_params_are_sorted(self) -> None:
        a = CacheFacade.generate_key("search", {"filter": {"b": 1, "a": 2}})
        b = CacheFacade.generate_key("search", {"filter": {"a": 2, "b": 1}})
        assert a == b

    def test_no_params(self) -> None:
        assert CacheFacade.generate_key("brands") == "brands_{}"
        assert CacheFacade.generate_key("brands", {}) == "brands_{}"

    def test_different_params_differ(self) -> None:
        assert CacheFacade.generate_key("p", {"page": 1}) != CacheFacade.generate_key(
            "p", {"page": 2}
        )


class TestInvalidatePattern:
    def test_removes_matching_keys_from_both_tiers(self, cache: CacheFacade) -> None:
        for page in (1, 2, 3):
            cache.set(cache.generate_key("products", {"page": page}), page)
        cache.set(cache.generate_key("brands"), ["acme"])

        assert cache.invalidate_pattern("products") == 3
        assert cache.get(cache.generate_key("products", {"page": 1})) is None
        assert cache.get(cache.generate_key("brands")) == ["acme"]

    def test_counts_keys_only_in_persistent_tier(self, cache: CacheFacade) -> None:
        cache.set("products_a", 1)
        cache.volatile.clear()
        assert cache.invalidate_pattern("products") == 1
        assert cache.get("products_a") is None

    def test_no_match(self, cache: CacheFacade) -> None:
        cache.set("brands_{}", 1)
        assert cache.invalidate_pattern("dealers") == 0


# ------------------------------------------------------------------ #
# Convenience helpers
# ------------------------------------------------------------------ #


class TestApiResponseHelpers:
    def test_cache_and_read_back(self, cache: CacheFacade) -> None:
        key = cache.cache_api_response("/v1/dealers", {"zip": "10115"}, [{"id": 7}], ttl=900)
        assert key == CacheFacade.generate_key("/v1/dealers", {"zip": "10115"})
        assert cache.get_cached_api_response("/v1/dealers", {"zip": "10115"}) == [{"id": 7}]

    def test_miss_is_none(self, cache: CacheFacade) -> None:
        assert cache.get_cached_api_response("/v1/dealers", {"zip": "0"}) is None


class TestGetOrFetch:
    def test_fetches_once_then_serves_from_cache(
        self, cache: CacheFacade, collector: MetricsCollector
    ) -> None:
        calls = []

        async def fetch():
            calls.append(1)
            return {"items": [1, 2]}

        async def scenario():
            first = await cache.get_or_fetch("products", {"page": 1}, fetch)
            second = await cache.get_or_fetch("products", {"page": 1}, fetch)
            return first, second

        first, second = asyncio.run(scenario())

        assert first == second == {"items": [1, 2]}
        assert len(calls) == 1
        stat = collector.cache_stat("products_get")
        assert stat is not None
        assert (stat.hits, stat.misses) == (1, 1)

    def test_category_ttl_applies(self, cache: CacheFacade, clock: ManualClock) -> None:
        async def fetch():
            return "fresh"

        asyncio.run(
            cache.get_or_fetch("search", {"q": "pads"}, fetch, category=CacheCategory.SEARCH_RESULTS)
        )
        key = cache.generate_key("search", {"q": "pads"})

        clock.advance(cache.ttl_for(CacheCategory.SEARCH_RESULTS) - 1)
        assert cache.get(key) == "fresh"
        clock.advance(2)
        assert cache.get(key) is None

    def test_none_result_is_not_cached(self, cache: CacheFacade) -> None:
        calls = []

        async def fetch():
            calls.append(1)
            return None

        asyncio.run(cache.get_or_fetch("empty", None, fetch))
        asyncio.run(cache.get_or_fetch("empty", None, fetch))
        assert len(calls) == 2

    def test_fetch_error_propagates(self, cache: CacheFacade) -> None:
        async def fetch():
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError, match="upstream down"):
            asyncio.run(cache.get_or_fetch("products", None, fetch))
        assert cache.get_cached_api_response("products") is None


class TestStats:
    def test_stats_shape(self, cache: CacheFacade) -> None:
        cache.set("a", 1)
        cache.set("b", 2, persist=False)
        stats = cache.get_stats()

        assert stats["memory_size"] == 2
        assert stats["storage_size"] == 1
        assert stats["storage"]["max_entries"] == 100
        assert stats["config"]["max_memory_entries"] == 50

    def test_ttl_table(self, cache: CacheFacade) -> None:
        assert cache.ttl_for(CacheCategory.CATEGORIES) == 1800
        assert cache.ttl_for(CacheCategory.USER_DATA) == 60
        assert cache.ttl_for(None) == cache.config.default_ttl_seconds
