# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the result cache.

Tests: in-memory store LRU/TTL/listing, paginated prefix delete,
ResultCache best-effort behaviour, CacheStats counters, single-flight.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from pagelens.cache import (
    CacheEntry,
    CacheStats,
    CacheStore,
    InFlightRegistry,
    InMemoryCacheStore,
    KeyPage,
    ResultCache,
    delete_by_prefix,
)
from pagelens.errors import CacheUnavailable

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class BrokenStore:
    """Store whose every operation fails."""

    async def get(self, key):
        raise CacheUnavailable("store down")

    async def put(self, key, value, ttl_seconds):
        raise CacheUnavailable("store down")

    async def list(self, prefix, cursor=None, limit=100):
        raise CacheUnavailable("store down")

    async def delete(self, key):
        raise CacheUnavailable("store down")


async def _fill(store: InMemoryCacheStore, keys, ttl=60) -> None:
    for key in keys:
        await store.put(key, f"v-{key}", ttl)


# =========================================================================
# CacheEntry
# =========================================================================


class TestCacheEntry:
    def test_not_expired_within_ttl(self):
        entry = CacheEntry(value="v", created_at=100.0, ttl=10)
        assert not entry.is_expired(now=105.0)

    def test_expired_after_ttl(self):
        entry = CacheEntry(value="v", created_at=100.0, ttl=10)
        assert entry.is_expired(now=110.5)

    def test_zero_ttl_never_expires(self):
        entry = CacheEntry(value="v", created_at=0.0, ttl=0)
        assert not entry.is_expired(now=1e9)


# =========================================================================
# InMemoryCacheStore
# =========================================================================


class TestInMemoryStore:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryCacheStore(), CacheStore)

    async def test_put_get(self, store):
        await store.put("html:abc", "<html></html>", 60)
        assert await store.get("html:abc") == "<html></html>"
        assert await store.get("html:missing") is None

    async def test_overwrite(self, store):
        await store.put("k", "one", 60)
        await store.put("k", "two", 60)
        assert await store.get("k") == "two"
        assert len(store) == 1

    async def test_lru_eviction(self):
        store = InMemoryCacheStore(max_entries=2)
        await _fill(store, ["a", "b"])
        await store.get("a")  # a is now most recent
        await store.put("c", "v-c", 60)
        assert await store.get("b") is None
        assert await store.get("a") == "v-a"
        assert await store.get("c") == "v-c"
        assert store.evictions == 1

    async def test_ttl_expiry(self, store):
        await store.put("k", "v", 0.01)
        time.sleep(0.02)  # Wait for TTL to expire
        assert await store.get("k") is None
        assert len(store) == 0

    async def test_list_prefix_sorted(self, store):
        await _fill(store, ["structure:b", "html:x", "structure:a"])
        page = await store.list("structure:")
        assert page == KeyPage(keys=["structure:a", "structure:b"], cursor=None)

    async def test_list_paginates(self, store):
        await _fill(store, [f"k{i}" for i in range(5)])
        first = await store.list("k", limit=2)
        assert first.keys == ["k0", "k1"]
        assert first.cursor == "k1"
        second = await store.list("k", cursor=first.cursor, limit=2)
        assert second.keys == ["k2", "k3"]
        last = await store.list("k", cursor=second.cursor, limit=2)
        assert last.keys == ["k4"]
        assert last.cursor is None

    async def test_list_skips_expired(self, store):
        await store.put("old", "v", 0.01)
        await store.put("new", "v", 60)
        time.sleep(0.02)
        assert (await store.list("")).keys == ["new"]

    async def test_delete_missing_is_noop(self, store):
        await store.delete("nothing")


# =========================================================================
# delete_by_prefix
# =========================================================================


class TestDeleteByPrefix:
    async def test_deletes_only_prefix(self, store):
        await _fill(store, ["structure:1", "structure:2", "html:1"])
        assert await delete_by_prefix(store, "structure:") == {"deleted": 2}
        assert await store.get("html:1") == "v-html:1"

    async def test_walks_every_page(self, store):
        await _fill(store, [f"screenshot:{i:02d}" for i in range(25)])
        assert await delete_by_prefix(store, "screenshot:", limit=10) == {"deleted": 25}
        assert len(store) == 0

    async def test_empty_prefix_clears_all(self, store):
        await _fill(store, ["a", "b"])
        assert await store.delete_by_prefix("") == {"deleted": 2}

    async def test_nothing_to_delete(self, store):
        assert await delete_by_prefix(store, "none:") == {"deleted": 0}


# =========================================================================
# CacheStats
# =========================================================================


class TestCacheStats:
    def test_hit_rate(self):
        stats = CacheStats(hits=3, misses=1)
        assert stats.hit_rate == 0.75

    def test_hit_rate_empty(self):
        assert CacheStats().hit_rate == 0.0

    def test_to_dict(self):
        assert CacheStats(hits=1, misses=2, writes=1).to_dict() == {
            "hits": 1,
            "misses": 2,
            "writes": 1,
            "errors": 0,
            "shared": 0,
            "hit_rate": 0.333,
        }


# =========================================================================
# ResultCache
# =========================================================================


class TestResultCache:
    async def test_get_or_compute_miss_then_hit(self, store):
        cache = ResultCache(store, ttl_seconds=60)
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            return "value"

        assert await cache.get_or_compute("k", compute) == ("value", False)
        assert await cache.get_or_compute("k", compute) == ("value", True)
        assert calls == 1
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1
        assert cache.stats.writes == 1

    async def test_disabled_cache_always_computes(self):
        cache = ResultCache(None)
        assert not cache.enabled

        async def compute():
            return "v"

        assert await cache.get_or_compute("k", compute) == ("v", False)
        assert await cache.get_or_compute("k", compute) == ("v", False)
        assert cache.stats.writes == 0

    async def test_store_failures_are_misses(self, caplog):
        cache = ResultCache(BrokenStore())

        async def compute():
            return "fresh"

        with caplog.at_level("WARNING", logger="pagelens.cache"):
            assert await cache.get_or_compute("k", compute) == ("fresh", False)
        assert cache.stats.errors == 2  # read + write
        assert "Cache read failed" in caplog.text
        assert "Cache write failed" in caplog.text

    async def test_compute_errors_propagate_and_are_not_cached(self, store):
        cache = ResultCache(store)

        async def boom():
            raise ValueError("render failed")

        with pytest.raises(ValueError, match="render failed"):
            await cache.get_or_compute("k", boom)
        assert await store.get("k") is None

    async def test_clear_disabled(self):
        assert await ResultCache(None).clear("x") == {"deleted": 0}

    async def test_clear_prefix(self, store):
        await _fill(store, ["structure:1", "html:1"])
        cache = ResultCache(store)
        assert await cache.clear("structure:") == {"deleted": 1}
        assert len(store) == 1

    async def test_clear_store_failure_is_swallowed(self):
        cache = ResultCache(BrokenStore())
        assert await cache.clear("") == {"deleted": 0}
        assert cache.stats.errors == 1

    async def test_ttl_passed_to_store(self):
        seen = {}

        class RecordingStore(InMemoryCacheStore):
            async def put(self, key, value, ttl_seconds):
                seen[key] = ttl_seconds
                await super().put(key, value, ttl_seconds)

        cache = ResultCache(RecordingStore(), ttl_seconds=123)
        await cache.put("k", "v")
        assert seen == {"k": 123}
        assert cache.ttl_seconds == 123


# =========================================================================
# Single-flight
# =========================================================================


class TestSingleFlight:
    async def test_concurrent_callers_share_one_computation(self, store):
        cache = ResultCache(store)
        calls = 0
        release = asyncio.Event()

        async def compute():
            nonlocal calls
            calls += 1
            await release.wait()
            return "shared"

        tasks = [asyncio.create_task(cache.get_or_compute("k", compute)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert [value for value, _ in results] == ["shared"] * 3
        assert sorted(hit for _, hit in results) == [False, True, True]
        assert cache.stats.shared == 2

    async def test_exception_reaches_every_caller(self):
        registry = InFlightRegistry()
        release = asyncio.Event()

        async def compute():
            await release.wait()
            raise RuntimeError("upstream down")

        owner = asyncio.create_task(registry.run("k", compute))
        await asyncio.sleep(0)
        joiner = asyncio.create_task(registry.run("k", compute))
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(owner, joiner, return_exceptions=True)
        assert all(isinstance(r, RuntimeError) for r in results)
        assert len(registry) == 0

    async def test_registry_empties_after_success(self):
        registry = InFlightRegistry()

        async def compute():
            return "v"

        assert await registry.run("k", compute) == ("v", False)
        assert "k" not in registry

    async def test_cancelled_joiner_does_not_cancel_owner(self):
        registry = InFlightRegistry()
        release = asyncio.Event()

        async def compute():
            await release.wait()
            return "done"

        owner = asyncio.create_task(registry.run("k", compute))
        await asyncio.sleep(0)
        joiner = asyncio.create_task(registry.run("k", compute))
        await asyncio.sleep(0)
        joiner.cancel()
        release.set()
        assert await owner == ("done", False)
        with pytest.raises(asyncio.CancelledError):
            await joiner

    async def test_cancelled_owner_does_not_fail_joiner(self):
        registry = InFlightRegistry()
        release = asyncio.Event()

        async def compute():
            await release.wait()
            return "v"

        owner = asyncio.create_task(registry.run("k", compute))
        await asyncio.sleep(0)
        joiner = asyncio.create_task(registry.run("k", compute))
        await asyncio.sleep(0)
        owner.cancel()
        await asyncio.sleep(0)
        release.set()
        assert await joiner == ("v", True)
        with pytest.raises(asyncio.CancelledError):
            await owner
        assert len(registry) == 0

    async def test_computation_cancelled_when_every_caller_leaves(self):
        registry = InFlightRegistry()
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def compute():
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return "never"

        owner = asyncio.create_task(registry.run("k", compute))
        await started.wait()
        owner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await owner
        await asyncio.wait_for(cancelled.wait(), timeout=1)
        assert "k" not in registry

        async def fresh():
            return "again"

        assert await registry.run("k", fresh) == ("again", False)

    async def test_cancelled_owner_still_stores_result_for_joiner(self, store):
        cache = ResultCache(store)
        release = asyncio.Event()

        async def compute():
            await release.wait()
            return "payload"

        owner = asyncio.create_task(cache.get_or_compute("k", compute))
        await asyncio.sleep(0)
        joiner = asyncio.create_task(cache.get_or_compute("k", compute))
        await asyncio.sleep(0)
        owner.cancel()
        await asyncio.sleep(0)
        release.set()
        assert await joiner == ("payload", True)
        assert await store.get("k") == "payload"
