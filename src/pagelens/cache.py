# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Result caching for analyzer operations.

Three pieces:
- CacheStore: the narrow key/value interface (get / put / list / delete)
- InMemoryCacheStore: OrderedDict LRU with per-entry TTL implementing it
- ResultCache: best-effort wrapper used by the analyzer. Store failures are
  logged and treated as misses; they never fail a request. Concurrent
  computations of the same key are collapsed into one (single-flight).

Values are always strings: serialized JSON, raw HTML or base64 image bytes.

NOTE: Not thread-safe. All access happens on one event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600
DEFAULT_MAX_ENTRIES = 512
DEFAULT_LIST_LIMIT = 100


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------


@dataclass
class KeyPage:
    """One page of a prefix listing. ``cursor`` is None on the last page."""

    keys: list[str] = field(default_factory=list)
    cursor: str | None = None


@runtime_checkable
class CacheStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def list(self, prefix: str, cursor: str | None = None, limit: int = DEFAULT_LIST_LIMIT) -> KeyPage: ...

    async def delete(self, key: str) -> None: ...


async def delete_by_prefix(store: CacheStore, prefix: str, *, limit: int = DEFAULT_LIST_LIMIT) -> dict[str, int]:
    """Paginated list-then-delete of every key under *prefix*.

    An empty prefix clears the whole store.
    """
    deleted = 0
    cursor: str | None = None
    while True:
        page = await store.list(prefix, cursor=cursor, limit=limit)
        for key in page.keys:
            await store.delete(key)
            deleted += 1
        if page.cursor is None:
            break
        cursor = page.cursor
    return {"deleted": deleted}


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry:
    """A cached value with its absolute expiry."""

    value: str
    created_at: float  # time.monotonic()
    ttl: float

    def is_expired(self, now: float | None = None) -> bool:
        if self.ttl <= 0:
            return False
        return ((now if now is not None else time.monotonic()) - self.created_at) > self.ttl


class InMemoryCacheStore:
    """Process-local LRU store with per-entry TTL.

    ``ttl_seconds <= 0`` stores without expiry. Expired entries are removed
    lazily on read and skipped by listings.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.evictions = 0

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired():
            del self._entries[key]
            logger.debug("Cache TTL expired: %s", key)
            return None
        self._entries.move_to_end(key)
        return entry.value

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = CacheEntry(value=value, created_at=time.monotonic(), ttl=float(ttl_seconds))
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug("Cache eviction: %s", evicted_key)

    async def list(self, prefix: str, cursor: str | None = None, limit: int = DEFAULT_LIST_LIMIT) -> KeyPage:
        """Keys under *prefix* in sorted order, strictly after *cursor*."""
        now = time.monotonic()
        keys = sorted(
            k
            for k, entry in self._entries.items()
            if k.startswith(prefix) and not entry.is_expired(now) and (cursor is None or k > cursor)
        )
        page = keys[: max(limit, 1)]
        more = len(keys) > len(page)
        return KeyPage(keys=page, cursor=page[-1] if more else None)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_by_prefix(self, prefix: str) -> dict[str, int]:
        return await delete_by_prefix(self, prefix)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Stats (observability)
# ---------------------------------------------------------------------------


@dataclass
class CacheStats:
    """Counters for the result cache, exposed on /health."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    errors: int = 0
    shared: int = 0  # callers served by another caller's in-flight computation

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "errors": self.errors,
            "shared": self.shared,
            "hit_rate": round(self.hit_rate, 3),
        }


# ---------------------------------------------------------------------------
# Single-flight
# ---------------------------------------------------------------------------


class _Flight:
    """One in-progress computation and the number of callers awaiting it."""

    __slots__ = ("task", "waiters")

    def __init__(self, task: asyncio.Task[str]) -> None:
        self.task = task
        self.waiters = 0


class InFlightRegistry:
    """Collapse concurrent computations of the same key into one.

    *compute* runs in its own task. Every caller, the first included, awaits
    it through a shield and receives its result or its exception. A caller
    being cancelled only cancels itself; the computation is cancelled once
    no caller is left waiting for it.
    """

    def __init__(self) -> None:
        self._pending: dict[str, _Flight] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def _discard(self, key: str, flight: _Flight) -> None:
        if self._pending.get(key) is flight:
            del self._pending[key]

    async def run(self, key: str, compute: Callable[[], Awaitable[str]]) -> tuple[str, bool]:
        """Returns ``(value, shared)``; ``shared`` is True for joined callers."""
        flight = self._pending.get(key)
        shared = flight is not None
        if flight is None:
            flight = _Flight(asyncio.ensure_future(compute()))
            self._pending[key] = flight
            flight.task.add_done_callback(lambda task: self._finished(key, flight, task))

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task), shared
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                self._discard(key, flight)
                flight.task.cancel()
                logger.debug("In-flight computation abandoned: %s", key)

    def _finished(self, key: str, flight: _Flight, task: asyncio.Task[str]) -> None:
        self._discard(key, flight)
        if not task.cancelled():
            task.exception()  # mark retrieved when every caller was cancelled


# ---------------------------------------------------------------------------
# ResultCache
# ---------------------------------------------------------------------------


class ResultCache:
    """Best-effort cache bracketing analyzer operations.

    ``store=None`` disables caching: every lookup misses and writes are
    dropped, but single-flight still applies.
    """

    def __init__(self, store: CacheStore | None, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._inflight = InFlightRegistry()
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self._store is not None

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    async def get(self, key: str) -> str | None:
        if self._store is None:
            return None
        try:
            value = await self._store.get(key)
        except Exception as e:  # noqa: BLE001  (any store failure is a miss)
            self._stats.errors += 1
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if value is None:
            self._stats.misses += 1
        else:
            self._stats.hits += 1
        return value

    async def put(self, key: str, value: str) -> None:
        if self._store is None:
            return
        try:
            await self._store.put(key, value, self._ttl)
        except Exception as e:  # noqa: BLE001
            self._stats.errors += 1
            logger.warning("Cache write failed for %s: %s", key, e)
            return
        self._stats.writes += 1

    async def clear(self, prefix: str = "") -> dict[str, int]:
        """Delete every entry under *prefix*. A disabled or failing store deletes nothing."""
        if self._store is None:
            return {"deleted": 0}
        try:
            result = await delete_by_prefix(self._store, prefix)
        except Exception as e:  # noqa: BLE001
            self._stats.errors += 1
            logger.warning("Cache clear failed for prefix %r: %s", prefix, e)
            return {"deleted": 0}
        logger.info("Cache cleared: prefix=%r deleted=%d", prefix, result["deleted"])
        return result

    async def get_or_compute(self, key: str, compute: Callable[[], Awaitable[str]]) -> tuple[str, bool]:
        """Cached value for *key*, computing and storing it on a miss.

        Returns ``(value, hit)``. Values shared from another caller's
        in-flight computation count as hits.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached, True

        async def _compute_and_store() -> str:
            value = await compute()
            await self.put(key, value)
            return value

        value, shared = await self._inflight.run(key, _compute_and_store)
        if shared:
            self._stats.shared += 1
        return value, shared
