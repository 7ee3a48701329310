"""In-memory caches: full-batch replace and per-key stale-while-revalidate.

All caches are plain process-local objects built from settings and injected
where they are used. Writers of the same key are last-write-wins; cached
values are re-derivations of the same upstream fact, so no locking is done.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from cachetools import TTLCache

from portfin.config import Settings

logger = logging.getLogger(__name__)

Timer = Callable[[], float]


class BatchCache:
    """Short-TTL cache whose entries are whole result arrays.

    A hit returns the cached array as-is; a miss is followed by ``put`` with a
    freshly computed array, which replaces the entry in one assignment.
    """

    def __init__(self, maxsize: int, ttl: float, *, timer: Timer = time.monotonic) -> None:
        self._store: TTLCache[str, list[Any]] = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    def get(self, key: str) -> list[Any] | None:
        return self._store.get(key)

    def put(self, key: str, results: list[Any]) -> None:
        self._store[key] = list(results)

    def __len__(self) -> int:
        return len(self._store)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float
    allow_stale_read: bool


@dataclass(frozen=True)
class CacheHit:
    value: Any
    stale: bool


class StaleWhileRevalidateCache:
    """Per-key cache that keeps expired values around for a stale window.

    ``lookup`` never waits on upstream: a stale entry is returned right away and,
    when a ``refresh`` coroutine factory is given, one background refresh per key
    is started to update the entry for later callers.
    """

    def __init__(
        self,
        maxsize: int,
        ttl: float,
        *,
        stale_ttl: float = 0.0,
        timer: Timer = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._allow_stale = stale_ttl > 0
        self._timer = timer
        retention = ttl + stale_ttl if self._allow_stale else ttl
        self._store: TTLCache[str, CacheEntry] = TTLCache(maxsize=maxsize, ttl=retention, timer=timer)
        self._inflight: dict[str, asyncio.Task] = {}

    def set(self, key: str, value: Any) -> None:
        self._store[key] = CacheEntry(
            value=value,
            expires_at=self._timer() + self._ttl,
            allow_stale_read=self._allow_stale,
        )

    def remaining_ttl(self, key: str) -> float | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        return entry.expires_at - self._timer()

    def lookup(
        self,
        key: str,
        refresh: Callable[[], Awaitable[Any]] | None = None,
    ) -> CacheHit | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._timer() < entry.expires_at:
            return CacheHit(value=entry.value, stale=False)
        if not entry.allow_stale_read:
            self._store.pop(key, None)
            return None
        if refresh is not None:
            self._schedule_refresh(key, refresh)
        return CacheHit(value=entry.value, stale=True)

    def refreshing(self, key: str) -> bool:
        return key in self._inflight

    async def drain(self) -> None:
        """Wait for in-flight background refreshes (shutdown and tests)."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    def _schedule_refresh(self, key: str, refresh: Callable[[], Awaitable[Any]]) -> None:
        if key in self._inflight:
            return
        task = asyncio.get_running_loop().create_task(self._run_refresh(key, refresh))
        self._inflight[key] = task
        task.add_done_callback(lambda _t: self._inflight.pop(key, None))

    async def _run_refresh(self, key: str, refresh: Callable[[], Awaitable[Any]]) -> None:
        try:
            value = await refresh()
        except Exception as exc:
            logger.warning("background refresh for %s failed: %s", key, exc)
            return
        if value is not None:
            self.set(key, value)
            logger.debug("background refresh for %s stored", key)

    def __len__(self) -> int:
        return len(self._store)


@dataclass
class MarketDataCaches:
    """Every cache the gateway uses, built together from one ``Settings``."""

    quotes: BatchCache
    fundamentals: BatchCache
    fundamentals_by_symbol: StaleWhileRevalidateCache
    symbol_resolve: TTLCache
    google_price: TTLCache

    @classmethod
    def from_settings(cls, settings: Settings, *, timer: Timer = time.monotonic) -> MarketDataCaches:
        return cls(
            quotes=BatchCache(settings.quotes_cache_size, settings.quotes_ttl_seconds, timer=timer),
            fundamentals=BatchCache(
                settings.fundamentals_cache_size, settings.fundamentals_ttl_seconds, timer=timer
            ),
            fundamentals_by_symbol=StaleWhileRevalidateCache(
                settings.fundamentals_symbol_cache_size,
                settings.fundamentals_symbol_ttl_seconds,
                stale_ttl=settings.fundamentals_symbol_stale_seconds,
                timer=timer,
            ),
            symbol_resolve=TTLCache(
                maxsize=settings.symbol_resolve_cache_size,
                ttl=settings.symbol_resolve_ttl_seconds,
                timer=timer,
            ),
            google_price=TTLCache(
                maxsize=settings.google_price_cache_size,
                ttl=settings.google_price_ttl_seconds,
                timer=timer,
            ),
        )

    def stats(self) -> dict[str, int]:
        return {
            "quotes": len(self.quotes),
            "fundamentals": len(self.fundamentals),
            "fundamentals_by_symbol": len(self.fundamentals_by_symbol),
            "symbol_resolve": len(self.symbol_resolve),
            "google_price": len(self.google_price),
        }
