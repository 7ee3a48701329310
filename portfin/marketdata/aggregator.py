"""Batch fan-out and merge for the prices and fundamentals paths."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Coroutine

from portfin.errors import BatchFailure, ResolutionError, UpstreamTimeout
from portfin.marketdata.cache import BatchCache, StaleWhileRevalidateCache
from portfin.marketdata.google import GoogleFundamentalsSource, GooglePriceSource
from portfin.marketdata.models import FundamentalsResult, QuoteResult
from portfin.marketdata.resolver import SymbolResolver
from portfin.marketdata.symbols import (
    Exchange,
    Item,
    SourceKind,
    batch_key,
    is_numeric_symbol,
    split_by_source,
    to_yahoo,
)
from portfin.marketdata.yahoo import YahooFinanceSource

logger = logging.getLogger(__name__)


def _details(results: list[Any]) -> list[dict[str, Any]]:
    return [r.as_dict() for r in results]


# ── prices ─────────────────────────────────────────────────────────────

class PriceAggregator:
    """Splits a batch by source, fans out both sub-batches, and merges them."""

    def __init__(self, yahoo: YahooFinanceSource, google: GooglePriceSource, cache: BatchCache) -> None:
        self._yahoo = yahoo
        self._google = google
        self._cache = cache
        self._handlers = {
            SourceKind.YAHOO: self._yahoo_batch,
            SourceKind.GOOGLE: self._google_batch,
        }

    async def fetch(self, items: list[Item]) -> list[QuoteResult]:
        jobs = split_by_source(items)
        batches = await asyncio.gather(*(self._handlers[kind](jobs[kind]) for kind in SourceKind))
        merged = [r for batch in batches for r in batch]
        if not any(r.ok for r in merged):
            logger.warning("price batch of %d items had no successes", len(merged))
            raise BatchFailure("Failed to fetch prices", _details(merged))
        return merged

    async def _yahoo_batch(self, items: list[Item]) -> list[QuoteResult]:
        if not items:
            return []
        key = batch_key(to_yahoo(i) for i in items)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("quote batch cache hit %s", key)
            return list(cached)
        results = list(await asyncio.gather(*(self._yahoo.fetch_quote(i) for i in items)))
        if any(r.ok for r in results):
            self._cache.put(key, results)
        return results

    async def _google_batch(self, items: list[Item]) -> list[QuoteResult]:
        return list(await asyncio.gather(*(self._google_one(i) for i in items)))

    async def _google_one(self, item: Item) -> QuoteResult:
        try:
            return await self._google.fetch_cmp(item)
        except Exception as exc:
            logger.warning("google price %s failed: %s", item.symbol, exc)
            return QuoteResult.failure(
                f"{item.symbol}:{Exchange.BOM.value}",
                SourceKind.GOOGLE,
                str(exc) or type(exc).__name__,
            )


# ── fundamentals ───────────────────────────────────────────────────────

class DeadlineBoundedAggregator:
    """Fundamentals for a batch, returned within an overall deadline.

    Work for each cache miss is fired as a detached task. The aggregator
    observes those tasks until the per-item timeout or the batch deadline and
    then returns whatever has settled; tasks still running are left alone and
    write their result to the per-symbol cache when they finish.
    """

    def __init__(
        self,
        source: GoogleFundamentalsSource,
        resolver: SymbolResolver,
        by_symbol: StaleWhileRevalidateCache,
        batches: BatchCache,
        *,
        resolve_timeout: float = 3.0,
    ) -> None:
        self._source = source
        self._resolver = resolver
        self._by_symbol = by_symbol
        self._batches = batches
        self._resolve_timeout = resolve_timeout
        self._background: set[asyncio.Task] = set()

    # ── task plumbing ──────────────────────────────────────────────────

    def _detach(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._reap)
        return task

    def _reap(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("background task ended with %s", task.exception())

    @staticmethod
    async def _observe(task: Awaitable[Any], timeout: float, what: str) -> Any:
        done, _ = await asyncio.wait({task}, timeout=max(0.0, timeout))
        if not done:
            raise UpstreamTimeout(what)
        return task.result()

    @property
    def in_flight(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for abandoned tasks (shutdown and tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._by_symbol.drain()

    # ── per item ───────────────────────────────────────────────────────

    def _known_target(self, item: Item) -> Item | None:
        """Google-side target for an item, or None while a numeric code is unresolved."""
        if item.exchange is Exchange.BSE:
            if is_numeric_symbol(item.symbol):
                hit = self._resolver.cached(item.symbol, item.name)
                if hit is None:
                    return None
                return Item(hit.security_id.upper(), Exchange.BOM)
            return Item(item.symbol, Exchange.BOM)
        return Item(item.symbol, Exchange.NSE)

    def _cached(self, target: Item) -> FundamentalsResult | None:
        hit = self._by_symbol.lookup(target.key, refresh=lambda: self._refresh(target))
        if hit is None:
            return None
        return replace(hit.value, cache="stale" if hit.stale else "hit")

    async def _refresh(self, target: Item) -> FundamentalsResult:
        return await self._source.scrape(target.symbol, target.exchange.value)

    async def _scrape_and_cache(self, target: Item) -> FundamentalsResult:
        res = await self._source.scrape(target.symbol, target.exchange.value)
        self._by_symbol.set(target.key, res)
        return res

    async def _fetch_item(self, item: Item, target: Item | None, timeout: float) -> FundamentalsResult:
        loop = asyncio.get_running_loop()
        started = loop.time()

        if target is None:
            resolve = self._detach(self._resolver.resolve(item.symbol, item.name))
            try:
                resolved = await self._observe(
                    resolve, min(self._resolve_timeout, timeout), "resolve timeout"
                )
            except UpstreamTimeout:
                err = ResolutionError(item.symbol, item.name, reason="resolve timeout")
                return FundamentalsResult.failure(item.symbol, Exchange.BOM.value, str(err))
            except ResolutionError as exc:
                return FundamentalsResult.failure(item.symbol, Exchange.BOM.value, str(exc))
            except Exception as exc:
                logger.warning("resolving %s failed: %s", item.symbol, exc)
                err = ResolutionError(item.symbol, item.name, reason=str(exc) or type(exc).__name__)
                return FundamentalsResult.failure(item.symbol, Exchange.BOM.value, str(err))
            target = Item(resolved.security_id.upper(), Exchange.BOM)
            cached = self._cached(target)
            if cached is not None:
                return cached

        remaining = timeout - (loop.time() - started)
        scrape = self._detach(self._scrape_and_cache(target))
        try:
            res = await self._observe(scrape, remaining, "scrape timeout")
        except Exception as exc:
            logger.warning("fundamentals %s failed: %s", target.key, exc)
            return FundamentalsResult.failure(
                target.symbol, target.exchange.value, str(exc) or type(exc).__name__
            )
        return res

    # ── batch ──────────────────────────────────────────────────────────

    async def fetch(
        self,
        items: list[Item],
        *,
        deadline_ms: int,
        symbol_timeout_ms: int,
    ) -> list[FundamentalsResult]:
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = deadline_ms / 1000.0
        per_item = min(symbol_timeout_ms, deadline_ms) / 1000.0

        unique = list({i.key: i for i in items}.values())
        key = batch_key(i.key for i in unique)
        cached_batch = self._batches.get(key)
        if cached_batch is not None:
            return list(cached_batch)

        hits: list[FundamentalsResult] = []
        misses: list[tuple[Item, Item | None]] = []
        seen_targets: set[str] = set()
        for item in unique:
            target = self._known_target(item)
            if target is not None:
                if target.key in seen_targets:
                    continue
                seen_targets.add(target.key)
                hit = self._cached(target)
                if hit is not None:
                    hits.append(hit)
                    continue
            misses.append((item, target))

        if not misses:
            return hits

        tasks = [self._detach(self._fetch_item(item, target, per_item)) for item, target in misses]
        remaining = deadline - (loop.time() - started)
        done, pending = await asyncio.wait(tasks, timeout=max(0.0, remaining))
        settled = [t.result() for t in tasks if t in done]

        if pending:
            logger.info(
                "fundamentals deadline %dms hit: %d settled, %d abandoned",
                deadline_ms,
                len(settled),
                len(pending),
            )
            partial = hits + settled
            if not any(r.ok for r in partial):
                raise BatchFailure("Timed out fetching fundamentals", _details(partial))
            return partial

        final = hits + settled
        if not any(r.ok for r in final):
            logger.warning("fundamentals batch of %d items had no successes", len(final))
            raise BatchFailure("Failed to fetch fundamentals", _details(final))
        if all(r.ok for r in final):
            self._batches.put(key, final)
        return final
