"""Canonical market-data gateway: batch quotes and batch fundamentals.

Callers (API routes, CLI) go through this module only. It validates batch
input, normalizes items, and hands them to the aggregators; per-item failures
come back as ``ok=False`` results and only an all-failed batch raises.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from portfin.config import Settings, get_settings
from portfin.errors import InvalidInput
from portfin.marketdata.aggregator import DeadlineBoundedAggregator, PriceAggregator
from portfin.marketdata.cache import MarketDataCaches
from portfin.marketdata.google import GoogleFundamentalsSource, GooglePriceSource
from portfin.marketdata.http import PageFetcher
from portfin.marketdata.limiter import RateLimitedClient
from portfin.marketdata.models import FundamentalsResult, QuoteResult
from portfin.marketdata.resolver import ResolvedSymbol, SymbolResolver
from portfin.marketdata.symbols import Item, normalize_item
from portfin.marketdata.yahoo import YahooBackend, YahooFinanceSource

logger = logging.getLogger(__name__)


def _ms(value: int) -> float:
    return value / 1000.0


def _normalize_batch(raw: list[Any], field: str) -> list[Item]:
    items = [normalize_item(r) for r in raw]
    bad = [idx for idx, item in enumerate(items) if not item.symbol]
    if bad:
        raise InvalidInput(f"{field}[{bad[0]}] has no symbol")
    return items


class MarketDataGateway:
    """Single entrypoint for holdings market data."""

    def __init__(
        self,
        *,
        settings: Settings,
        caches: MarketDataCaches,
        fetcher: PageFetcher,
        yahoo: YahooFinanceSource,
        google_price: GooglePriceSource,
        fundamentals_source: GoogleFundamentalsSource,
        resolver: SymbolResolver,
    ) -> None:
        self._settings = settings
        self.caches = caches
        self._fetcher = fetcher
        self.resolver = resolver
        self.prices = PriceAggregator(yahoo, google_price, caches.quotes)
        self.fundamentals = DeadlineBoundedAggregator(
            fundamentals_source,
            resolver,
            caches.fundamentals_by_symbol,
            caches.fundamentals,
            resolve_timeout=_ms(settings.resolve_timeout_ms),
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        yahoo_backend: YahooBackend | None = None,
        timer=time.monotonic,
    ) -> MarketDataGateway:
        """Wire caches, limiters and sources from one settings object."""
        s = settings or get_settings()
        caches = MarketDataCaches.from_settings(s, timer=timer)
        fetcher = PageFetcher.from_settings(s, transport=transport)
        backoff = _ms(s.retry_backoff_ms)
        yahoo_timeout = _ms(s.yahoo_call_timeout_ms)

        def yahoo_limiter(name: str, interval_ms: int, attempts: int = 1) -> RateLimitedClient:
            return RateLimitedClient(
                name,
                min_interval=_ms(interval_ms),
                max_concurrency=s.yahoo_max_concurrency,
                attempts=attempts,
                backoff=backoff,
                timeout=yahoo_timeout,
            )

        def page_limiter(name: str) -> RateLimitedClient:
            return RateLimitedClient(
                name,
                min_interval=_ms(s.page_min_interval_ms),
                max_concurrency=s.page_max_concurrency,
                attempts=s.page_attempts,
                backoff=backoff,
            )

        yahoo = YahooFinanceSource(
            search_limiter=yahoo_limiter("yahoo-search", s.yahoo_search_min_interval_ms),
            verify_limiter=yahoo_limiter("yahoo-verify", s.yahoo_verify_min_interval_ms),
            quote_limiter=yahoo_limiter("yahoo-quote", s.yahoo_quote_min_interval_ms, s.yahoo_quote_attempts),
            backend=yahoo_backend,
        )
        google_price = GooglePriceSource(fetcher, caches.google_price, page_limiter("google-price"))
        fundamentals_source = GoogleFundamentalsSource(
            fetcher,
            RateLimitedClient(
                "google-fundamentals",
                min_interval=_ms(s.scrape_min_interval_ms),
                max_concurrency=s.scrape_max_concurrency,
                attempts=s.scrape_attempts,
                backoff=backoff,
            ),
        )
        resolver = SymbolResolver(
            yahoo,
            fetcher,
            caches.symbol_resolve,
            page_limiter=page_limiter("bse-page"),
            verify=s.resolver_verify,
        )
        return cls(
            settings=s,
            caches=caches,
            fetcher=fetcher,
            yahoo=yahoo,
            google_price=google_price,
            fundamentals_source=fundamentals_source,
            resolver=resolver,
        )

    async def close(self) -> None:
        await self.fundamentals.drain()
        await self._fetcher.close()

    async def get_quotes_batch(
        self,
        *,
        symbols: list[Any] | None = None,
        items: list[Any] | None = None,
    ) -> list[QuoteResult]:
        """Quotes for ``items`` (preferred) or bare ``symbols``; order not guaranteed."""
        if isinstance(items, list) and items:
            jobs = _normalize_batch(items, "items")
        elif isinstance(symbols, list) and symbols:
            jobs = _normalize_batch(symbols, "symbols")
        else:
            raise InvalidInput("Provide symbols[] or items[]")
        logger.debug("quote batch of %d items", len(jobs))
        return await self.prices.fetch(jobs)

    async def get_fundamentals_batch(
        self,
        items: list[Any] | None,
        *,
        deadline_ms: float | None = None,
        symbol_timeout_ms: float | None = None,
    ) -> list[FundamentalsResult]:
        """P/E and EPS per item, possibly partial when the deadline elapses."""
        if not isinstance(items, list) or not items:
            raise InvalidInput("items[] is required")
        jobs = _normalize_batch(items, "items")
        deadline, per_item = self._settings.clamp_deadlines(deadline_ms, symbol_timeout_ms)
        logger.debug("fundamentals batch of %d items (deadline=%dms, per_item=%dms)", len(jobs), deadline, per_item)
        return await self.fundamentals.fetch(jobs, deadline_ms=deadline, symbol_timeout_ms=per_item)

    async def resolve_bse_code(self, code: str, hint: str | None = None) -> ResolvedSymbol:
        return await self.resolver.resolve(code, hint)

    def cache_stats(self) -> dict[str, int]:
        return self.caches.stats()
