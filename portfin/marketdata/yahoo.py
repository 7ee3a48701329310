"""Primary quote-API source: Yahoo Finance through ``yfinance``.

``yfinance`` is synchronous, so every call runs in a worker thread and is
dispatched through a per-call-type ``RateLimitedClient``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from portfin.marketdata.limiter import RateLimitedClient
from portfin.marketdata.models import QuoteResult
from portfin.marketdata.symbols import Item, SourceKind, to_yahoo
from portfin.utils import parse_number

logger = logging.getLogger(__name__)

_PRICE_FIELDS = ("regularMarketPrice", "postMarketPrice", "preMarketPrice", "currentPrice")


class YahooBackend(Protocol):
    def search(self, query: str) -> list[dict[str, Any]]: ...

    def quote(self, symbol: str) -> dict[str, Any]: ...


class YFinanceBackend:
    """Blocking calls into yfinance."""

    def search(self, query: str) -> list[dict[str, Any]]:
        import yfinance as yf

        found = yf.Search(query, max_results=10, news_count=0)
        return [q for q in (found.quotes or []) if isinstance(q, dict)]

    def quote(self, symbol: str) -> dict[str, Any]:
        import yfinance as yf

        info = yf.Ticker(symbol).info
        return dict(info) if isinstance(info, dict) else {}


def pick_price(q: dict[str, Any]) -> float | None:
    for field in _PRICE_FIELDS:
        price = parse_number(q.get(field))
        if price is not None:
            return price
    return None


def is_valid_quote(q: Any) -> bool:
    """A payload without an identifying symbol and without a price is empty."""
    if not isinstance(q, dict) or not q:
        return False
    return bool(q.get("symbol")) or q.get("regularMarketPrice") is not None


class YahooFinanceSource:
    def __init__(
        self,
        *,
        search_limiter: RateLimitedClient,
        quote_limiter: RateLimitedClient,
        verify_limiter: RateLimitedClient,
        backend: YahooBackend | None = None,
    ) -> None:
        self._search = search_limiter
        self._quotes = quote_limiter
        self._verify = verify_limiter
        self._backend = backend or YFinanceBackend()

    async def search(self, query: str) -> list[dict[str, Any]]:
        result = await self._search.schedule(asyncio.to_thread, self._backend.search, query)
        return result if isinstance(result, list) else []

    async def quote(self, symbol: str) -> dict[str, Any]:
        return await self._quotes.call(
            asyncio.to_thread, self._backend.quote, symbol, validate=is_valid_quote
        )

    async def verify(self, symbol: str) -> bool:
        """One rate-limited sanity quote; any failure just means 'unverified'."""
        try:
            q = await self._verify.schedule(asyncio.to_thread, self._backend.quote, symbol)
        except Exception as exc:
            logger.debug("verify %s failed: %s", symbol, exc)
            return False
        return is_valid_quote(q)

    async def fetch_quote(self, item: Item) -> QuoteResult:
        symbol = to_yahoo(item)
        try:
            q = await self.quote(symbol)
        except Exception as exc:
            logger.warning("yahoo quote %s failed: %s", symbol, exc)
            return QuoteResult.failure(symbol, SourceKind.YAHOO, str(exc) or type(exc).__name__)
        return QuoteResult(
            ok=True,
            symbol=str(q.get("symbol") or symbol),
            source=SourceKind.YAHOO,
            price=pick_price(q),
            currency=q.get("currency") or None,
        )
