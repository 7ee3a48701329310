"""Numeric BSE scrip code → tradable symbol resolution.

Cascade, first success wins:

1. long-TTL cache
2. Yahoo search over several query variants, candidates scored for BSE-ness
3. BSE pages (mobile → desktop company info → desktop financials), each
   scanned with its ordered list of "Security ID" patterns
4. a non-fatal verification quote for scraped symbols

Only successful resolutions are cached.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Protocol
from urllib.parse import quote

from cachetools import TTLCache

from portfin.errors import ResolutionError
from portfin.marketdata.extractors import (
    SECURITY_ID_DESKTOP_FINANCIALS,
    SECURITY_ID_DESKTOP_INFO,
    SECURITY_ID_MOBILE,
    first_match,
    regex_extractors,
)
from portfin.marketdata.limiter import RateLimitedClient
from portfin.marketdata.symbols import Exchange, is_numeric_symbol

logger = logging.getLogger(__name__)

BSE_SUFFIX = ".BO"
EARLY_EXIT_SCORE = 7

BSE_MOBILE_URL = "https://m.bseindia.com/StockReach.aspx?scripcd={code}"
BSE_COMPANY_INFO_URL = "https://www.bseindia.com/stock-share-price/stockreach_company_info.aspx?scripcode={code}"
BSE_FINANCIALS_URL = "https://www.bseindia.com/stock-share-price/stockreach_financials.aspx?scripcode={code}"


class ResolvedVia(str, enum.Enum):
    CACHE = "cache"
    SEARCH = "search"
    SCRAPE = "scrape"


@dataclass(frozen=True)
class ResolvedSymbol:
    symbol: str
    exchange: Exchange
    resolved_via: ResolvedVia
    verified: bool | None = None

    @property
    def security_id(self) -> str:
        """Symbol without the Yahoo exchange suffix (what Google and BSE call it)."""
        if self.symbol.upper().endswith(BSE_SUFFIX):
            return self.symbol[: -len(BSE_SUFFIX)]
        return self.symbol


@dataclass(frozen=True)
class BsePage:
    name: str
    url_template: str
    patterns: tuple[str, ...]

    def url(self, code: str) -> str:
        return self.url_template.format(code=quote(code, safe=""))


BSE_PAGES: tuple[BsePage, ...] = (
    BsePage("mobile", BSE_MOBILE_URL, SECURITY_ID_MOBILE),
    BsePage("desktop-company-info", BSE_COMPANY_INFO_URL, SECURITY_ID_DESKTOP_INFO),
    BsePage("desktop-financials", BSE_FINANCIALS_URL, SECURITY_ID_DESKTOP_FINANCIALS),
)


class SearchSource(Protocol):
    async def search(self, query: str) -> list[dict[str, Any]]: ...

    async def verify(self, symbol: str) -> bool: ...


class TextFetcher(Protocol):
    async def fetch_text(self, url: str) -> str: ...


def score_candidate(q: dict[str, Any]) -> int:
    score = 0
    sym = str(q.get("symbol") or "").upper()
    ex = str(
        q.get("exchange") or q.get("primaryExchange") or q.get("exchangeDisp") or q.get("exchDisp") or ""
    ).upper()
    if sym.endswith(BSE_SUFFIX):
        score += 5
    if "BSE" in ex:
        score += 3
    if str(q.get("region") or "").upper() == "IN":
        score += 1
    if q.get("quoteType") == "EQUITY":
        score += 1
    return score


def search_queries(code: str, hint: str | None = None) -> list[str]:
    queries = [code, f"{code} BSE", f"{code} India"]
    if hint:
        queries += [f"{hint} BSE", f"{hint} Bombay Stock Exchange", f"{hint} .BO"]
    return queries


def cache_key(code: str, hint: str | None = None) -> str:
    return f"BSE:{code}:{(hint or '').upper()}"


class SymbolResolver:
    def __init__(
        self,
        search: SearchSource,
        fetcher: TextFetcher,
        cache: TTLCache,
        *,
        page_limiter: RateLimitedClient | None = None,
        pages: tuple[BsePage, ...] = BSE_PAGES,
        verify: bool = True,
    ) -> None:
        self._search = search
        self._fetcher = fetcher
        self._cache = cache
        self._pages = pages
        self._page_limiter = page_limiter or RateLimitedClient("bse-page")
        self._verify = verify

    def cached(self, code: str, hint: str | None = None) -> ResolvedSymbol | None:
        hit = self._cache.get(cache_key(code, hint))
        if hit is None:
            return None
        return replace(hit, resolved_via=ResolvedVia.CACHE)

    async def resolve(self, code: str, hint: str | None = None) -> ResolvedSymbol:
        code = str(code or "").strip()
        if not is_numeric_symbol(code):
            raise ResolutionError(code, hint, reason="not a numeric BSE code")

        hit = self.cached(code, hint)
        if hit is not None:
            return hit

        symbol = await self._search_best(code, hint)
        if symbol:
            return self._store(code, hint, ResolvedSymbol(symbol, Exchange.BSE, ResolvedVia.SEARCH))

        security_id = await self.scrape_security_id(code)
        if security_id:
            symbol = f"{security_id}{BSE_SUFFIX}"
            verified = await self._search.verify(symbol) if self._verify else None
            if verified is False:
                logger.info("resolved %s -> %s but verification quote failed", code, symbol)
            return self._store(
                code, hint, ResolvedSymbol(symbol, Exchange.BSE, ResolvedVia.SCRAPE, verified=verified)
            )

        raise ResolutionError(code, hint)

    def _store(self, code: str, hint: str | None, resolved: ResolvedSymbol) -> ResolvedSymbol:
        self._cache[cache_key(code, hint)] = resolved
        logger.info("resolved BSE %s -> %s via %s", code, resolved.symbol, resolved.resolved_via.value)
        return resolved

    async def _search_best(self, code: str, hint: str | None) -> str | None:
        best: dict[str, Any] | None = None
        best_score = -1
        for query in search_queries(code, hint):
            try:
                candidates = await self._search.search(query)
            except Exception as exc:
                logger.debug("search %r failed: %s", query, exc)
                continue
            for cand in candidates:
                sc = score_candidate(cand)
                if best is None or sc > best_score:
                    best, best_score = cand, sc
            if best is not None and best_score >= EARLY_EXIT_SCORE and _is_bse(best):
                break

        if best is not None and _is_bse(best):
            return str(best["symbol"]).upper()
        return None

    def _page_strategy(self, page: BsePage) -> Callable[[str], Any]:
        extractors = regex_extractors(page.patterns)

        async def _try_page(code: str) -> str | None:
            url = page.url(code)
            html = await self._page_limiter.call(self._fetcher.fetch_text, url)
            found = await first_match(extractors, html)
            logger.debug("BSE %s page for %s: %s", page.name, code, found or "no match")
            return found

        _try_page.__name__ = f"bse_{page.name}"
        return _try_page

    async def scrape_security_id(self, code: str) -> str | None:
        """Walk the BSE pages in order; unreachable pages count as no match."""
        return await first_match([self._page_strategy(p) for p in self._pages], code, swallow=True)


def _is_bse(q: dict[str, Any]) -> bool:
    return str(q.get("symbol") or "").upper().endswith(BSE_SUFFIX)
