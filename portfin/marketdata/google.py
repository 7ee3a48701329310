"""Page-scraped Google Finance sources: current price (CMP) and P/E + EPS.

Markup on these pages changes without notice; every lookup here degrades to a
``None``/``ok=False`` outcome instead of raising when the expected element is
missing.
"""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import quote

from bs4 import BeautifulSoup
from cachetools import TTLCache

from portfin.marketdata.http import PageFetcher
from portfin.marketdata.limiter import RateLimitedClient
from portfin.marketdata.models import FundamentalsResult, QuoteResult
from portfin.marketdata.symbols import Item, SourceKind, to_google_path
from portfin.utils import first_number, parse_number

logger = logging.getLogger(__name__)

_GOOGLE_QUOTE_URL = "https://www.google.com/finance/quote/"

_TICKER_RE = re.compile(r"^[A-Z0-9.-]+:[A-Z]{2,3}$", re.IGNORECASE)
_TITLE_TICKER_RE = re.compile(r"^\s*([A-Z0-9.-]+:[A-Z]{2,3})\s*-\s*Google Finance", re.IGNORECASE)

PE_LABELS = (
    "P/E ratio",
    "P/E ratio (TTM)",
    "Price to earnings ratio",
    "Price-to-earnings ratio",
)
EPS_LABELS = (
    "Earnings per share",
    "EPS (TTM)",
    "Diluted EPS (TTM)",
    "EPS",
)


def quote_url(path: str, *, english: bool = False) -> str:
    url = _GOOGLE_QUOTE_URL + quote(path, safe="")
    return url + "?hl=en&gl=US" if english else url


def tickers_roughly_match(requested: str, observed: str) -> bool:
    """Equal tickers match; a requested ``X:BOM`` also matches a page showing ``X:BSE``."""
    if not requested or not observed:
        return False
    req = requested.upper()
    obs = observed.upper()
    if req == obs:
        return True
    return req.endswith(":BOM") and obs.endswith(":BSE") and req.split(":")[0] == obs.split(":")[0]


# ── price page ─────────────────────────────────────────────────────────

def parse_price_page(html: str) -> tuple[str, str | None]:
    """Return ``(observed_ticker, raw_price)`` from a quote page; either may be empty."""
    soup = BeautifulSoup(html or "", "html.parser")

    observed = ""
    meta = soup.find(attrs={"itemprop": "tickerSymbol"})
    content = (meta.get("content") or "").strip() if meta else ""
    if _TICKER_RE.match(content):
        observed = content
    elif soup.title and soup.title.string:
        m = _TITLE_TICKER_RE.match(soup.title.string)
        if m:
            observed = m.group(1)

    raw = None
    for attr in ("data-last-price", "data-last-price-hist"):
        el = soup.find(attrs={attr: True})
        if el is not None and el.get(attr):
            raw = el.get(attr)
            break
    if raw is None:
        el = soup.find("div", class_="YMlKec")
        if el is not None:
            raw = el.get_text(strip=True) or None
    return observed.upper(), raw


class GooglePriceSource:
    def __init__(
        self,
        fetcher: PageFetcher,
        cache: TTLCache,
        limiter: RateLimitedClient,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._limiter = limiter

    async def fetch_cmp(self, item: Item) -> QuoteResult:
        """Scrape the current price for one item. Network errors propagate."""
        path = to_google_path(item)
        cached = self._cache.get(path)
        if cached is not None:
            return cached

        url = quote_url(path)
        html = await self._limiter.call(self._fetcher.fetch_text, url)
        observed, raw = parse_price_page(html)

        if observed and not tickers_roughly_match(path, observed):
            res = QuoteResult.failure(
                path.upper(),
                SourceKind.GOOGLE,
                f"Ticker mismatch: requested {path} but page shows {observed}",
                url=url,
            )
            self._cache[path] = res
            return res

        price = parse_number(raw)
        if price is None:
            res = QuoteResult.failure(
                path.upper(),
                SourceKind.GOOGLE,
                "Google returned no price (page mismatch or no data)",
                url=url,
            )
        else:
            res = QuoteResult(
                ok=True,
                symbol=(observed or path).upper(),
                source=SourceKind.GOOGLE,
                price=price,
                currency="INR",
                url=url,
            )
        self._cache[path] = res
        return res


# ── fundamentals page ──────────────────────────────────────────────────

def _node_texts(nodes: list[Any]) -> list[str]:
    return [" ".join(n.get_text(" ", strip=True).split()) for n in nodes]


def get_metric(soup: BeautifulSoup, labels: tuple[str, ...] | list[str]) -> str | None:
    """Find the first number displayed next to any of ``labels``."""
    wanted = {label.lower() for label in labels}

    def is_wanted(text: str) -> bool:
        return text.strip().lower() in wanted

    nodes = soup.find_all(["span", "div", "td"])
    texts = _node_texts(nodes)

    # The value usually follows the label within the next few nodes in document order.
    for i, text in enumerate(texts):
        if not is_wanted(text):
            continue
        for candidate in texts[i + 1 : min(i + 10, len(texts))]:
            if not candidate or len(candidate) > 60:
                continue
            val = first_number(candidate)
            if val:
                return val

    for el, text in zip(nodes, texts):
        if not is_wanted(text):
            continue
        for sib in el.find_next_siblings(limit=8):
            val = first_number(sib.get_text(" ", strip=True))
            if val:
                return val
        if el.parent is not None:
            for row_text in _node_texts(el.parent.find_all(["span", "div", "td"])):
                if row_text and len(row_text) <= 60:
                    val = first_number(row_text)
                    if val:
                        return val
    return None


def parse_fundamentals(html: str) -> tuple[float | None, float | None]:
    """Return ``(pe, eps)`` parsed from a quote page."""
    soup = BeautifulSoup(html or "", "html.parser")
    return parse_number(get_metric(soup, PE_LABELS)), parse_number(get_metric(soup, EPS_LABELS))


def has_fundamentals(res: FundamentalsResult) -> bool:
    return res.pe is not None or res.latest_earnings is not None


class GoogleFundamentalsSource:
    """P/E and EPS from the Google Finance quote page, rate-limited with retry."""

    def __init__(self, fetcher: PageFetcher, limiter: RateLimitedClient) -> None:
        self._fetcher = fetcher
        self._limiter = limiter

    async def _scrape_once(self, symbol: str, exchange: str) -> FundamentalsResult:
        url = quote_url(f"{symbol}:{exchange}", english=True)
        html = await self._fetcher.fetch_text(url)
        pe, eps = parse_fundamentals(html)
        return FundamentalsResult(
            ok=True,
            symbol=symbol,
            exchange=exchange,
            pe=pe,
            latest_earnings=eps,
            source=SourceKind.GOOGLE,
            url=url,
        )

    async def scrape(self, symbol: str, exchange: str) -> FundamentalsResult:
        """Raises the last error when every attempt failed or found no metric."""
        return await self._limiter.call(self._scrape_once, symbol, exchange, validate=has_fundamentals)
