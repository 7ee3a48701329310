from __future__ import annotations

import time

import httpx
import pytest
import pytest_asyncio

from portfin.config import Settings
from portfin.errors import BatchFailure, InvalidInput
from portfin.marketdata import MarketDataGateway

FUNDAMENTALS_HTML = """
<html><body>
  <div><span>P/E ratio</span><div>{pe}</div></div>
  <div><span>Earnings per share</span><div>{eps}</div></div>
</body></html>
"""

PRICE_HTML = """
<html><head><title>500325:BOM - Google Finance</title></head>
<body><div data-last-price="2945.10"></div></body></html>
"""


class FakeBackend:
    def __init__(self) -> None:
        self.searches: list[str] = []
        self.quotes: list[str] = []

    def search(self, query):  # noqa: ANN001
        self.searches.append(query)
        return []

    def quote(self, symbol):  # noqa: ANN001
        self.quotes.append(symbol)
        if symbol == "HDFCBANK.NS":
            return {"symbol": symbol, "regularMarketPrice": 1650.5, "currency": "INR"}
        return {}


class Upstream:
    """httpx mock for Google Finance and BSE pages."""

    def __init__(self) -> None:
        self.urls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.urls.append(url)
        if "m.bseindia.com" in url:
            return httpx.Response(200, text="<p>Security ID : BAJAJHFL</p>")
        if "bseindia.com" in url:
            return httpx.Response(503, text="")
        if "BAJAJHFL" in url:
            return httpx.Response(200, text=FUNDAMENTALS_HTML.format(pe="41.20", eps="2.75"))
        if "TCS" in url:
            return httpx.Response(200, text=FUNDAMENTALS_HTML.format(pe="30.10", eps="128.40"))
        if "500325" in url:
            return httpx.Response(200, text=PRICE_HTML)
        return httpx.Response(404, text="")


def _settings(**overrides) -> Settings:  # noqa: ANN003
    base = dict(
        yahoo_search_min_interval_ms=0,
        yahoo_verify_min_interval_ms=0,
        yahoo_quote_min_interval_ms=0,
        yahoo_quote_attempts=1,
        scrape_min_interval_ms=0,
        scrape_attempts=1,
        page_min_interval_ms=0,
        retry_backoff_ms=0,
        resolver_verify=False,
    )
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest_asyncio.fixture
async def gateway(backend, upstream):  # noqa: ANN001
    gw = MarketDataGateway.from_settings(
        _settings(),
        transport=httpx.MockTransport(upstream),
        yahoo_backend=backend,
    )
    yield gw
    await gw.close()


@pytest.mark.asyncio
async def test_quotes_require_symbols_or_items(gateway) -> None:  # noqa: ANN001
    with pytest.raises(InvalidInput, match=r"Provide symbols\[\] or items\[\]"):
        await gateway.get_quotes_batch()
    with pytest.raises(InvalidInput):
        await gateway.get_quotes_batch(symbols=[], items=[])


@pytest.mark.asyncio
async def test_item_without_symbol_is_rejected_before_upstream(gateway, backend) -> None:  # noqa: ANN001
    with pytest.raises(InvalidInput, match=r"items\[1\] has no symbol"):
        await gateway.get_quotes_batch(items=["TCS", {"name": "No ticker"}])
    assert backend.quotes == []


@pytest.mark.asyncio
async def test_fundamentals_require_items(gateway) -> None:  # noqa: ANN001
    with pytest.raises(InvalidInput, match=r"items\[\] is required"):
        await gateway.get_fundamentals_batch(None)
    with pytest.raises(InvalidInput):
        await gateway.get_fundamentals_batch([])


@pytest.mark.asyncio
async def test_quote_batch_end_to_end(gateway) -> None:  # noqa: ANN001
    results = await gateway.get_quotes_batch(symbols=["HDFCBANK", "500325"])
    by_source = {r.source.value: r for r in results}

    assert by_source["yahoo"].price == 1650.5
    assert by_source["google"].price == pytest.approx(2945.10)
    assert by_source["google"].symbol == "500325:BOM"


@pytest.mark.asyncio
async def test_quote_batch_all_failed(gateway) -> None:  # noqa: ANN001
    with pytest.raises(BatchFailure, match="Failed to fetch prices"):
        await gateway.get_quotes_batch(items=[{"symbol": "NOPE", "exchange": "NSE"}])


@pytest.mark.asyncio
async def test_fundamentals_end_to_end_with_numeric_bse_code(gateway, backend, upstream) -> None:  # noqa: ANN001
    results = await gateway.get_fundamentals_batch(
        [{"symbol": "TCS"}, {"code": "544107", "exchange": "BSE", "particulars": "Bajaj Housing"}],
        deadline_ms=5000,
        symbol_timeout_ms=4000,
    )
    by_key = {r.key: r for r in results}

    assert by_key["TCS:NSE"].pe == pytest.approx(30.10)
    assert by_key["BAJAJHFL:BOM"].pe == pytest.approx(41.20)
    assert by_key["BAJAJHFL:BOM"].latest_earnings == pytest.approx(2.75)

    # Every search variant is tried before the BSE pages are touched.
    assert len(backend.searches) == 6
    bse_urls = [u for u in upstream.urls if "bseindia" in u]
    assert bse_urls == ["https://m.bseindia.com/StockReach.aspx?scripcd=544107"]

    resolved = gateway.resolver.cached("544107", "Bajaj Housing")
    assert resolved is not None and resolved.symbol == "BAJAJHFL.BO"


@pytest.mark.asyncio
async def test_resolve_bse_code(gateway) -> None:  # noqa: ANN001
    resolved = await gateway.resolve_bse_code("544107")
    again = await gateway.resolve_bse_code("544107")

    assert resolved.symbol == "BAJAJHFL.BO"
    assert resolved.resolved_via.value == "scrape"
    assert again.resolved_via.value == "cache"


@pytest.mark.asyncio
async def test_cache_stats_reflect_activity(gateway) -> None:  # noqa: ANN001
    await gateway.get_fundamentals_batch(["TCS"])
    stats = gateway.cache_stats()

    assert stats["fundamentals_by_symbol"] == 1
    assert stats["fundamentals"] == 1


def test_clamp_deadlines() -> None:
    s = Settings(
        fundamentals_deadline_ms=7000,
        fundamentals_deadline_ceiling_ms=15000,
        fundamentals_symbol_timeout_ms=6000,
    )

    assert s.clamp_deadlines() == (7000, 6000)
    assert s.clamp_deadlines(60000, None) == (15000, 6000)
    assert s.clamp_deadlines(2000, None) == (2000, 2000)
    assert s.clamp_deadlines(5000, 1000) == (5000, 1000)
    assert s.clamp_deadlines(-5, 100) == (0, 0)
    assert s.clamp_deadlines(float("inf"), None) == (15000, 6000)
    assert s.clamp_deadlines(float("inf"), float("inf")) == (15000, 15000)
    assert s.clamp_deadlines(2500.7, 900.2) == (2500, 900)
    with pytest.raises(InvalidInput, match="deadlineMs"):
        s.clamp_deadlines(float("nan"), None)
    with pytest.raises(InvalidInput, match="symbolTimeoutMs"):
        s.clamp_deadlines(None, float("nan"))


@pytest.mark.asyncio
async def test_unresolvable_code_searches_then_walks_pages_in_order() -> None:
    log: list[str] = []

    class LoggingBackend(FakeBackend):
        def search(self, query):  # noqa: ANN001
            log.append("search")
            return super().search(query)

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if "bseindia" in url:
            log.append(url)
            return httpx.Response(200, text="<html>no security id here</html>")
        if "TCS" in url:
            return httpx.Response(200, text=FUNDAMENTALS_HTML.format(pe="30.10", eps="128.40"))
        return httpx.Response(404, text="")

    gw = MarketDataGateway.from_settings(
        _settings(), transport=httpx.MockTransport(handler), yahoo_backend=LoggingBackend()
    )
    try:
        results = await gw.get_fundamentals_batch(
            [{"symbol": "544107", "exchange": "BSE"}, "TCS"], deadline_ms=5000, symbol_timeout_ms=4000
        )
    finally:
        await gw.close()

    failed = next(r for r in results if r.symbol == "544107")
    assert failed.ok is False
    assert failed.error.startswith("Could not resolve")
    assert log == [
        "search",
        "search",
        "search",
        "https://m.bseindia.com/StockReach.aspx?scripcd=544107",
        "https://www.bseindia.com/stock-share-price/stockreach_company_info.aspx?scripcode=544107",
        "https://www.bseindia.com/stock-share-price/stockreach_financials.aspx?scripcode=544107",
    ]
    assert gw.resolver.cached("544107") is None


@pytest.mark.asyncio
async def test_infinite_deadline_is_clamped_not_fatal(gateway) -> None:  # noqa: ANN001
    results = await gateway.get_fundamentals_batch(
        ["TCS"], deadline_ms=float("inf"), symbol_timeout_ms=float("inf")
    )
    assert results[0].ok is True

    with pytest.raises(InvalidInput):
        await gateway.get_fundamentals_batch(["TCS"], deadline_ms=float("nan"))


@pytest.mark.asyncio
async def test_limiters_carry_concurrency_caps_and_page_retries(gateway) -> None:  # noqa: ANN001
    s = _settings()
    yahoo = gateway.prices._yahoo
    for limiter in (yahoo._search, yahoo._verify, yahoo._quotes):
        assert limiter.max_concurrency == s.yahoo_max_concurrency
        assert limiter.timeout == pytest.approx(s.yahoo_call_timeout_ms / 1000)
    page = gateway.resolver._page_limiter
    assert page.max_concurrency == s.page_max_concurrency
    assert page.attempts == s.page_attempts


@pytest.mark.asyncio
async def test_google_price_page_is_retried_after_http_error() -> None:
    hits: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(str(request.url))
        if len(hits) == 1:
            return httpx.Response(503, text="")
        return httpx.Response(200, text=PRICE_HTML)

    gw = MarketDataGateway.from_settings(
        _settings(page_attempts=2), transport=httpx.MockTransport(handler), yahoo_backend=FakeBackend()
    )
    try:
        results = await gw.get_quotes_batch(symbols=["500325"])
    finally:
        await gw.close()

    assert results[0].ok is True
    assert results[0].price == pytest.approx(2945.10)
    assert len(hits) == 2


@pytest.mark.asyncio
async def test_bse_page_is_retried_before_moving_to_next_page() -> None:
    hits: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        hits.append(url)
        if "m.bseindia.com" in url and len(hits) == 1:
            return httpx.Response(503, text="")
        if "m.bseindia.com" in url:
            return httpx.Response(200, text="<p>Security ID : BAJAJHFL</p>")
        return httpx.Response(404, text="")

    gw = MarketDataGateway.from_settings(
        _settings(page_attempts=2), transport=httpx.MockTransport(handler), yahoo_backend=FakeBackend()
    )
    try:
        resolved = await gw.resolve_bse_code("544107")
    finally:
        await gw.close()

    assert resolved.symbol == "BAJAJHFL.BO"
    assert hits == ["https://m.bseindia.com/StockReach.aspx?scripcd=544107"] * 2


@pytest.mark.asyncio
async def test_slow_yahoo_call_times_out_as_item_failure() -> None:
    class SlowBackend(FakeBackend):
        def quote(self, symbol):  # noqa: ANN001
            time.sleep(0.3)
            return super().quote(symbol)

    gw = MarketDataGateway.from_settings(
        _settings(yahoo_call_timeout_ms=50),
        transport=httpx.MockTransport(Upstream()),
        yahoo_backend=SlowBackend(),
    )
    try:
        results = await gw.get_quotes_batch(symbols=["HDFCBANK", "500325"])
    finally:
        await gw.close()

    by_source = {r.source.value: r for r in results}
    assert by_source["yahoo"].ok is False
    assert "yahoo-quote call exceeded" in by_source["yahoo"].error
    assert by_source["google"].ok is True
