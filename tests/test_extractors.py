from __future__ import annotations

import pytest

from portfin.marketdata.extractors import (
    SECURITY_ID_DESKTOP_INFO,
    SECURITY_ID_MOBILE,
    first_match,
    regex_extractor,
    regex_extractors,
)


@pytest.mark.asyncio
async def test_first_match_stops_at_first_hit_in_order() -> None:
    calls: list[str] = []

    def make(name, result):
        def _s(text):
            calls.append(name)
            return result

        return _s

    out = await first_match([make("a", None), make("b", "X"), make("c", "Y")], "html")
    assert out == "X"
    assert calls == ["a", "b"]


@pytest.mark.asyncio
async def test_first_match_awaits_async_strategies() -> None:
    async def nothing(code):
        return None

    async def found(code):
        return f"{code}-ok"

    assert await first_match([nothing, found], "544107") == "544107-ok"
    assert await first_match([nothing], "544107") is None


@pytest.mark.asyncio
async def test_first_match_swallow_skips_raising_strategy() -> None:
    def broken(_):
        raise RuntimeError("HTTP_503")

    assert await first_match([broken, lambda _: "Z"], "x", swallow=True) == "Z"
    with pytest.raises(RuntimeError):
        await first_match([broken, lambda _: "Z"], "x")


def test_regex_extractor_trims_and_uppercases() -> None:
    extract = regex_extractor(r"Scrip\s*ID\s*[:\s]*([A-Z0-9.-]+)")
    assert extract("Scrip ID : bajajhfl ") == "BAJAJHFL"
    assert extract("no label here") is None
    assert extract("") is None


@pytest.mark.asyncio
async def test_mobile_patterns_read_security_id_after_tag() -> None:
    html = "<div><b>Security ID</b> BAJAJHFL</div>"
    assert await first_match(regex_extractors(SECURITY_ID_MOBILE), html) == "BAJAJHFL"


@pytest.mark.asyncio
async def test_desktop_patterns_read_table_cell() -> None:
    html = "<tr><td>Security Id: HDFCBANK</td></tr>"
    assert await first_match(regex_extractors(SECURITY_ID_DESKTOP_INFO), html) == "HDFCBANK"
