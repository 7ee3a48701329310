"""Per-item result records returned by the batch operations."""

from __future__ import annotations

from dataclasses import dataclass, field

from portfin.marketdata.symbols import SourceKind
from portfin.utils import now_ms


@dataclass
class QuoteResult:
    ok: bool
    symbol: str
    source: SourceKind
    price: float | None = None
    currency: str | None = None
    error: str | None = None
    url: str | None = None
    ts: int = field(default_factory=now_ms)

    @classmethod
    def failure(cls, symbol: str, source: SourceKind, error: str, url: str | None = None) -> QuoteResult:
        return cls(ok=False, symbol=symbol, source=source, error=error, url=url)

    def as_dict(self) -> dict:
        out = {
            "ok": self.ok,
            "symbol": self.symbol,
            "price": self.price,
            "currency": self.currency,
            "source": self.source.value,
            "ts": self.ts,
        }
        if self.url:
            out["url"] = self.url
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class FundamentalsResult:
    ok: bool
    symbol: str
    exchange: str
    pe: float | None = None
    latest_earnings: float | None = None
    source: SourceKind = SourceKind.GOOGLE
    url: str | None = None
    error: str | None = None
    cache: str | None = None
    ts: int = field(default_factory=now_ms)

    @property
    def key(self) -> str:
        return f"{self.symbol}:{self.exchange}"

    @classmethod
    def failure(cls, symbol: str, exchange: str, error: str) -> FundamentalsResult:
        return cls(ok=False, symbol=symbol, exchange=exchange, error=error)

    def as_dict(self) -> dict:
        out = {
            "ok": self.ok,
            "symbol": self.symbol,
            "exchange": self.exchange,
            "pe": self.pe,
            "latestEarnings": self.latest_earnings,
            "source": self.source.value,
            "ts": self.ts,
        }
        if self.url:
            out["url"] = self.url
        if self.cache:
            out["cache"] = self.cache
        if self.error:
            out["error"] = self.error
        return out
