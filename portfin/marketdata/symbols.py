"""Symbol canonicalization, source routing, and cache-key construction."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any, Iterable

_NUMERIC_RE = re.compile(r"^\d+$")

# Fields a loosely-shaped holding may carry its ticker / company name under.
_SYMBOL_ALIASES = ("symbol", "code", "ticker")
_NAME_ALIASES = ("name", "particulars")


class Exchange(str, enum.Enum):
    NSE = "NSE"
    BSE = "BSE"
    # Google Finance's name for BSE.
    BOM = "BOM"


class SourceKind(str, enum.Enum):
    """Upstream source classes a normalized item can be routed to."""

    YAHOO = "yahoo"
    GOOGLE = "google"


@dataclass(frozen=True)
class Item:
    symbol: str
    exchange: Exchange
    name: str | None = None

    @property
    def key(self) -> str:
        return f"{self.symbol}:{self.exchange.value}"


def clean_symbol(value: Any) -> str:
    return str(value if value is not None else "").strip().upper()


def is_numeric_symbol(value: Any) -> bool:
    return bool(_NUMERIC_RE.match(str(value if value is not None else "").strip()))


def _first_present(raw: dict[str, Any], keys: Iterable[str]) -> Any:
    for k in keys:
        v = raw.get(k)
        if v is not None and str(v).strip():
            return v
    return None


def normalize_item(raw: Any = None, exchange: Any = None) -> Item:
    """Canonicalize a raw holding; never raises.

    Accepts a mapping with any of the aliased symbol fields, or a bare symbol
    plus optional exchange. An exchange other than NSE/BSE is replaced by the
    one inferred from the symbol's shape (numeric → BSE, else NSE).
    """
    name = None
    if isinstance(raw, dict):
        symbol = clean_symbol(_first_present(raw, _SYMBOL_ALIASES))
        exchange = raw.get("exchange", exchange)
        hint = _first_present(raw, _NAME_ALIASES)
        name = str(hint).strip() if hint is not None else None
    else:
        symbol = clean_symbol(raw)

    ex = clean_symbol(exchange)
    if ex not in (Exchange.NSE.value, Exchange.BSE.value):
        ex = Exchange.BSE.value if is_numeric_symbol(symbol) else Exchange.NSE.value
    return Item(symbol=symbol, exchange=Exchange(ex), name=name or None)


def route(item: Item) -> SourceKind:
    """Pick the upstream source class for a normalized item."""
    if item.exchange is Exchange.BSE and is_numeric_symbol(item.symbol):
        return SourceKind.GOOGLE
    return SourceKind.YAHOO


def split_by_source(items: Iterable[Item]) -> dict[SourceKind, list[Item]]:
    out: dict[SourceKind, list[Item]] = {kind: [] for kind in SourceKind}
    for item in items:
        out[route(item)].append(item)
    return out


def to_yahoo(item: Item) -> str:
    suffix = ".BO" if item.exchange in (Exchange.BSE, Exchange.BOM) else ".NS"
    return f"{item.symbol}{suffix}"


def to_google_path(item: Item) -> str:
    gex = Exchange.BOM if item.exchange in (Exchange.BSE, Exchange.BOM) else Exchange.NSE
    return f"{item.symbol}:{gex.value}"


def batch_key(parts: Iterable[str]) -> str:
    """Order-invariant key for a batch of canonical identifiers."""
    return ",".join(sorted(parts))
