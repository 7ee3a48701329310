"""Market data interfaces for portfin."""

from .gateway import MarketDataGateway
from .models import FundamentalsResult, QuoteResult
from .symbols import Exchange, Item, SourceKind, normalize_item

__all__ = [
    "Exchange",
    "FundamentalsResult",
    "Item",
    "MarketDataGateway",
    "QuoteResult",
    "SourceKind",
    "normalize_item",
]
