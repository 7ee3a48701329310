"""Ordered fallback cascades over pluggable extractor strategies.

A strategy is any callable returning a value, ``None`` for "no match", or an
awaitable of either. ``first_match`` runs strategies in order and stops at the
first non-empty result; the same runner drives the pattern list within one
page and the page list of the BSE Security ID lookup.
"""

from __future__ import annotations

import inspect
import logging
import re
from typing import Any, Awaitable, Callable, Iterable, Sequence, Union

logger = logging.getLogger(__name__)

Strategy = Callable[..., Union[Any, Awaitable[Any]]]


async def first_match(strategies: Iterable[Strategy], *args: Any, swallow: bool = False) -> Any:
    """Return the first non-empty strategy result, or None.

    With ``swallow=True`` a strategy that raises is logged and skipped, which is
    how unreachable pages are treated in a page cascade.
    """
    for strategy in strategies:
        try:
            out = strategy(*args)
            if inspect.isawaitable(out):
                out = await out
        except Exception as exc:
            if not swallow:
                raise
            logger.debug("strategy %s failed: %s", getattr(strategy, "__name__", strategy), exc)
            continue
        if out:
            return out
    return None


def regex_extractor(pattern: str | re.Pattern[str], flags: int = re.IGNORECASE) -> Callable[[str], str | None]:
    """Strategy returning group 1 of ``pattern`` in the text, trimmed and upper-cased."""
    rx = re.compile(pattern, flags) if isinstance(pattern, str) else pattern

    def _extract(text: str) -> str | None:
        m = rx.search(text or "")
        if m and m.group(1):
            return m.group(1).strip().upper()
        return None

    _extract.__name__ = f"regex<{rx.pattern[:40]}>"
    return _extract


def regex_extractors(patterns: Sequence[str]) -> list[Callable[[str], str | None]]:
    return [regex_extractor(p) for p in patterns]


# ── BSE Security ID patterns ───────────────────────────────────────────

SECURITY_ID_MOBILE = (
    r"Security\s*ID\s*</?\w*>\s*([A-Z0-9.-]+)",
    r"Security\s*ID\s*[:\s]*([A-Z0-9.-]+)",
    r"Scrip\s*ID\s*[:\s]*([A-Z0-9.-]+)",
    r"Security\s*Code\s*[:\s]*\d+\s*[\s\S]{0,120}?Security\s*ID\s*[:\s]*([A-Z0-9.-]+)",
)

SECURITY_ID_DESKTOP_INFO = (
    r"Security\s*Id\s*[:\s]*([A-Z0-9.-]+)",
    r"Security\s*ID\s*[:\s]*([A-Z0-9.-]+)",
    r"Scrip\s*ID\s*[:\s]*([A-Z0-9.-]+)",
    r">(?:\s*Security\s*Id\s*)</?[^>]*>\s*</?[^>]*>\s*([A-Z0-9.-]{3,20})\s*<",
)

SECURITY_ID_DESKTOP_FINANCIALS = (
    r"Security\s*Id\s*[:\s]*([A-Z0-9.-]+)",
    r"Security\s*ID\s*[:\s]*([A-Z0-9.-]+)",
    r"Scrip\s*ID\s*[:\s]*([A-Z0-9.-]+)",
)
