"""Shared utilities: logging, time helpers, number parsing."""

from __future__ import annotations

import json
import logging
import re
import sys
import time
from datetime import datetime, timezone
from typing import Any


# ── Structured JSON logging ───────────────────────────────────────────

class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger with structured JSON output to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("yfinance").setLevel(logging.CRITICAL)


# ── Timestamp helpers ─────────────────────────────────────────────────

def now_ms() -> int:
    """Wall-clock epoch milliseconds, the ``ts`` stamped on every result."""
    return int(time.time() * 1000)


# ── Number parsing ────────────────────────────────────────────────────

_NUM_RE = re.compile(r"-?\d{1,3}(?:,\d{3})*(?:\.\d+)?|-?\d+(?:\.\d+)?")
_NOISE_RE = re.compile(r"[,\s\u20b9]|INR", re.IGNORECASE)


def first_number(text: str | None) -> str | None:
    """Return the first number-looking token in ``text`` (separators kept)."""
    if not text:
        return None
    m = _NUM_RE.search(re.sub(r"\s+", " ", text))
    return m.group(0) if m else None


def parse_number(raw: Any) -> float | None:
    """Parse a scraped price/ratio string such as ``'₹1,234.50'``; None if not finite."""
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        cleaned = _NOISE_RE.sub("", str(raw))
        if not cleaned:
            return None
        try:
            value = float(cleaned)
        except ValueError:
            return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value
