"""Error taxonomy for the market-data pipeline.

Only ``InvalidInput`` and ``BatchFailure`` cross the gateway boundary; the
rest are per-item causes that end up as ``ok=False`` results.
"""

from __future__ import annotations

from typing import Any


class MarketDataError(Exception):
    """Base class for every error raised by portfin."""


class InvalidInput(MarketDataError):
    """Malformed or missing batch input. Raised before any upstream call."""


class UpstreamEmptyPayload(MarketDataError):
    """An upstream answered without any identifying field. Retryable."""


class UpstreamTimeout(MarketDataError):
    """A single upstream call exceeded its allotted time. Retryable."""


class ResolutionError(MarketDataError):
    """Every strategy for mapping a numeric BSE code was exhausted."""

    def __init__(self, code: str, hint: str | None = None, reason: str | None = None) -> None:
        self.code = code
        self.hint = hint
        msg = f"Could not resolve BSE numeric {code} to a Yahoo symbol"
        if hint:
            msg += f" (hint: {hint})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class BatchFailure(MarketDataError):
    """The merged result set of a batch has no successful entry."""

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []
