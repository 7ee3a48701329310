"""Centralized configuration via pydantic-settings, loaded from .env."""

from __future__ import annotations

import functools
import math

from pydantic_settings import BaseSettings, SettingsConfigDict

from portfin.errors import InvalidInput


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── API Server ────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"

    # ── Outbound HTTP (scrape sources) ─────────────────────────────────
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    )
    accept_language: str = "en-US,en;q=0.9"
    http_timeout_seconds: float = 10.0

    # ── Caches (seconds / max entries) ─────────────────────────────────
    quotes_ttl_seconds: float = 20
    quotes_cache_size: int = 500
    fundamentals_ttl_seconds: float = 60
    fundamentals_cache_size: int = 500
    fundamentals_symbol_ttl_seconds: float = 600
    fundamentals_symbol_stale_seconds: float = 3600
    fundamentals_symbol_cache_size: int = 2000
    symbol_resolve_ttl_seconds: float = 86400
    symbol_resolve_cache_size: int = 5000
    google_price_ttl_seconds: float = 20
    google_price_cache_size: int = 500

    # ── Rate limits ────────────────────────────────────────────────────
    yahoo_search_min_interval_ms: int = 300
    yahoo_verify_min_interval_ms: int = 200
    yahoo_quote_min_interval_ms: int = 200
    yahoo_quote_attempts: int = 3
    yahoo_max_concurrency: int = 4
    yahoo_call_timeout_ms: int = 8000
    scrape_min_interval_ms: int = 250
    scrape_max_concurrency: int = 4
    scrape_attempts: int = 2
    page_min_interval_ms: int = 100
    page_max_concurrency: int = 2
    page_attempts: int = 2
    retry_backoff_ms: int = 300

    # ── Fundamentals deadline budget ──────────────────────────────────
    fundamentals_deadline_ms: int = 7000
    fundamentals_deadline_ceiling_ms: int = 15000
    fundamentals_symbol_timeout_ms: int = 6000
    resolve_timeout_ms: int = 3000
    resolver_verify: bool = True

    def clamp_deadlines(
        self,
        deadline_ms: float | None = None,
        symbol_timeout_ms: float | None = None,
    ) -> tuple[int, int]:
        """Apply defaults and the hard ceiling; per-item timeout never exceeds the deadline.

        Values are clamped as floats before conversion, so ``inf`` lands on the
        ceiling. NaN is rejected as ``InvalidInput``.
        """
        deadline = _clamp_ms(
            deadline_ms, "deadlineMs", self.fundamentals_deadline_ms, self.fundamentals_deadline_ceiling_ms
        )
        per_item = _clamp_ms(
            symbol_timeout_ms, "symbolTimeoutMs", self.fundamentals_symbol_timeout_ms, deadline
        )
        return deadline, per_item


def _clamp_ms(value: float | None, name: str, default: int, ceiling: int) -> int:
    raw = default if value is None else float(value)
    if math.isnan(raw):
        raise InvalidInput(f"{name} must be a number")
    return int(max(0.0, min(raw, float(ceiling))))


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton accessor for the global settings."""
    return Settings()
