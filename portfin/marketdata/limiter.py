"""Per-source call scheduling: dispatch spacing, in-flight cap, bounded retry."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from portfin.errors import UpstreamEmptyPayload, UpstreamTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitedClient:
    """Wraps one upstream call type.

    Dispatches are spaced at least ``min_interval`` seconds apart and at most
    ``max_concurrency`` run at once. ``call`` retries up to ``attempts`` times
    with linear backoff (``attempt * backoff``); a result rejected by
    ``validate`` counts as a retryable failure. Once attempts are exhausted the
    last error is raised.

    Usage::

        quotes = RateLimitedClient("yahoo-quote", min_interval=0.2, attempts=3)
        q = await quotes.call(fetch_quote, "HDFCBANK.NS", validate=has_symbol_or_price)
    """

    def __init__(
        self,
        name: str,
        *,
        min_interval: float = 0.0,
        max_concurrency: int | None = None,
        attempts: int = 1,
        backoff: float = 0.3,
        timeout: float | None = None,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.min_interval = max(0.0, min_interval)
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.timeout = timeout
        self._retry_on = retry_on
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.max_concurrency = max_concurrency
        self._sem = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self._next_slot = 0.0
        self.dispatched = 0

    async def _wait_for_slot(self) -> None:
        async with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.min_interval
        delay = slot - now
        if delay > 0:
            await self._sleep(delay)

    async def _run(self, fn: Callable[..., Awaitable[T]], args: tuple, kwargs: dict) -> T:
        await self._wait_for_slot()
        self.dispatched += 1
        if self.timeout is None:
            return await fn(*args, **kwargs)
        try:
            return await asyncio.wait_for(fn(*args, **kwargs), self.timeout)
        except asyncio.TimeoutError:
            raise UpstreamTimeout(f"{self.name} call exceeded {self.timeout:.1f}s") from None

    async def schedule(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` once under the spacing and concurrency limits."""
        if self._sem is None:
            return await self._run(fn, args, kwargs)
        async with self._sem:
            return await self._run(fn, args, kwargs)

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        validate: Callable[[T], bool] | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``fn`` with retry; see class docstring."""
        for attempt in range(1, self.attempts + 1):
            try:
                result = await self.schedule(fn, *args, **kwargs)
                if validate is not None and not validate(result):
                    raise UpstreamEmptyPayload(f"Empty/invalid payload from {self.name}")
                return result
            except self._retry_on as exc:
                if attempt >= self.attempts:
                    raise
                wait = self.backoff * attempt
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    self.name,
                    attempt,
                    self.attempts,
                    exc,
                    wait,
                )
                await self._sleep(wait)
        raise RuntimeError(f"{self.name} made no attempts")
