"""Browser-identified HTML fetches for the page-scraped sources."""

from __future__ import annotations

import logging

import httpx

from portfin.config import Settings

logger = logging.getLogger(__name__)


class PageFetcher:
    """Thin wrapper over a shared ``httpx.AsyncClient``.

    Every request carries a desktop browser user agent and accept-language;
    bodies are returned as text and treated as untrusted by the callers.
    """

    def __init__(
        self,
        *,
        user_agent: str,
        accept_language: str = "en-US,en;q=0.9",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
            headers={
                "User-Agent": user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": accept_language,
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> PageFetcher:
        return cls(
            user_agent=settings.user_agent,
            accept_language=settings.accept_language,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    async def fetch_text(self, url: str) -> str:
        resp = await self._client.get(url)
        if resp.status_code >= 400:
            raise RuntimeError(f"HTTP_{resp.status_code} for {resp.request.url}")
        return resp.text

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except Exception:
            logger.debug("page client close failed", exc_info=True)
