"""Brave web search client used to gather external evidence."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


class SearchError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BraveSearchClient:
    """Issue one web query at a time and return the raw ``web.results`` entries."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = BRAVE_SEARCH_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("SEARCH_API_KEY is not configured")
        self.base_url = base_url
        self.client = httpx.AsyncClient(
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": api_key,
            },
            transport=transport,
        )

    async def search(self, query: str, *, timeout_ms: int, count: int) -> list[dict[str, Any]]:
        timeout = timeout_ms / 1000 if timeout_ms > 0 else None
        response = await self.client.get(
            self.base_url,
            params={"q": query, "count": count},
            timeout=timeout,
        )
        if response.is_error:
            raise SearchError(
                f"Brave search error ({response.status_code}): {response.text[:300]}",
                status_code=response.status_code,
            )
        payload = response.json()
        web = payload.get("web") if isinstance(payload, dict) else None
        results = web.get("results") if isinstance(web, dict) else None
        if not isinstance(results, list):
            return []
        logger.debug("Brave search query={!r} results={}", query, len(results))
        return [item for item in results if isinstance(item, dict)]

    async def aclose(self) -> None:
        await self.client.aclose()


__all__ = ["BRAVE_SEARCH_URL", "BraveSearchClient", "SearchError"]
