from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from app.core.config import settings

from .errors import MarketFetchError


class PolymarketClient:
    """Thin async wrapper around the Polymarket Gamma market and event endpoints."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or str(settings.polymarket_base_url)).rstrip("/")
        self.timeout = timeout
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        logger.debug("Polymarket GET {} params={}", path, params)
        response = await self.client.get(path, params=params)
        if response.is_error:
            raise MarketFetchError(
                f"Polymarket API error ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise MarketFetchError(
                "Polymarket API returned a non-JSON body",
                status_code=response.status_code,
                code="BAD_RESPONSE",
                retryable=False,
            ) from exc

    async def fetch_market_by_slug(self, slug: str) -> dict[str, Any]:
        return await self._get_json(f"/markets/slug/{quote(slug, safe='')}")

    async def fetch_market_by_id(self, market_id: str) -> dict[str, Any]:
        return await self._get_json(f"/markets/{quote(market_id, safe='')}")

    async def fetch_event_by_slug(self, slug: str) -> dict[str, Any]:
        try:
            return await self._get_json(f"/events/slug/{quote(slug, safe='')}")
        except MarketFetchError as exc:
            if not exc.is_not_found:
                raise
            logger.debug("Event slug lookup missed for {}; trying filtered list", slug)
            fallback = await self._get_json("/events", params={"slug": slug})
            if isinstance(fallback, list) and fallback and isinstance(fallback[0], dict):
                return fallback[0]
            raise

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "PolymarketClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
