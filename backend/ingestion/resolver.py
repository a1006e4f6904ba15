"""Map a slug, market id, or event path onto one canonical market record."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from loguru import logger

from app.core.config import PipelineConfig
from app.domain import AnalysisRequest, Market, ResolvedVia
from pipelines.errors import AnalysisError, InvalidRequestError
from pipelines.retry import SleepFn, is_retryable_error, status_code_of, with_retries

from .errors import MarketFetchError, MarketResolutionError
from .normalize import normalize_market

_DUPLICATE_SLASHES = re.compile(r"/{2,}")


class MarketDataSource(Protocol):
    async def fetch_market_by_slug(self, slug: str) -> dict[str, Any]: ...

    async def fetch_market_by_id(self, market_id: str) -> dict[str, Any]: ...

    async def fetch_event_by_slug(self, slug: str) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class ResolvedMarket:
    market: Market
    resolved_via: ResolvedVia
    attempts: int


def _clean_path(value: str) -> str:
    return _DUPLICATE_SLASHES.sub("/", value.strip().strip("/"))


def _event_markets(event: dict[str, Any]) -> list[dict[str, Any]]:
    markets = event.get("markets")
    if not isinstance(markets, list):
        return []
    return [market for market in markets if isinstance(market, dict)]


def _as_text(value: Any) -> str | None:
    if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
        return str(value)
    return None


def market_failure(exc: BaseException, attempts: int) -> AnalysisError:
    """Translate a resolution failure into the market_fetch error taxonomy."""

    if isinstance(exc, AnalysisError):
        return exc
    explicit = getattr(exc, "retryable", None)
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return AnalysisError(
            "Market fetch timed out.",
            step="market_fetch",
            error_code="TIMEOUT",
            retryable=explicit if isinstance(explicit, bool) else True,
            attempts=attempts,
            sources_count=0,
        )
    code = getattr(exc, "code", None)
    if code == "BAD_RESPONSE":
        return AnalysisError(
            str(exc),
            step="market_fetch",
            error_code="BAD_RESPONSE",
            retryable=explicit if isinstance(explicit, bool) else False,
            attempts=attempts,
            sources_count=0,
        )
    not_found = code == "NOT_FOUND" or status_code_of(exc) in (404, 410)
    if not_found:
        message = str(exc) if isinstance(exc, MarketResolutionError) else "Market not found."
        return AnalysisError(
            message,
            step="market_fetch",
            error_code="NOT_FOUND",
            retryable=explicit if isinstance(explicit, bool) else False,
            attempts=attempts,
            sources_count=0,
        )
    return AnalysisError(
        "Market fetch failed.",
        step="market_fetch",
        error_code="NETWORK_ERROR",
        retryable=explicit if isinstance(explicit, bool) else True,
        attempts=attempts,
        sources_count=0,
    )


class MarketResolver:
    """Resolve analysis input through the Gamma API under retry and timeout."""

    def __init__(
        self,
        client: MarketDataSource,
        config: PipelineConfig,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.client = client
        self.config = config
        self._sleep = sleep
        self._gamma_calls = 0

    async def resolve(self, request: AnalysisRequest) -> ResolvedMarket:
        self._gamma_calls = 0
        if request.identifier_count != 1:
            raise InvalidRequestError(
                "Provide exactly one of a market slug, market id, or event slug."
            )

        attempts = 0

        async def _attempt(attempt: int) -> tuple[Market, ResolvedVia]:
            nonlocal attempts
            attempts = attempt + 1
            return await self.resolve_once(request)

        outcome_task = with_retries(
            _attempt,
            self.config.gamma_retries,
            self.config.gamma_backoff_ms,
            is_retryable_error,
            sleep=self._sleep,
            label="market fetch",
        )
        timeout = self.config.market_timeout_ms / 1000 if self.config.market_timeout_ms > 0 else None
        try:
            outcome = await asyncio.wait_for(outcome_task, timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.debug("market fetch: timeout after {} attempts", attempts)
            raise market_failure(exc, attempts) from exc

        if outcome.error is not None:
            logger.debug("market fetch: fail attempts={} error={}", outcome.attempts, outcome.error)
            raise market_failure(outcome.error, outcome.attempts) from outcome.error

        market, resolved_via = outcome.value  # type: ignore[misc]
        logger.debug("market fetch: ok id={} via={}", market.market_id, resolved_via)
        return ResolvedMarket(market=market, resolved_via=resolved_via, attempts=outcome.attempts)

    async def _fetch(self, method: str, key: str) -> dict[str, Any]:
        """Call the Gamma client, spacing consecutive calls of this resolution."""

        delay_ms = self.config.gamma_request_delay_ms
        if self._gamma_calls and delay_ms > 0:
            await self._sleep(delay_ms / 1000)
        self._gamma_calls += 1
        return await getattr(self.client, method)(key)

    async def resolve_once(self, request: AnalysisRequest) -> tuple[Market, ResolvedVia]:
        """Run one resolution pass without retries."""

        if request.market_id:
            raw = await self._fetch("fetch_market_by_id", request.market_id.strip())
            return normalize_market(raw), "market_slug"

        path = _clean_path(request.path_input)
        if not path:
            raise InvalidRequestError(
                "Provide exactly one of a market slug, market id, or event slug."
            )

        if "/" in path:
            event_slug, _, market_slug = path.partition("/")
            return await self._resolve_event_path(event_slug, market_slug), "event_market_path"

        if request.event_slug:
            return await self._resolve_event_index(path, request.market_index), "event_index"

        try:
            raw = await self._fetch("fetch_market_by_slug", path)
        except MarketFetchError as exc:
            if not exc.is_not_found:
                raise
            logger.debug("Market slug {} not found; resolving as event", path)
            return await self._resolve_event_index(path, request.market_index), "event_index"
        return normalize_market(raw, fallback_slug=path), "market_slug"

    async def _resolve_event_index(self, event_slug: str, market_index: int | None) -> Market:
        event = await self._fetch("fetch_event_by_slug", event_slug)
        markets = _event_markets(event)
        if not markets:
            raise MarketResolutionError("Event has no markets.")
        index = 0 if market_index is None else market_index
        if index < 0 or index >= len(markets):
            raise MarketResolutionError(
                f"Event market index out of range. Max index: {len(markets) - 1}"
            )
        return await self._hydrate(markets[index])

    async def _resolve_event_path(self, event_slug: str, market_slug: str) -> Market:
        event = await self._fetch("fetch_event_by_slug", event_slug)
        wanted = market_slug.lower()
        for candidate in _event_markets(event):
            slug = _as_text(candidate.get("slug"))
            if slug and slug.lower() == wanted:
                return await self._hydrate(candidate)
        raise MarketResolutionError(
            f"Market '{market_slug}' not found in event '{event_slug}'."
        )

    async def _hydrate(self, selected: dict[str, Any]) -> Market:
        """Fetch the full record for a market listed inside an event."""

        slug = _as_text(selected.get("slug"))
        market_id = _as_text(selected.get("id"))
        try:
            if slug:
                raw = await self._fetch("fetch_market_by_slug", slug)
            elif market_id:
                raw = await self._fetch("fetch_market_by_id", market_id)
            else:
                raw = selected
        except MarketFetchError as exc:
            if not exc.is_not_found or not market_id:
                raise
            logger.debug("Full record for market {} unavailable; using event entry", market_id)
            raw = selected
        return normalize_market(raw, fallback_slug=slug)


__all__ = ["MarketDataSource", "MarketResolver", "ResolvedMarket", "market_failure"]
