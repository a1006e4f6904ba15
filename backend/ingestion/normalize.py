from __future__ import annotations

import json
import re
from typing import Any

from app.domain import Market

from .errors import MarketFetchError

_LIST_SPLIT = re.compile(r"[|,]")


def _as_list(value: Any) -> list[Any]:
    """Return value as a list, decoding JSON strings and delimited text."""
    if isinstance(value, list):
        return value
    if value is None:
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            parts = [part.strip() for part in _LIST_SPLIT.split(value) if part.strip()]
            return parts or [value]
        if isinstance(parsed, list):
            return parsed
        return [parsed]
    return [value]


def _parse_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed or parsed in (float("inf"), float("-inf")):
        return None
    return parsed


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def normalize_string_list(value: Any) -> tuple[str, ...]:
    return tuple(str(item) for item in _as_list(value))


def normalize_number_list(value: Any) -> tuple[float, ...]:
    prices = (_parse_float(item) for item in _as_list(value))
    return tuple(price for price in prices if price is not None)


def normalize_market(raw_market: dict[str, Any], *, fallback_slug: str | None = None) -> Market:
    raw_id = raw_market.get("id") or raw_market.get("marketId")
    market_id = str(raw_id) if raw_id not in (None, "") else ""
    if not market_id:
        raise MarketFetchError(
            "Polymarket response missing market id.",
            code="BAD_RESPONSE",
            retryable=False,
        )

    return Market(
        market_id=market_id,
        slug=_text(raw_market.get("slug")) or fallback_slug,
        question=_text(raw_market.get("question")),
        description=_text(raw_market.get("description")),
        resolution_criteria=_text(raw_market.get("resolutionCriteria")),
        end_date=_text(raw_market.get("endDate")) or _text(raw_market.get("closeDate")),
        category=_text(raw_market.get("category")),
        subcategory=_text(raw_market.get("subcategory")),
        outcomes=normalize_string_list(raw_market.get("outcomes")),
        outcome_prices=normalize_number_list(raw_market.get("outcomePrices")),
        raw_data=raw_market,
    )


def format_outcome_summary(market: Market) -> list[str]:
    """Render outcomes as ``"Yes (63.0%)"`` when a price is known."""
    summary: list[str] = []
    for index, outcome in enumerate(market.outcomes):
        if index < len(market.outcome_prices):
            summary.append(f"{outcome} ({market.outcome_prices[index] * 100:.1f}%)")
        else:
            summary.append(outcome)
    return summary
