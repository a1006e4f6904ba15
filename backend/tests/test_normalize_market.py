from __future__ import annotations

import pytest

from ingestion.errors import MarketFetchError
from ingestion.normalize import (
    format_outcome_summary,
    normalize_market,
    normalize_number_list,
    normalize_string_list,
)


def test_normalize_market_handles_real_payload(sample_market_payload):
    normalized = normalize_market(sample_market_payload)

    assert normalized.market_id == str(sample_market_payload.get("id"))
    assert normalized.question
    assert normalized.slug == "fed-cuts-rates-in-december"
    assert normalized.outcomes == ("Yes", "No")
    assert normalized.outcome_prices == (0.63, 0.37)
    assert normalized.resolution_criteria.startswith("Resolves Yes")
    assert normalized.end_date == "2025-12-10T00:00:00Z"
    assert normalized.raw_data == sample_market_payload
    assert normalized.title == normalized.question


def test_normalize_market_requires_id():
    with pytest.raises(MarketFetchError) as excinfo:
        normalize_market({"slug": "abc"})
    assert excinfo.value.code == "BAD_RESPONSE"
    assert excinfo.value.retryable is False


def test_normalize_market_falls_back_for_slug_and_end_date():
    market = normalize_market({"id": 7, "closeDate": "2026-01-01"}, fallback_slug="from-request")
    assert market.market_id == "7"
    assert market.slug == "from-request"
    assert market.end_date == "2026-01-01"
    assert market.title == "from-request"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (["Yes", "No"], ("Yes", "No")),
        ('["Up", "Down"]', ("Up", "Down")),
        ("A|B", ("A", "B")),
        (None, ()),
    ],
)
def test_normalize_string_list(raw, expected):
    assert normalize_string_list(raw) == expected


def test_normalize_number_list_skips_invalid_values():
    assert normalize_number_list('["0.5", "nan", true, "x", 0.25]') == (0.5, 0.25)


def test_format_outcome_summary(sample_market_payload):
    market = normalize_market(sample_market_payload)
    assert format_outcome_summary(market) == ["Yes (63.0%)", "No (37.0%)"]

    partial = normalize_market({"id": "1", "outcomes": ["Yes", "No"], "outcomePrices": ["0.4"]})
    assert format_outcome_summary(partial) == ["Yes (40.0%)", "No"]
