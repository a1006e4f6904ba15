from __future__ import annotations

import copy
import json
import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import PipelineConfig, Settings
from ingestion.errors import MarketFetchError

DATA_DIR = Path(__file__).parent / "data"


class FakeMarketClient:
    """In-memory stand-in for the Gamma client keyed by slug."""

    def __init__(
        self,
        markets: list[dict[str, Any]] | None = None,
        events: list[dict[str, Any]] | None = None,
        failures: list[BaseException] | None = None,
    ) -> None:
        self.markets = {market["slug"]: market for market in markets or []}
        self.events = {event["slug"]: event for event in events or []}
        self.failures = list(failures or [])
        self.calls: list[tuple[str, str]] = []

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)

    async def fetch_market_by_slug(self, slug: str) -> dict[str, Any]:
        self.calls.append(("market_slug", slug))
        self._maybe_fail()
        if slug in self.markets:
            return copy.deepcopy(self.markets[slug])
        raise MarketFetchError("Polymarket API error (404)", status_code=404)

    async def fetch_market_by_id(self, market_id: str) -> dict[str, Any]:
        self.calls.append(("market_id", market_id))
        self._maybe_fail()
        for market in self.markets.values():
            if str(market.get("id")) == market_id:
                return copy.deepcopy(market)
        raise MarketFetchError("Polymarket API error (404)", status_code=404)

    async def fetch_event_by_slug(self, slug: str) -> dict[str, Any]:
        self.calls.append(("event_slug", slug))
        self._maybe_fail()
        if slug in self.events:
            return copy.deepcopy(self.events[slug])
        raise MarketFetchError("Polymarket API error (404)", status_code=404)


class FakeLLM:
    """Scripted provider returning queued replies or raising queued errors."""

    name = "fake"
    model = "fake-model"

    def __init__(self, replies: list[str | BaseException]) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def complete(self, prompt: str, *, response_format: str = "json_object") -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def sample_market_payload() -> dict[str, object]:
    path = DATA_DIR / "sample_market.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def sample_event_payload() -> dict[str, object]:
    path = DATA_DIR / "sample_event.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def market_client(sample_market_payload, sample_event_payload) -> FakeMarketClient:
    holds = dict(sample_event_payload["markets"][1])
    holds["description"] = "Resolves Yes if the target range is unchanged."
    return FakeMarketClient(
        markets=[sample_market_payload, holds],
        events=[sample_event_payload],
    )


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(
        gamma_backoff_ms=0,
        gamma_request_delay_ms=0,
        search_backoff_ms=0,
        overall_timeout_ms=5_000,
        market_timeout_ms=2_000,
        llm_timeout_ms=2_000,
    )


@pytest.fixture
def valid_report() -> dict[str, Any]:
    return {
        "quick_view": {
            "estimate_yes_pct": 61,
            "range_yes_pct": [55, 67],
            "confidence": "medium",
            "market_yes_pct": 63,
            "delta_vs_market_pp": -2,
            "top_drivers": {
                "pro": ["Inflation is cooling", "Labor market softening"],
                "con": ["Core services sticky", "Officials signal patience"],
            },
            "one_sentence_take": "Market pricing looks fair.",
        },
        "full_report": {
            "key_facts": [
                {
                    "claim": "Officials signalled openness to a cut.",
                    "stance": "pro_yes",
                    "confidence": "medium",
                    "sources": ["https://www.reuters.com/markets/fed-signals"],
                }
            ],
            "evidence_summary": {"source_quality": "mixed", "recency": "fresh", "conflicts": []},
            "risks": [{"type": "resolution_ambiguity", "severity": "low", "note": "Clear criteria."}],
            "watch_for": ["CPI release"],
            "method_note": "Market plus sources.",
        },
    }


@pytest.fixture
def reuters_source() -> dict[str, str]:
    return {
        "url": "https://www.reuters.com/markets/fed-signals/?utm_source=x",
        "title": "Fed signals openness to December cut",
        "snippet": "Policymakers said a cut remains on the table.",
        "published_date": "2025-11-20T12:00:00Z",
    }


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        ai_api_key="test-key",
        cache_dir=str(tmp_path / ".cache"),
        runs_dir=str(tmp_path / "runs"),
        ai_prompt_path=str(tmp_path / "missing-prompt.txt"),
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings
