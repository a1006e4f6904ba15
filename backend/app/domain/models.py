"""Typed domain representations used across resolution, evidence, and the API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

SourceTier = Literal["tier1", "tier2", "unknown"]
ResolvedVia = Literal["market_slug", "event_index", "event_market_path"]

TIER_RANK: dict[str, int] = {"tier1": 2, "tier2": 1, "unknown": 0}


@dataclass(frozen=True, slots=True)
class Market:
    """Canonical market record resolved for a single analysis request."""

    market_id: str
    slug: str | None
    question: str | None
    description: str | None
    resolution_criteria: str | None
    end_date: str | None
    category: str | None = None
    subcategory: str | None = None
    outcomes: tuple[str, ...] = ()
    outcome_prices: tuple[float, ...] = ()
    raw_data: dict[str, Any] | None = field(default=None, compare=False, repr=False)

    @property
    def title(self) -> str:
        return self.question or self.slug or self.market_id


@dataclass(slots=True)
class EvidenceSource:
    """One piece of evidence supplied by the caller or found by search."""

    source_id: str
    url: str
    canonical_url: str
    domain: str
    tier: SourceTier = "unknown"
    title: str | None = None
    snippet: str | None = None
    description: str | None = None
    resolution_criteria: str | None = None
    published_at: str | None = None
    relevance_score: int = 0
    recency_score: int = 0
    combined_score: int = 0
    type: str | None = None
    label: str | None = None
    captured_at_utc: str | None = None
    retrieved_at_utc: str | None = None

    @property
    def tier_rank(self) -> int:
        return TIER_RANK.get(self.tier, 0)

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON form embedded in the envelope ``sources`` list."""

        payload: dict[str, Any] = {
            "source_id": self.source_id,
            "url": self.url,
            "canonical_url": self.canonical_url,
            "title": self.title,
            "snippet": self.snippet,
            "description": self.description,
            "resolution_criteria": self.resolution_criteria,
            "domain": self.domain or None,
            "published_date": self.published_at,
            "tier": self.tier,
            "relevance_score": self.relevance_score,
            "recency_score": self.recency_score,
            "combined_score": self.combined_score,
            "type": self.type,
            "label": self.label,
            "captured_at_utc": self.captured_at_utc,
            "retrieved_at_utc": self.retrieved_at_utc,
        }
        return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True, slots=True)
class AnalysisRequest:
    """Caller input for one analysis run."""

    slug: str | None = None
    market_id: str | None = None
    event_slug: str | None = None
    market_index: int | None = None
    caller_sources: Any = None

    @property
    def identifier_count(self) -> int:
        return sum(1 for value in (self.slug, self.market_id, self.event_slug) if value)

    @property
    def path_input(self) -> str:
        return (self.slug or self.event_slug or "").strip()

    @property
    def resolved_via_hint(self) -> ResolvedVia:
        """Best guess used for envelopes produced before resolution completes."""

        if "/" in self.path_input.strip("/"):
            return "event_market_path"
        if self.event_slug or self.market_index is not None:
            return "event_index"
        return "market_slug"
