from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from app.domain import EvidenceSource, Market
from app.services.search import SearchError
from pipelines.evidence import (
    EvidenceAggregator,
    build_search_source,
    classify_domain,
    evidence_quality,
    generate_queries,
    merge_sources,
    normalize_caller_sources,
    rank_search_results,
    recency_score,
    summarize_sources,
)
from pipelines.ratelimit import MemoryRateLimitStore, RateLimiter

NOW = datetime(2025, 12, 1, tzinfo=timezone.utc)

MARKET = Market(
    market_id="516710",
    slug="fed-cuts-rates-in-december",
    question="Will the Fed cut rates in December?",
    description="Resolves Yes if the Federal Reserve Board announces a cut.",
    resolution_criteria="FOMC statement shows a lower range. Otherwise No.",
    end_date="2025-12-10T00:00:00Z",
)


def _scored(url: str, score: int, domain: str | None = None) -> EvidenceSource:
    return EvidenceSource(
        source_id=url,
        url=url,
        canonical_url=url,
        domain=domain or url.split("/")[2],
        combined_score=score,
    )


class FakeSearch:
    def __init__(self, results=None, error: BaseException | None = None, delay: float = 0) -> None:
        self.results = results or {}
        self.error = error
        self.delay = delay
        self.queries: list[str] = []

    async def search(self, query: str, *, timeout_ms: int, count: int):
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.results.get(query, [])


@pytest.mark.parametrize(
    ("domain", "tier"),
    [
        ("reuters.com", "tier1"),
        ("uk.reuters.com", "tier1"),
        ("census.gov", "tier1"),
        ("who.int", "tier1"),
        ("politico.com", "tier2"),
        ("notreuters.com", "unknown"),
        ("", "unknown"),
    ],
)
def test_classify_domain(domain, tier):
    assert classify_domain(domain) == tier


def test_normalize_caller_sources_handles_shapes():
    assert normalize_caller_sources(None) == ([], False)
    assert normalize_caller_sources({"url": "x"}) == ([], True)

    sources, malformed = normalize_caller_sources(
        [
            "not a dict",
            {"title": "no url"},
            {"url": "https://www.reuters.com/a", "title": "T" * 500, "publishedDate": "2025-11-01"},
        ]
    )

    assert malformed is True
    assert len(sources) == 1
    source = sources[0]
    assert source.tier == "tier1"
    assert source.domain == "reuters.com"
    assert len(source.title) == 200
    assert source.published_at == "2025-11-01"
    assert source.source_id.startswith("url:")
    assert source.retrieved_at_utc is not None
    assert source.captured_at_utc is None


def test_normalize_caller_sources_page_ids_and_explicit_values():
    sources, malformed = normalize_caller_sources(
        [
            {"url": "https://polymarket.com/event/fed-decision/fed-cuts", "type": "page"},
            {"url": "https://blog.example.com/post", "type": "page", "tier": "tier2"},
            {"url": "https://x.com/y", "source_id": "custom-1", "label": "L" * 300},
        ],
        now=NOW,
    )

    assert malformed is False
    assert sources[0].source_id == "page:polymarket:fed-decision"
    assert sources[0].captured_at_utc == "2025-12-01T00:00:00.000Z"
    assert sources[1].source_id.startswith("page:")
    assert sources[1].tier == "tier2"
    assert sources[2].source_id == "custom-1"
    assert len(sources[2].label) == 120


def test_normalize_caller_sources_keeps_supplied_timestamps_unstamped():
    sources, _ = normalize_caller_sources(
        [
            {"url": "https://a.com/page", "type": "page", "retrieved_at_utc": "2025-11-30T10:00:00Z"},
            {"url": "https://b.com/news", "captured_at_utc": "2025-11-30T09:00:00Z"},
        ],
        now=NOW,
    )

    assert sources[0].captured_at_utc is None
    assert sources[0].retrieved_at_utc == "2025-11-30T10:00:00Z"
    assert sources[1].captured_at_utc == "2025-11-30T09:00:00Z"
    assert sources[1].retrieved_at_utc is None


def test_normalize_caller_sources_deduplicates_by_fingerprint():
    sources, _ = normalize_caller_sources(
        [
            {"url": "https://a.com/x?utm_source=1", "title": "Same"},
            {"url": "https://a.com/x", "title": "Same"},
            {"url": "https://a.com/x", "title": "Different"},
        ]
    )
    assert [source.title for source in sources] == ["Same", "Different"]


def test_generate_queries():
    queries = generate_queries(
        "Will the Fed cut rates?",
        "Resolves if the Federal Reserve Board acts. More text here.",
        "FOMC statement lowers range; otherwise No",
        limit=4,
    )
    assert queries == [
        "Will the Fed cut rates?",
        "Will the Fed cut rates? Resolves Federal Reserve",
        "Will the Fed cut rates? FOMC statement lowers range",
        "Will the Fed cut rates? latest",
    ]
    assert generate_queries("Title", None, None, limit=2) == ["Title", "Title latest"]
    assert generate_queries("   ") == []


@pytest.mark.parametrize(
    ("age_days", "expected"),
    [(1, 4), (7, 4), (20, 3), (100, 2), (400, 1)],
)
def test_recency_score_buckets(age_days, expected):
    published = (NOW - timedelta(days=age_days)).isoformat()
    assert recency_score(published, NOW) == expected


def test_recency_score_unknown_date():
    assert recency_score(None, NOW) == 0
    assert recency_score("not a date", NOW) == 0


def test_build_search_source_scores_relevance_and_recency():
    source = build_search_source(
        {
            "url": "https://www.reuters.com/fed?utm_source=x",
            "title": "Fed rates decision",
            "description": "The FED may cut.",
            "page_age": (NOW - timedelta(days=2)).isoformat(),
        },
        "Fed cut rates!",
        now=NOW,
    )
    assert source is not None
    assert source.relevance_score == 3
    assert source.recency_score == 4
    assert source.combined_score == 13
    assert source.source_id.startswith("ext:")
    assert source.url == "https://www.reuters.com/fed"
    assert source.type == "search"
    assert source.label == "External search"
    assert build_search_source({"title": "no url"}, "q", now=NOW) is None


def test_rank_search_results_caps_per_domain_and_top_n():
    rows = [
        _scored("https://a.com/1", 10),
        _scored("https://a.com/2", 9),
        _scored("https://a.com/3", 8),
        _scored("https://b.com/1", 7),
        _scored("https://a.com/1", 1),
        _scored("https://c.com/1", 5),
    ]

    ranked = rank_search_results(rows, top_n=3, max_per_domain=2)
    assert [source.url for source in ranked] == [
        "https://a.com/1",
        "https://a.com/2",
        "https://b.com/1",
    ]
    assert ranked[0].combined_score == 10


def test_rank_search_results_is_deterministic_for_ties():
    rows = [_scored("https://a.com/1", 5), _scored("https://b.com/1", 5), _scored("https://c.com/1", 5)]
    first = rank_search_results(rows, top_n=5, max_per_domain=1)
    second = rank_search_results(list(rows), top_n=5, max_per_domain=1)
    assert [s.url for s in first] == [s.url for s in second] == [r.url for r in rows]


def test_merge_sources_prefers_higher_tier_and_keeps_caller_on_tie():
    caller = [
        replace(_scored("https://a.com/x", 0), source_id="caller-a", tier="tier2"),
        replace(_scored("https://b.com/x", 0), source_id="caller-b", tier="tier1"),
    ]
    external = [
        replace(_scored("https://a.com/x/", 0), source_id="ext-a", tier="tier1"),
        replace(_scored("https://b.com/x", 0), source_id="ext-b", tier="tier1"),
        replace(_scored("https://c.com/x", 0), source_id="ext-c"),
    ]
    merged = merge_sources(caller, external)
    assert [source.source_id for source in merged] == ["ext-a", "caller-b", "ext-c"]


def test_merge_sources_without_external_keeps_caller_list():
    caller = [
        replace(_scored("https://a.com/x", 0), source_id="caller-1"),
        replace(_scored("https://a.com/x/", 0), source_id="caller-2"),
    ]
    assert [source.source_id for source in merge_sources(caller, [])] == ["caller-1", "caller-2"]


def test_summaries():
    sources = [
        replace(_scored("https://a.com/x", 0), tier="tier2", published_at="2025-11-01T00:00:00Z"),
        replace(_scored("https://b.com/x", 0), published_at="2025-11-20T00:00:00Z"),
    ]
    assert summarize_sources(sources) == {
        "count": 2,
        "tiers": {"tier1": 0, "tier2": 1, "unknown": 1},
        "newest": "2025-11-20T00:00:00.000Z",
    }
    assert evidence_quality(sources) == {"best_tier": "tier2", "recency_summary": "mixed"}
    assert evidence_quality([]) == {"best_tier": "unknown", "recency_summary": "unknown"}


@pytest.mark.asyncio
async def test_gather_without_search_returns_caller_sources(pipeline_config, reuters_source):
    search = FakeSearch()
    bundle = await EvidenceAggregator(pipeline_config, search_client=search).gather(MARKET, [reuters_source])

    assert [source.domain for source in bundle.sources] == ["reuters.com"]
    assert bundle.search_used is False
    assert search.queries == []


@pytest.mark.asyncio
async def test_gather_merges_search_results(pipeline_config, reuters_source):
    config = replace(pipeline_config, search_enabled=True, search_query_limit=1)
    search = FakeSearch(
        results={
            MARKET.title: [
                {"url": "https://www.reuters.com/markets/fed-signals", "title": "Fed cut", "description": ""},
                {"url": "https://apnews.com/fed", "title": "Fed rates", "description": "December cut"},
            ]
        }
    )
    bundle = await EvidenceAggregator(config, search_client=search).gather(MARKET, [reuters_source])

    assert bundle.search_used is True
    assert bundle.queries == [MARKET.title]
    assert len(bundle.sources) == 2
    assert bundle.sources[0].source_id.startswith("url:")
    assert bundle.sources[1].domain == "apnews.com"


@pytest.mark.asyncio
async def test_gather_swallows_search_failures(pipeline_config, reuters_source):
    config = replace(pipeline_config, search_enabled=True, search_retries=1)
    search = FakeSearch(error=SearchError("down", status_code=500))
    bundle = await EvidenceAggregator(config, search_client=search).gather(MARKET, [reuters_source])

    assert len(bundle.sources) == 1
    assert len(search.queries) == 2 * config.search_query_limit


@pytest.mark.asyncio
async def test_gather_swallows_total_timeout(pipeline_config):
    config = replace(pipeline_config, search_enabled=True, search_total_timeout_ms=20)
    bundle = await EvidenceAggregator(config, search_client=FakeSearch(delay=1)).gather(MARKET, None)
    assert bundle.sources == []
    assert bundle.search_used is False


@pytest.mark.asyncio
async def test_gather_skips_search_without_client_or_when_rate_limited(pipeline_config):
    config = replace(pipeline_config, search_enabled=True, search_rate_limit_ms=60_000)
    assert (await EvidenceAggregator(config).gather(MARKET, None)).queries == []

    limiter = RateLimiter(MemoryRateLimitStore())
    search = FakeSearch()
    aggregator = EvidenceAggregator(config, search_client=search, rate_limiter=limiter)
    await aggregator.gather(MARKET, None)
    first_calls = len(search.queries)
    await aggregator.gather(MARKET, None)

    assert first_calls > 0
    assert len(search.queries) == first_calls


@pytest.mark.asyncio
async def test_failed_search_matches_search_disabled_result(pipeline_config):
    caller = [
        {"url": "https://example.com/report", "title": "Version A"},
        {"url": "https://example.com/report/", "title": "Version B"},
    ]
    disabled = await EvidenceAggregator(pipeline_config).gather(MARKET, caller)

    config = replace(pipeline_config, search_enabled=True, search_retries=0)
    search = FakeSearch(error=SearchError("down", status_code=500))
    failed = await EvidenceAggregator(config, search_client=search).gather(MARKET, caller)

    assert [source.title for source in disabled.sources] == ["Version A", "Version B"]
    assert [source.title for source in failed.sources] == ["Version A", "Version B"]
    assert failed.search_used is False
    assert search.queries
