"""Collect, normalise, rank, and merge the evidence handed to the model."""

from __future__ import annotations

import asyncio
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Protocol, Sequence
from urllib.parse import urlsplit

from loguru import logger

from app.core.config import PipelineConfig
from app.domain import TIER_RANK, EvidenceSource, Market, SourceTier

from .canonical import canonicalize_url, content_hash, dedup_key, domain_from_url
from .ratelimit import RateLimiter
from .retry import SleepFn, is_retryable_error, with_retries
from .timestamps import iso_timestamp, parse_timestamp, utc_now

TIER1_DOMAINS = (
    "reuters.com",
    "apnews.com",
    "bbc.com",
    "nytimes.com",
    "wsj.com",
    "ft.com",
    "bloomberg.com",
    "economist.com",
)
TIER1_SUFFIXES = (".gov", ".edu", ".int")
TIER2_DOMAINS = (
    "cnn.com",
    "theguardian.com",
    "washingtonpost.com",
    "politico.com",
    "axios.com",
    "npr.org",
    "cnbc.com",
    "usatoday.com",
    "latimes.com",
)

FIELD_LIMITS = {
    "title": 200,
    "snippet": 1200,
    "description": 2000,
    "resolution_criteria": 1200,
    "label": 120,
}

_PUNCTUATION = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_CAPITALIZED = re.compile(r"^[A-Z][A-Za-z\-]+$")
_CLAUSE_SPLIT = re.compile(r"[.;]")


class SearchClient(Protocol):
    async def search(self, query: str, *, timeout_ms: int, count: int) -> list[dict[str, Any]]: ...


@dataclass(slots=True)
class EvidenceBundle:
    sources: list[EvidenceSource]
    queries: list[str] = field(default_factory=list)
    malformed: bool = False
    search_used: bool = False


def classify_domain(domain: str) -> SourceTier:
    host = (domain or "").lower()
    if not host:
        return "unknown"
    if any(host == item or host.endswith("." + item) for item in TIER1_DOMAINS):
        return "tier1"
    if host.endswith(TIER1_SUFFIXES):
        return "tier1"
    if any(host == item or host.endswith("." + item) for item in TIER2_DOMAINS):
        return "tier2"
    return "unknown"


def _clean_text(value: Any, limit: int | None = None) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    return text[:limit] if limit else text


def _first_text(item: Mapping[str, Any], *keys: str, limit: int | None = None) -> str | None:
    for key in keys:
        text = _clean_text(item.get(key), limit)
        if text:
            return text
    return None


def _polymarket_event_slug(url: str) -> str | None:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    host = (parts.hostname or "").lower()
    if not (host == "polymarket.com" or host.endswith(".polymarket.com")):
        return None
    segments = [segment for segment in parts.path.split("/") if segment]
    if len(segments) >= 2 and segments[0] == "event":
        return segments[1]
    return None


def _derive_source_id(url: str, canonical: str, source_type: str | None) -> str:
    if source_type == "page":
        event_slug = _polymarket_event_slug(url)
        if event_slug:
            return f"page:polymarket:{event_slug}"
        return f"page:{content_hash(canonical)}"
    return f"url:{content_hash(canonical)}"


def normalize_caller_sources(
    raw: Any, *, now: datetime | None = None
) -> tuple[list[EvidenceSource], bool]:
    """Turn untrusted caller-supplied sources into deduplicated ``EvidenceSource`` records.

    Returns the surviving sources and whether anything had to be dropped as
    malformed. ``None`` means "no sources" and is not malformed.
    """

    if raw is None:
        return [], False
    if not isinstance(raw, list):
        return [], True

    stamp = iso_timestamp(now)
    malformed = False
    seen: set[str] = set()
    sources: list[EvidenceSource] = []
    for item in raw:
        if not isinstance(item, dict):
            malformed = True
            continue
        url = _clean_text(item.get("url"))
        if not url:
            malformed = True
            continue

        canonical = canonicalize_url(url)
        source_type = _clean_text(item.get("type"))
        domain = _clean_text(item.get("domain")) or domain_from_url(url)
        tier = item.get("tier")
        if tier not in TIER_RANK:
            tier = classify_domain(domain)

        captured = _first_text(item, "captured_at_utc", "capturedAtUtc")
        retrieved = _first_text(item, "retrieved_at_utc", "retrievedAtUtc")
        # Stamp only when the caller supplied neither timestamp.
        if not (captured or retrieved):
            if source_type == "page":
                captured = stamp
            else:
                retrieved = stamp

        source = EvidenceSource(
            source_id=_clean_text(item.get("source_id")) or _derive_source_id(url, canonical, source_type),
            url=url,
            canonical_url=canonical,
            domain=domain.lower(),
            tier=tier,
            title=_clean_text(item.get("title"), FIELD_LIMITS["title"]),
            snippet=_clean_text(item.get("snippet"), FIELD_LIMITS["snippet"]),
            description=_clean_text(item.get("description"), FIELD_LIMITS["description"]),
            resolution_criteria=_first_text(
                item, "resolution_criteria", "resolutionCriteria", limit=FIELD_LIMITS["resolution_criteria"]
            ),
            published_at=_first_text(item, "published_date", "publishedDate", "published_at"),
            type=source_type,
            label=_clean_text(item.get("label"), FIELD_LIMITS["label"]),
            captured_at_utc=captured,
            retrieved_at_utc=retrieved,
        )
        key = dedup_key(source)
        if key in seen:
            continue
        seen.add(key)
        sources.append(source)

    if malformed:
        logger.debug("Dropped malformed caller sources kept={} total={}", len(sources), len(raw))
    return sources, malformed


def _collapse(value: str | None) -> str:
    return _WHITESPACE.sub(" ", value or "").strip()


def generate_queries(
    title: str,
    description: str | None = None,
    resolution_criteria: str | None = None,
    limit: int = 4,
) -> list[str]:
    base = _collapse(title)
    if not base:
        return []

    candidates = [base]
    entities = [word for word in _collapse(description).split(" ") if _CAPITALIZED.match(word)][:3]
    if entities:
        candidates.append(f"{base} {' '.join(entities)}")
    clause = _collapse(_CLAUSE_SPLIT.split(resolution_criteria or "", maxsplit=1)[0])
    if clause:
        candidates.append(f"{base} {clause}")
    candidates.append(f"{base} latest")

    queries: list[str] = []
    for candidate in candidates:
        if candidate not in queries:
            queries.append(candidate)
    return queries[: max(limit, 0)]


def _fold(value: str) -> str:
    return _PUNCTUATION.sub(" ", value.lower())


def _tokens(query: str) -> set[str]:
    return {token for token in _fold(query).split() if len(token) >= 3}


def relevance_score(query: str, title: str | None, snippet: str | None) -> int:
    haystack = _fold(f"{title or ''} {snippet or ''}")
    return sum(1 for token in _tokens(query) if token in haystack)


def recency_score(published_at: str | None, now: datetime) -> int:
    published = parse_timestamp(published_at)
    if published is None:
        return 0
    age_days = (now - published).total_seconds() / 86400
    if age_days <= 7:
        return 4
    if age_days <= 30:
        return 3
    if age_days <= 180:
        return 2
    return 1


def build_search_source(
    item: Mapping[str, Any], query: str, *, now: datetime
) -> EvidenceSource | None:
    """Score one raw search hit; ``None`` when it carries no usable URL."""

    url = _clean_text(item.get("url"))
    if not url:
        return None
    canonical = canonicalize_url(url)
    domain = domain_from_url(canonical)
    title = _clean_text(item.get("title"), FIELD_LIMITS["title"])
    snippet = _first_text(item, "description", "snippet", limit=FIELD_LIMITS["snippet"])
    published = _first_text(item, "published", "page_age", "age", "published_date")
    relevance = relevance_score(query, title, snippet)
    recency = recency_score(published, now)
    return EvidenceSource(
        source_id=f"ext:{content_hash(canonical)}",
        url=canonical,
        canonical_url=canonical,
        domain=domain,
        tier=classify_domain(domain),
        title=title,
        snippet=snippet,
        published_at=published,
        relevance_score=relevance,
        recency_score=recency,
        combined_score=relevance * 3 + recency,
        type="search",
        label="External search",
        retrieved_at_utc=iso_timestamp(now),
    )


def rank_search_results(
    rows: Iterable[EvidenceSource], top_n: int, max_per_domain: int
) -> list[EvidenceSource]:
    ordered = sorted(rows, key=lambda source: -source.combined_score)

    best: dict[str, EvidenceSource] = {}
    for source in ordered:
        best.setdefault(source.canonical_url, source)

    selected: list[EvidenceSource] = []
    per_domain: Counter[str] = Counter()
    for source in best.values():
        if len(selected) >= top_n:
            break
        if per_domain[source.domain] >= max_per_domain:
            continue
        per_domain[source.domain] += 1
        selected.append(source)
    return selected


def merge_sources(
    caller: Sequence[EvidenceSource], external: Sequence[EvidenceSource]
) -> list[EvidenceSource]:
    """Merge by canonical URL, keeping the better tier and the earlier record on ties.

    Without external results the caller list is returned untouched, so caller
    records sharing a canonical URL stay distinct.
    """

    if not external:
        return list(caller)
    merged: dict[str, EvidenceSource] = {}
    for source in [*caller, *external]:
        key = canonicalize_url(source.canonical_url or source.url)
        existing = merged.get(key)
        if existing is None or source.tier_rank > existing.tier_rank:
            merged[key] = source
    return list(merged.values())


def summarize_sources(sources: Sequence[EvidenceSource]) -> dict[str, Any]:
    tiers = Counter(source.tier for source in sources)
    dates = [parse_timestamp(source.published_at) for source in sources]
    known = [moment for moment in dates if moment is not None]
    return {
        "count": len(sources),
        "tiers": {tier: tiers.get(tier, 0) for tier in ("tier1", "tier2", "unknown")},
        "newest": iso_timestamp(max(known)) if known else None,
    }


def evidence_quality(sources: Sequence[EvidenceSource]) -> dict[str, Any]:
    best_tier = "unknown"
    for source in sources:
        if source.tier_rank > TIER_RANK[best_tier]:
            best_tier = source.tier
    has_dates = any(parse_timestamp(source.published_at) for source in sources)
    return {"best_tier": best_tier, "recency_summary": "mixed" if has_dates else "unknown"}


class EvidenceAggregator:
    """Combine caller sources with optional web search results."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        search_client: SearchClient | None = None,
        rate_limiter: RateLimiter | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.config = config
        self.search_client = search_client
        self.rate_limiter = rate_limiter
        self._sleep = sleep

    async def gather(self, market: Market, caller_sources: Any) -> EvidenceBundle:
        sources, malformed = normalize_caller_sources(caller_sources)
        bundle = EvidenceBundle(sources=sources, malformed=malformed)

        if not self.config.search_enabled:
            return bundle
        if self.search_client is None:
            logger.debug("search: skipped (missing SEARCH_API_KEY)")
            return bundle
        if self.rate_limiter is not None:
            limited = self.rate_limiter.check_and_record(self.config.search_rate_limit_ms, "search")
            if limited is not None:
                logger.debug("search: skipped (rate limited)")
                return bundle

        bundle.queries = generate_queries(
            market.title,
            market.description,
            market.resolution_criteria,
            self.config.search_query_limit,
        )
        total_timeout = self.config.search_total_timeout_ms
        try:
            external = await asyncio.wait_for(
                self._search(bundle.queries),
                timeout=total_timeout / 1000 if total_timeout > 0 else None,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning("search: total timeout after {}ms; using caller sources only", total_timeout)
            return bundle
        except Exception as exc:  # search never fails the analysis
            logger.warning("search: failed ({}); using caller sources only", exc)
            return bundle

        if not external:
            logger.debug("search: no external results; using caller sources only")
            return bundle

        bundle.sources = merge_sources(sources, external)
        bundle.search_used = True
        logger.debug("search: merged sources={} external={}", len(bundle.sources), len(external))
        return bundle

    async def _search(self, queries: Sequence[str]) -> list[EvidenceSource]:
        assert self.search_client is not None
        client = self.search_client
        config = self.config
        now = utc_now()
        candidates: list[EvidenceSource] = []
        for query in queries:

            async def _attempt(_attempt_no: int, query: str = query) -> list[dict[str, Any]]:
                return await client.search(
                    query,
                    timeout_ms=config.search_timeout_ms,
                    count=config.search_per_query_count,
                )

            outcome = await with_retries(
                _attempt,
                config.search_retries,
                config.search_backoff_ms,
                is_retryable_error,
                sleep=self._sleep,
                label="search",
            )
            if outcome.error is not None:
                logger.debug("search: query failed query={!r} error={}", query, outcome.error)
                continue
            for item in outcome.value or []:
                source = build_search_source(item, query, now=now)
                if source is not None:
                    candidates.append(source)
        return rank_search_results(candidates, config.search_top_n, config.search_max_per_domain)


__all__ = [
    "EvidenceAggregator",
    "EvidenceBundle",
    "SearchClient",
    "build_search_source",
    "classify_domain",
    "evidence_quality",
    "generate_queries",
    "merge_sources",
    "normalize_caller_sources",
    "rank_search_results",
    "recency_score",
    "relevance_score",
    "summarize_sources",
]
