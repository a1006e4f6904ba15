"""Prompt template loading and assembly for the analysis report call."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Sequence

from loguru import logger

from app.domain import EvidenceSource, Market
from ingestion.normalize import format_outcome_summary

DEFAULT_PROMPT = """You are a strict research analyst for prediction markets.

Estimate the probability of the YES outcome using only the market data and the
sources listed below. Do not invent facts, actors, or timelines. Anything not
supported by the market text or a source must be labelled "unknown".

Rules
- Every factual claim in key_facts must cite at least one source URL or source_id.
- If sources are empty or fewer than 3 are usable, set confidence to "low",
  keep estimate_yes_pct within 1 pp of market_yes_pct and set key_facts to [].
- Prefer higher-tier and more recent sources; state conflicts explicitly.
- Do not mention the current date or "post-election" unless an as_of_date is provided.
- No trading advice.

Market
title: {title}
description: {description}
resolution_criteria: {resolutionCriteria}
end_date: {endDate}
outcomes: {outcomesWithPrices}
market_context: {marketContext}
source_count: {N}

Return strict JSON only with this shape:
{
"quick_view": {
"estimate_yes_pct": number,
"range_yes_pct": [number, number],
"confidence": "low" | "medium" | "high",
"market_yes_pct": number,
"delta_vs_market_pp": number,
"top_drivers": { "pro": [string, string], "con": [string, string] },
"one_sentence_take": string
},
"full_report": {
"market_definition": { "yes_means": string, "no_means": string, "edge_cases": [string] },
"key_facts": [
{ "claim": string, "stance": "pro_yes" | "pro_no" | "neutral", "confidence": "low" | "medium" | "high", "sources": [string] }
],
"evidence_summary": { "source_quality": "strong" | "mixed" | "weak", "recency": "fresh" | "mixed" | "stale" | "unknown", "conflicts": [string] },
"scenarios": [ { "name": string, "prob_yes_pct": number, "assumptions": [string] } ],
"risks": [ { "type": string, "severity": "low" | "medium" | "high", "note": string } ],
"watch_for": [string],
"method_note": string
}
}

Never output empty top_drivers arrays. Use only the enum values shown above.
"""


def load_prompt_template(path: str | Path | None) -> str:
    """Read the template at ``path``, falling back to :data:`DEFAULT_PROMPT`."""

    if not path:
        return DEFAULT_PROMPT
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError:
        logger.debug("Prompt template {} unavailable; using built-in template", path)
        return DEFAULT_PROMPT


def render_template(template: str, params: Mapping[str, str]) -> str:
    output = template
    for key, value in params.items():
        output = output.replace("{" + key + "}", value)
    return output


def format_sources_block(sources: Sequence[EvidenceSource]) -> str:
    if not sources:
        return "No sources provided."
    blocks = []
    for source in sources:
        blocks.append(
            "\n".join(
                [
                    f"source_id: {source.source_id}",
                    f"title: {source.title or 'unknown'}",
                    f"snippet: {source.snippet or source.description or 'unknown'}",
                    f"url: {source.url}",
                    f"published_date: {source.published_at or 'unknown'}",
                    f"domain: {source.domain or 'unknown'}",
                    f"tier: {source.tier}",
                ]
            )
        )
    return "\n\n".join(blocks)


def build_prompt(
    template: str,
    market: Market,
    sources: Sequence[EvidenceSource],
    *,
    market_context: str = "none provided",
) -> str:
    outcomes = format_outcome_summary(market)
    body = render_template(
        template,
        {
            "title": market.title,
            "description": market.description or "unknown",
            "resolutionCriteria": market.resolution_criteria or "unknown",
            "endDate": market.end_date or "unknown",
            "outcomesWithPrices": ", ".join(outcomes) if outcomes else "unknown",
            "marketContext": market_context,
            "N": str(len(sources)),
        },
    )
    return f"{body}\n\nSources ({len(sources)})\n{format_sources_block(sources)}"


__all__ = [
    "DEFAULT_PROMPT",
    "build_prompt",
    "format_sources_block",
    "load_prompt_template",
    "render_template",
]
