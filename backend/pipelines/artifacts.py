"""Per-run debug artifacts written next to successful analyses."""

from __future__ import annotations

import json
import os
import re
import time
from pathlib import Path
from typing import Any, Sequence

from loguru import logger

from app.domain import EvidenceSource, Market
from ingestion.normalize import format_outcome_summary

from .evidence import evidence_quality
from .validation import contains_banned_phrase

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def run_id_for(market: Market, *, now_ms: int | None = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    name = market.slug or market.market_id or "market"
    return f"{stamp}_{_UNSAFE_NAME_CHARS.sub('_', name)}"


def build_artifacts(
    market: Market,
    sources: Sequence[EvidenceSource],
    final_report: dict[str, Any],
    *,
    llm_attempts: int,
) -> dict[str, dict[str, Any]]:
    quality = evidence_quality(sources)
    return {
        "evidence_bundle": {
            "market_text": {
                "title": market.title,
                "description": market.description or "unknown",
                "resolution_criteria": market.resolution_criteria or "unknown",
                "end_date": market.end_date or "unknown",
            },
            "outcomes_with_prices": format_outcome_summary(market),
            "sources": [source.to_payload() for source in sources],
            "evidence_quality": quality,
        },
        "final_report": final_report,
        "metrics": {
            "source_count": len(sources),
            "best_tier": quality["best_tier"],
            "recency_summary": quality["recency_summary"],
            "llm_attempts": llm_attempts,
            "retry_used": llm_attempts > 1,
            "hallucination_red_flags": 1 if contains_banned_phrase(final_report) else 0,
        },
    }


def write_run_artifacts(
    runs_dir: str | Path | None, run_id: str, artifacts: dict[str, dict[str, Any]]
) -> Path | None:
    """Write each artifact as ``<runs_dir>/<run_id>/<name>.json``; never raises."""

    if not runs_dir:
        return None
    target = Path(runs_dir) / run_id
    try:
        target.mkdir(parents=True, exist_ok=True)
        for name, payload in artifacts.items():
            (target / f"{name}.json").write_text(
                json.dumps(payload, indent=2, ensure_ascii=False, default=str) + os.linesep,
                encoding="utf-8",
            )
    except (OSError, TypeError, ValueError):
        logger.exception("Failed to write run artifacts to {}", target)
        return None
    logger.debug("Run artifacts written to {}", target)
    return target


__all__ = ["build_artifacts", "run_id_for", "write_run_artifacts"]
