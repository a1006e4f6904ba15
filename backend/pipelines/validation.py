"""Decode, validate, sanitise, and recalibrate the model's structured report."""

from __future__ import annotations

import asyncio
import copy
import json
import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from loguru import logger
from pydantic import ValidationError

from app.domain import EvidenceSource
from app.schemas import AnalysisReport
from app.services.llm import LLMProvider

from .canonical import canonicalize_url
from .errors import InvalidLLMOutputError, LLMCallError, ReportValidationError
from .retry import is_retryable_error

CORRECTIVE_INSTRUCTION = (
    "Return strict JSON only, no markdown, follow the schema exactly. "
    "Ensure required arrays and enums are valid."
)
BANNED_PHRASES = (
    "current date",
    "post-election",
    "post election",
    "already happened",
    "as of today",
    "today",
    "yesterday",
)
PLACEHOLDER = "unknown / needs confirmation"
CONFIDENCE_ORDER = ("low", "medium", "high")

_FENCE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?|\n?\s*```\s*$")
_BANNED_PATTERN = re.compile("|".join(re.escape(phrase) for phrase in BANNED_PHRASES), re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text.strip()).strip()


def _load_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_llm_output(raw_text: str) -> dict[str, Any]:
    """Decode ``raw_text`` into a JSON object, tolerating fences and chatter."""

    cleaned = strip_code_fences(raw_text or "")
    parsed = _load_object(cleaned)
    if parsed is None:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start != -1 and end > start:
            parsed = _load_object(cleaned[start : end + 1])
    if parsed is None:
        raise InvalidLLMOutputError(raw_output=raw_text)
    return parsed


def _validation_reason(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
    return f"{location}: {first.get('msg', 'invalid')}"


def validate_report(payload: Mapping[str, Any], *, raw_output: str | None = None) -> AnalysisReport:
    try:
        return AnalysisReport.model_validate(payload)
    except ValidationError as exc:
        raise ReportValidationError(_validation_reason(exc), raw_output=raw_output) from exc


@dataclass(slots=True)
class LLMReport:
    payload: dict[str, Any]
    raw_text: str
    attempts: int

    @property
    def retry_used(self) -> bool:
        return self.attempts > 1


async def request_report(
    provider: LLMProvider,
    prompt: str,
    *,
    max_retries: int,
    timeout_ms: int,
    response_format: str = "json_object",
) -> LLMReport:
    """Call the model until it returns a schema-valid report or attempts run out.

    Invalid output is re-requested with a corrective instruction appended.
    Transient provider failures are retried with the unchanged prompt.
    """

    total_attempts = max(max_retries, 0) + 1
    timeout = timeout_ms / 1000 if timeout_ms > 0 else None
    corrective = False
    last_error: InvalidLLMOutputError | ReportValidationError | None = None

    for attempt in range(1, total_attempts + 1):
        text = f"{prompt}\n\n{CORRECTIVE_INSTRUCTION}" if corrective else prompt
        try:
            raw = await asyncio.wait_for(
                provider.complete(text, response_format=response_format), timeout=timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # classified below
            timed_out = isinstance(exc, asyncio.TimeoutError)
            if attempt < total_attempts and is_retryable_error(exc):
                logger.warning("llm call: attempt {} failed ({}); retrying", attempt, exc)
                continue
            message = "LLM call timed out." if timed_out else f"LLM call failed: {exc}"
            raise LLMCallError(message, timed_out=timed_out, attempts=attempt) from exc

        try:
            payload = parse_llm_output(raw)
            validate_report(payload, raw_output=raw)
        except (InvalidLLMOutputError, ReportValidationError) as exc:
            exc.attempts = attempt
            exc.raw_output = raw
            last_error = exc
            corrective = True
            logger.info("llm output rejected attempt={} reason={}", attempt, exc.message)
            continue

        logger.debug("llm call: ok attempts={}", attempt)
        return LLMReport(payload=payload, raw_text=raw, attempts=attempt)

    if last_error is None:
        raise LLMCallError("LLM call failed.", attempts=total_attempts)
    raise last_error


def sanitize_tree(value: Any) -> Any:
    """Return a copy of ``value`` with banned temporal phrasing replaced."""

    if isinstance(value, str):
        return PLACEHOLDER if _BANNED_PATTERN.search(value) else value
    if isinstance(value, list):
        return [sanitize_tree(item) for item in value]
    if isinstance(value, dict):
        return {key: sanitize_tree(item) for key, item in value.items()}
    return value


def contains_banned_phrase(value: Any) -> bool:
    return bool(_BANNED_PATTERN.search(json.dumps(value, default=str)))


def lower_confidence(confidence: str, steps: int = 1) -> str:
    if confidence not in CONFIDENCE_ORDER:
        return confidence
    return CONFIDENCE_ORDER[max(0, CONFIDENCE_ORDER.index(confidence) - steps)]


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _append_flag(full_report: dict[str, Any], flag: str) -> None:
    flags = _string_list(full_report.get("risk_flags"))
    if flag not in flags:
        flags.append(flag)
    full_report["risk_flags"] = flags


class ResultValidator:
    """Post-process a validated report against the evidence actually supplied."""

    def __init__(self, sources: Sequence[EvidenceSource]) -> None:
        self.sources = list(sources)
        self._by_id = {source.source_id: source for source in self.sources}
        self._by_url: dict[str, EvidenceSource] = {}
        for source in self.sources:
            self._by_url.setdefault(canonicalize_url(source.url), source)
            if source.canonical_url:
                self._by_url.setdefault(canonicalize_url(source.canonical_url), source)

    def finalize(
        self, report: Mapping[str, Any], *, force_sources_missing: bool = False
    ) -> dict[str, Any]:
        payload = sanitize_tree(copy.deepcopy(dict(report)))
        payload = self.apply_source_defaults(payload, force_sources_missing=force_sources_missing)
        payload = self.enforce_key_fact_support(payload)
        return self.apply_tiering_signals(payload)

    def apply_source_defaults(
        self, payload: dict[str, Any], *, force_sources_missing: bool = False
    ) -> dict[str, Any]:
        if not isinstance(payload.get("sources"), list):
            payload["sources"] = [source.to_payload() for source in self.sources]
        used = payload.get("sources_used_count")
        if not isinstance(used, int) or isinstance(used, bool):
            payload["sources_used_count"] = len(payload["sources"])
        if not isinstance(payload.get("sources_missing"), bool):
            payload["sources_missing"] = payload["sources_used_count"] == 0
        if force_sources_missing:
            payload["sources_missing"] = True

        full_report = payload.get("full_report")
        if not isinstance(full_report, dict):
            full_report = payload["full_report"] = {}
        for fact in full_report.get("key_facts") or []:
            if isinstance(fact, dict) and not isinstance(fact.get("support_ids"), list):
                fact["support_ids"] = []
        if payload["sources_missing"]:
            _append_flag(full_report, "sources_missing")
        return payload

    def _resolve_ref(self, ref: str) -> str | None:
        source = self._by_id.get(ref.strip())
        if source is None:
            source = self._by_url.get(canonicalize_url(ref))
        return source.source_id if source is not None else None

    def enforce_key_fact_support(self, payload: dict[str, Any]) -> dict[str, Any]:
        full_report = payload["full_report"]
        facts = full_report.get("key_facts")
        if not isinstance(facts, list):
            payload["sources_used_count"] = 0
            return self._mark_missing_if_unused(payload)

        used: list[str] = []
        kept: list[dict[str, Any]] = []
        for fact in facts:
            if not isinstance(fact, dict):
                continue
            support_ids: list[str] = []
            for ref in _string_list(fact.get("sources")):
                source_id = self._resolve_ref(ref)
                if source_id and source_id not in support_ids:
                    support_ids.append(source_id)
            if not support_ids:
                logger.debug("Dropping unsupported key fact refs={}", fact.get("sources"))
                continue
            fact["sources"] = support_ids
            fact["support_ids"] = support_ids
            kept.append(fact)
            used.extend(source_id for source_id in support_ids if source_id not in used)

        full_report["key_facts"] = kept
        payload["sources_used_count"] = len(used)
        return self._mark_missing_if_unused(payload)

    def _mark_missing_if_unused(self, payload: dict[str, Any]) -> dict[str, Any]:
        if payload["sources_used_count"] == 0:
            payload["sources_missing"] = True
            _append_flag(payload["full_report"], "sources_missing")
        return payload

    def apply_tiering_signals(self, payload: dict[str, Any]) -> dict[str, Any]:
        quick_view = payload.get("quick_view")
        if not isinstance(quick_view, dict):
            quick_view = payload["quick_view"] = {}
        confidence = quick_view.get("confidence")

        sources_missing = payload.get("sources_missing") is True or not self.sources
        weak_sources = (
            not sources_missing
            and bool(self.sources)
            and all(source.tier == "unknown" for source in self.sources)
        )
        if sources_missing and isinstance(confidence, str):
            quick_view["confidence"] = "low"
        elif weak_sources and isinstance(confidence, str):
            quick_view["confidence"] = lower_confidence(confidence)
        if weak_sources:
            _append_flag(payload["full_report"], "weak_sources")
        return payload


__all__ = [
    "BANNED_PHRASES",
    "CORRECTIVE_INSTRUCTION",
    "LLMReport",
    "PLACEHOLDER",
    "ResultValidator",
    "contains_banned_phrase",
    "lower_confidence",
    "parse_llm_output",
    "request_report",
    "sanitize_tree",
    "strip_code_fences",
    "validate_report",
]
