"""Analysis orchestration: cache, gates, resolution, evidence, model, envelope."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Literal

from loguru import logger

from app.domain import AnalysisRequest, ResolvedVia
from app.schemas import ErrorEnvelope
from ingestion.resolver import MarketResolver

from .artifacts import build_artifacts, run_id_for, write_run_artifacts
from .cache import build_cache_key
from .context import AnalysisContext
from .envelope import EnvelopeBuilder
from .errors import AnalysisError, InvalidRequestError
from .evidence import EvidenceAggregator, summarize_sources
from .prompt import DEFAULT_PROMPT, build_prompt
from .validation import ResultValidator, request_report

USAGE_MESSAGE = (
    "Provide exactly one of a market slug, market id, or event slug "
    "(--slug <market-slug> | --id <market-id> | --event <event-slug> [--market-index N])."
)


@dataclass(slots=True)
class AnalysisResult:
    status: Literal["success", "error"]
    payload: dict[str, Any] | None = None
    error: ErrorEnvelope | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"status": "error", "error": self.error.to_dict()}
        return {"status": "success", "payload": self.payload}


async def analyze(request: AnalysisRequest, context: AnalysisContext) -> AnalysisResult:
    """Run one analysis and return a success or error envelope; never raises for run failures."""

    config = context.config
    envelopes = EnvelopeBuilder(config.schema_version)
    resolved_via: ResolvedVia = request.resolved_via_hint

    def failed(envelope: ErrorEnvelope) -> AnalysisResult:
        return AnalysisResult(status="error", error=envelopes.error(envelope, resolved_via))

    cache_key = build_cache_key(request, config.pipeline_version, config.search_enabled)
    if context.cache is not None:
        hit = context.cache.read(cache_key)
        if hit is not None:
            logger.debug("cache: hit key={}", cache_key)
            payload = ResultValidator([]).apply_source_defaults(hit.payload)
            return AnalysisResult(
                status="success",
                payload=envelopes.cache_hit(payload, hit.ttl_remaining, resolved_via),
            )
    logger.debug("cache: miss key={}", cache_key)

    if request.identifier_count != 1:
        return failed(InvalidRequestError(USAGE_MESSAGE).to_envelope())
    if context.llm_provider is None:
        return failed(InvalidRequestError("Missing AI_API_KEY").to_envelope())
    if context.rate_limiter is not None:
        limited = context.rate_limiter.check_and_record(config.rate_limit_ms, "overall")
        if limited is not None:
            return failed(limited)

    async def _run() -> dict[str, Any] | ErrorEnvelope:
        nonlocal resolved_via
        if context.rate_limiter is not None:
            limited = context.rate_limiter.check_and_record(config.gamma_rate_limit_ms, "gamma")
            if limited is not None:
                return limited

        resolved = await MarketResolver(context.market_client, config).resolve(request)
        market = resolved.market
        resolved_via = resolved.resolved_via

        aggregator = EvidenceAggregator(
            config,
            search_client=context.search_client,
            rate_limiter=context.rate_limiter,
        )
        bundle = await aggregator.gather(market, request.caller_sources)
        sources = bundle.sources
        logger.debug("sources: {}", summarize_sources(sources))

        prompt = build_prompt(context.prompt_template or DEFAULT_PROMPT, market, sources)
        assert context.llm_provider is not None
        try:
            report = await request_report(
                context.llm_provider,
                prompt,
                max_retries=config.llm_retries,
                timeout_ms=config.llm_timeout_ms,
                response_format=config.ai_response_format,
            )
        except AnalysisError as exc:
            exc.sources_count = len(sources)
            raise

        final = ResultValidator(sources).finalize(
            report.payload,
            force_sources_missing=bundle.malformed and not sources,
        )
        payload = envelopes.success(final, resolved_via, ttl_sec=config.cache_ttl_sec)

        write_run_artifacts(
            context.runs_dir,
            run_id_for(market),
            build_artifacts(market, sources, payload, llm_attempts=report.attempts),
        )
        if context.cache is not None:
            context.cache.write(cache_key, payload)
        return payload

    timeout = config.overall_timeout_ms / 1000 if config.overall_timeout_ms > 0 else None
    try:
        outcome = await asyncio.wait_for(_run(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("overall: timed out after {}ms", config.overall_timeout_ms)
        return failed(
            ErrorEnvelope(
                step="overall",
                error_code="TIMEOUT",
                message="Overall run timed out.",
                retryable=True,
            )
        )
    except AnalysisError as exc:
        logger.info("analysis failed step={} code={} message={}", exc.step, exc.error_code, exc.message)
        return failed(exc.to_envelope())
    except Exception:
        logger.exception("Unexpected failure while analysing {}", cache_key)
        return failed(
            ErrorEnvelope(
                step="overall",
                error_code="BAD_RESPONSE",
                message="Unexpected failure.",
                retryable=True,
            )
        )

    if isinstance(outcome, ErrorEnvelope):
        return failed(outcome)
    return AnalysisResult(status="success", payload=outcome)


__all__ = ["AnalysisResult", "USAGE_MESSAGE", "analyze"]
