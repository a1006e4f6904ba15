from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Query

from pipelines.analyze import analyze
from pipelines.context import AnalysisContext, build_context
from pipelines.timestamps import iso_timestamp

from . import schemas
from .core.config import SCHEMA_VERSION, get_settings, settings
from .domain import AnalysisRequest

SERVICE_VERSION = "1.0.0"
_STARTED_AT = time.monotonic()

app = FastAPI(title="Market Analyzer API", version=SERVICE_VERSION, debug=settings.debug)


@lru_cache
def _analysis_context() -> AnalysisContext:
    """Provide the process-wide analysis collaborators."""

    return build_context(get_settings())


def _request_id() -> str:
    return f"req_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _service_error(message: str, error_code: schemas.ErrorCode = "BAD_RESPONSE") -> dict[str, Any]:
    timestamp = iso_timestamp()
    envelope = schemas.ErrorEnvelope(
        step="overall",
        error_code=error_code,
        message=message,
        retryable=False,
        schema_version=SCHEMA_VERSION,
        timestamp_utc=timestamp,
        resolved_via="event_index",
        cache=schemas.CacheMeta(hit=False, ttl_sec=0, expires_at_utc=timestamp),
    )
    return envelope.to_dict()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    """Release HTTP clients held by the analysis context."""

    if _analysis_context.cache_info().currsize:
        await _analysis_context().aclose()


@app.get("/healthz", response_model=schemas.HealthStatus, tags=["system"])
@app.get("/health", response_model=schemas.HealthStatus, tags=["system"], include_in_schema=False)
def healthcheck() -> schemas.HealthStatus:
    """Readiness probe consumed by infrastructure monitors and the browser extension."""

    return schemas.HealthStatus(
        ok=True,
        status="ok",
        service_version=SERVICE_VERSION,
        time_utc=datetime.now(timezone.utc),
        uptime_sec=int(time.monotonic() - _STARTED_AT),
    )


@app.get("/analyze", tags=["analysis"])
async def analyze_market(
    *,
    slug: Annotated[str | None, Query(description="Market slug, event slug, or event/market path")] = None,
    market_index: Annotated[int | None, Query(ge=0, description="Market index within an event")] = None,
    context: AnalysisContext = Depends(_analysis_context),
) -> dict[str, Any]:
    """Analyse one market and return the success or error envelope."""

    request_id = _request_id()
    cleaned = (slug or "").strip()
    if not cleaned:
        return {**_service_error("Missing slug."), "request_id": request_id}

    result = await analyze(AnalysisRequest(slug=cleaned, market_index=market_index), context)
    body = result.payload if result.ok else result.error.to_dict()  # type: ignore[union-attr]
    return {**(body or {}), "request_id": request_id}


def serve() -> None:
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.analyzer_host,
        port=settings.analyzer_port,
        reload=settings.environment == "development",
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    serve()
