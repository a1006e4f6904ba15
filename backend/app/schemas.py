from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from app.domain import ResolvedVia

Confidence = Literal["low", "medium", "high"]
Recency = Literal["fresh", "mixed", "stale", "unknown"]
Severity = Literal["low", "medium", "high"]
Stance = Literal["pro_yes", "pro_no", "neutral"]

ErrorStep = Literal["market_fetch", "search", "llm", "parse", "validate", "cache", "overall"]
ErrorCode = Literal[
    "NOT_FOUND",
    "NETWORK_ERROR",
    "TIMEOUT",
    "RATE_LIMIT",
    "BAD_RESPONSE",
    "INVALID_JSON",
]


class _ReportModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class TopDrivers(_ReportModel):
    pro: list[StrictStr] = Field(min_length=2)
    con: list[StrictStr] = Field(min_length=2)


class ReportQuickView(_ReportModel):
    confidence: Confidence
    top_drivers: TopDrivers


class EvidenceSummary(_ReportModel):
    recency: Recency


class KeyFact(_ReportModel):
    stance: Stance
    sources: list[StrictStr] = Field(min_length=1)


class RiskItem(_ReportModel):
    severity: Severity


class FullReport(_ReportModel):
    evidence_summary: EvidenceSummary
    key_facts: list[KeyFact]
    risks: list[RiskItem]


class AnalysisReport(_ReportModel):
    """Shape the language model must return before post-processing."""

    quick_view: ReportQuickView
    full_report: FullReport


class CacheMeta(BaseModel):
    hit: bool
    ttl_sec: int
    expires_at_utc: str | None = None


class ErrorEnvelope(BaseModel):
    status: Literal["error"] = "error"
    step: ErrorStep
    error_code: ErrorCode
    message: str
    retryable: bool
    attempts: int | None = None
    sources_count: int | None = None
    raw_output: str | None = None
    schema_version: str | None = None
    timestamp_utc: str | None = None
    resolved_via: ResolvedVia | None = None
    cache: CacheMeta | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class HealthStatus(BaseModel):
    ok: bool
    status: str
    service_version: str
    time_utc: datetime
    uptime_sec: int
