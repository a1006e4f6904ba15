"""Domain models for market resolution and evidence handling."""

from .models import (
    TIER_RANK,
    AnalysisRequest,
    EvidenceSource,
    Market,
    ResolvedVia,
    SourceTier,
)

__all__ = [
    "TIER_RANK",
    "AnalysisRequest",
    "EvidenceSource",
    "Market",
    "ResolvedVia",
    "SourceTier",
]
