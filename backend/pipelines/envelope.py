"""Stamp schema, timing, resolution, and cache metadata onto results."""

from __future__ import annotations

from typing import Any

from app.domain import ResolvedVia
from app.schemas import CacheMeta, ErrorEnvelope

from .timestamps import add_seconds, iso_timestamp, parse_timestamp, utc_now


class EnvelopeBuilder:
    def __init__(self, schema_version: str) -> None:
        self.schema_version = schema_version

    def _cache_meta(self, timestamp_utc: str | None, hit: bool, ttl_sec: int) -> CacheMeta:
        base = parse_timestamp(timestamp_utc) or utc_now()
        return CacheMeta(
            hit=hit,
            ttl_sec=ttl_sec,
            expires_at_utc=iso_timestamp(add_seconds(base, ttl_sec)),
        )

    def success(
        self, payload: dict[str, Any], resolved_via: ResolvedVia, *, ttl_sec: int
    ) -> dict[str, Any]:
        payload["schema_version"] = self.schema_version
        if not payload.get("timestamp_utc"):
            payload["timestamp_utc"] = iso_timestamp()
        payload["resolved_via"] = resolved_via
        payload["cache"] = self._cache_meta(payload["timestamp_utc"], False, ttl_sec).model_dump(
            exclude_none=True
        )
        return payload

    def error(self, envelope: ErrorEnvelope, resolved_via: ResolvedVia) -> ErrorEnvelope:
        timestamp = envelope.timestamp_utc or iso_timestamp()
        return envelope.model_copy(
            update={
                "schema_version": self.schema_version,
                "timestamp_utc": timestamp,
                "resolved_via": resolved_via,
                "cache": self._cache_meta(timestamp, False, 0),
            }
        )

    def cache_hit(
        self, payload: dict[str, Any], ttl_remaining: int, resolved_via: ResolvedVia
    ) -> dict[str, Any]:
        payload["schema_version"] = self.schema_version
        payload["resolved_via"] = resolved_via
        payload["cache"] = CacheMeta(
            hit=True,
            ttl_sec=ttl_remaining,
            expires_at_utc=iso_timestamp(add_seconds(utc_now(), ttl_remaining)),
        ).model_dump(exclude_none=True)
        return payload


__all__ = ["EnvelopeBuilder"]
