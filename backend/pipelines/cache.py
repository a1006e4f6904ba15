"""File-backed TTL cache of successful analysis envelopes."""

from __future__ import annotations

import json
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from app.domain import AnalysisRequest

from .canonical import normalize_slug_key
from .timestamps import parse_timestamp, utc_now

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def build_cache_key(
    request: AnalysisRequest, pipeline_version: str, search_enabled: bool
) -> str:
    """Fingerprint the inputs that change the analysis result."""

    if request.slug:
        base = request.slug
    elif request.event_slug:
        base = request.event_slug
    elif request.market_id:
        base = f"id:{request.market_id}"
    else:
        base = ""
    parts = [
        normalize_slug_key(base),
        f"pipeline={pipeline_version}",
        f"search={'on' if search_enabled else 'off'}",
    ]
    if request.market_index is not None:
        parts.append(f"market_index={request.market_index}")
    return "|".join(parts)


@dataclass(slots=True)
class CacheHit:
    payload: dict[str, Any]
    ttl_remaining: int


class AnalysisCache:
    def __init__(self, directory: str | Path, ttl_sec: int) -> None:
        self.directory = Path(directory)
        self.ttl_sec = ttl_sec

    def path_for(self, key: str) -> Path:
        return self.directory / f"analysis_{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def read(self, key: str) -> CacheHit | None:
        """Return the stored envelope while it is still fresh."""

        path = self.path_for(key)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.debug("Cache entry unreadable key={} error={}", key, exc)
            return None
        if not isinstance(payload, dict):
            return None
        stamp = parse_timestamp(payload.get("timestamp_utc"))
        if stamp is None:
            return None
        age_sec = (utc_now() - stamp).total_seconds()
        if age_sec >= self.ttl_sec:
            return None
        return CacheHit(payload=payload, ttl_remaining=max(0, int(self.ttl_sec - age_sec)))

    def write(self, key: str, payload: dict[str, Any]) -> bool:
        """Persist ``payload``; failures are logged and reported as ``False``."""

        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".analysis_", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, default=str)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Cache write failed key={} error={}", key, exc)
            return False
        logger.debug("Cache stored key={} path={}", key, path)
        return True


__all__ = ["AnalysisCache", "CacheHit", "build_cache_key"]
