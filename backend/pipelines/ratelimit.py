"""Persisted last-run gate keyed by logical operation name."""

from __future__ import annotations

import json
import re
import time
from pathlib import Path
from typing import Callable, Protocol

from loguru import logger

from app.schemas import ErrorEnvelope

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class RateLimitStore(Protocol):
    def get(self, key: str) -> int | None:
        """Return the last recorded run in epoch milliseconds."""

    def set(self, key: str, timestamp_ms: int) -> None:
        """Persist ``timestamp_ms`` as the last run for ``key``."""


class MemoryRateLimitStore:
    def __init__(self) -> None:
        self._timestamps: dict[str, int] = {}

    def get(self, key: str) -> int | None:
        return self._timestamps.get(key)

    def set(self, key: str, timestamp_ms: int) -> None:
        self._timestamps[key] = timestamp_ms


class FileRateLimitStore:
    """One small JSON file per key, shared by every process using ``directory``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"ratelimit_{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def get(self, key: str) -> int | None:
        path = self._path(key)
        if not path.exists():
            return None
        payload = json.loads(path.read_text(encoding="utf-8"))
        last = payload.get("lastRunAt") if isinstance(payload, dict) else None
        if isinstance(last, (int, float)) and not isinstance(last, bool):
            return int(last)
        return None

    def set(self, key: str, timestamp_ms: int) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(json.dumps({"lastRunAt": timestamp_ms}), encoding="utf-8")


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """Best-effort back-pressure; storage failures degrade to allowing the call."""

    def __init__(self, store: RateLimitStore, *, clock: Callable[[], int] = _now_ms) -> None:
        self.store = store
        self._clock = clock

    def check_and_record(self, min_interval_ms: int, key: str) -> ErrorEnvelope | None:
        if min_interval_ms <= 0:
            return None
        now = self._clock()
        try:
            last = self.store.get(key)
        except (OSError, ValueError) as exc:
            logger.debug("Rate limit state unreadable key={} error={}", key, exc)
            last = None
        if last is not None and now - last < min_interval_ms:
            logger.info(
                "Rate limited key={} wait_ms={}", key, min_interval_ms - (now - last)
            )
            return ErrorEnvelope(
                step="overall",
                error_code="RATE_LIMIT",
                message="Too many requests; please wait before retrying.",
                retryable=True,
            )
        try:
            self.store.set(key, now)
        except OSError as exc:
            logger.debug("Rate limit state not persisted key={} error={}", key, exc)
        return None


__all__ = [
    "FileRateLimitStore",
    "MemoryRateLimitStore",
    "RateLimitStore",
    "RateLimiter",
]
