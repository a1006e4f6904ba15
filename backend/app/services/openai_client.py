"""Helpers for constructing OpenAI API clients."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from openai import AsyncOpenAI

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_HEADERS = (
    ("HTTP-Referer", "https://polymarket.com"),
    ("X-Title", "Polymarket Market Analyzer"),
)


@lru_cache(maxsize=4)
def _client_cache(
    api_key: str,
    base_url: str | None,
    default_headers: tuple[tuple[str, str], ...],
) -> AsyncOpenAI:
    kwargs: dict[str, Any] = {"api_key": api_key, "max_retries": 0}
    if base_url:
        kwargs["base_url"] = base_url
    if default_headers:
        kwargs["default_headers"] = dict(default_headers)
    return AsyncOpenAI(**kwargs)


def get_openai_client(
    api_key: str | None,
    *,
    base_url: str | None = None,
    default_headers: tuple[tuple[str, str], ...] = (),
) -> AsyncOpenAI:
    """Build or reuse an async OpenAI SDK client.

    SDK-level retries are disabled; retry policy lives in the analysis pipeline.
    """

    if not api_key:
        raise ValueError("AI_API_KEY is not configured")
    return _client_cache(api_key, base_url.rstrip("/") if base_url else None, default_headers)


__all__ = ["OPENROUTER_BASE_URL", "OPENROUTER_HEADERS", "get_openai_client"]
