"""URL, slug, and content normalization helpers."""

from __future__ import annotations

import hashlib
import re
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlsplit

if TYPE_CHECKING:
    from app.domain import EvidenceSource

TRACKING_PARAMS = frozenset({"gclid", "fbclid", "ref"})
_TRAILING_SLASHES = re.compile(r"/+$")
_DUPLICATE_SLASHES = re.compile(r"/{2,}")


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered.startswith("utm_") or lowered in TRACKING_PARAMS


def _fallback(raw: str) -> str:
    return _TRAILING_SLASHES.sub("", raw.strip().lower())


def canonicalize_url(raw: str) -> str:
    """Return a stable form of ``raw`` for equality checks; never raises."""

    value = (raw or "").strip()
    try:
        parts = urlsplit(value)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return _fallback(value)
    if not parts.scheme or not host:
        return _fallback(value)

    netloc = f"[{host}]" if ":" in host else host
    if port is not None:
        netloc = f"{netloc}:{port}"
    path = _TRAILING_SLASHES.sub("", parts.path.lower()) or "/"
    query_pairs = sorted(
        (key, val)
        for key, val in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    )
    query = urlencode(query_pairs)
    canonical = f"{parts.scheme.lower()}://{netloc.lower()}{path}"
    return f"{canonical}?{query}" if query else canonical


def domain_from_url(url: str) -> str:
    try:
        host = urlsplit((url or "").strip()).hostname
    except ValueError:
        return ""
    if not host:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def content_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def source_fingerprint(source: "EvidenceSource") -> str:
    """Hash the fields that make two same-URL sources materially different."""

    parts = [
        canonicalize_url(source.url),
        source.title or "",
        source.snippet or "",
        source.description or "",
        source.resolution_criteria or "",
        source.published_at or "",
    ]
    return content_hash("|".join(parts))


def dedup_key(source: "EvidenceSource") -> str:
    return f"{canonicalize_url(source.url)}::{source_fingerprint(source)}"


def normalize_slug_key(raw: str) -> str:
    normalized = _DUPLICATE_SLASHES.sub("/", (raw or "").strip().lower().strip("/"))
    return normalized or "unknown"


__all__ = [
    "canonicalize_url",
    "content_hash",
    "dedup_key",
    "domain_from_url",
    "normalize_slug_key",
    "source_fingerprint",
]
