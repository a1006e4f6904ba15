"""Runtime registry for LLM providers."""

from __future__ import annotations

from typing import Callable, Dict

from app.core.config import Settings

from .base import LLMProvider

ProviderFactory = Callable[..., LLMProvider]


class UnknownLLMProviderError(LookupError):
    """Raised when settings name an unregistered provider."""


_PROVIDERS: Dict[str, ProviderFactory] = {}


def register_provider(name: str, factory: ProviderFactory) -> None:
    """Register or replace the factory for ``name``."""

    _PROVIDERS[name.lower()] = factory


def get_provider(
    name: str,
    *,
    api_key: str | None,
    model: str | None = None,
    base_url: str | None = None,
) -> LLMProvider:
    """Build the provider registered under ``name``."""

    try:
        factory = _PROVIDERS[name.lower()]
    except KeyError as exc:
        raise UnknownLLMProviderError(f"LLM provider '{name}' is not registered") from exc
    return factory(api_key, model=model, base_url=base_url)


def provider_from_settings(settings: Settings) -> LLMProvider:
    base_url = str(settings.ai_base_url) if settings.ai_base_url else None
    return get_provider(
        settings.ai_provider,
        api_key=settings.ai_api_key,
        model=settings.ai_model,
        base_url=base_url,
    )


def available_providers() -> tuple[str, ...]:
    """Return the tuple of registered provider names."""

    return tuple(sorted(_PROVIDERS))


# Register built-in providers at import time.
from .openai import build_openai_provider, build_openrouter_provider  # noqa: E402

register_provider("openai", build_openai_provider)
register_provider("openrouter", build_openrouter_provider)


__all__ = [
    "UnknownLLMProviderError",
    "available_providers",
    "get_provider",
    "provider_from_settings",
    "register_provider",
]
