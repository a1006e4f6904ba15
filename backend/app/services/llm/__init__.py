"""LLM provider registry used by the analysis pipeline."""

from .registry import (
    available_providers,
    get_provider,
    provider_from_settings,
    register_provider,
)
from .base import LLMProvider

__all__ = [
    "LLMProvider",
    "available_providers",
    "get_provider",
    "provider_from_settings",
    "register_provider",
]
