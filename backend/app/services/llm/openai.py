"""OpenAI and OpenRouter provider adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from openai import AsyncOpenAI

from app.services.openai_client import (
    OPENROUTER_BASE_URL,
    OPENROUTER_HEADERS,
    get_openai_client,
)

DEFAULT_MODEL = "gpt-4o-mini"
TEMPERATURE = 0.2


class EmptyCompletionError(RuntimeError):
    """Raised when a provider response carries no text output."""


def _extract_response_text(response: Any) -> str:
    output_text = getattr(response, "output_text", None)
    if isinstance(output_text, str) and output_text.strip():
        return output_text
    dump: dict[str, Any]
    if hasattr(response, "model_dump"):
        dump = response.model_dump()
    elif isinstance(response, dict):
        dump = response
    else:
        dump = {}
    for item in dump.get("output") or []:
        for content in (item or {}).get("content") or []:
            if isinstance(content, dict):
                text = content.get("text") or content.get("output_text")
                if isinstance(text, str) and text.strip():
                    return text
    raise EmptyCompletionError("LLM response did not include any text output")


def _extract_chat_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    for choice in choices:
        message = getattr(choice, "message", None)
        content = getattr(message, "content", None)
        if isinstance(content, str) and content.strip():
            return content
    raise EmptyCompletionError("LLM chat completion did not include any content")


@dataclass(slots=True)
class OpenAIProvider:
    """Responses API adapter."""

    client: AsyncOpenAI
    model: str = DEFAULT_MODEL
    name: str = field(default="openai", init=False)

    async def complete(self, prompt: str, *, response_format: str = "json_object") -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "input": [{"role": "user", "content": prompt}],
            "temperature": TEMPERATURE,
        }
        if response_format == "json_object":
            payload["text"] = {"format": {"type": "json_object"}}
        logger.debug("OpenAI responses.create model={} chars={}", self.model, len(prompt))
        response = await self.client.responses.create(**payload)
        return _extract_response_text(response)


@dataclass(slots=True)
class OpenRouterProvider:
    """Chat-completions adapter pointed at the OpenRouter gateway."""

    client: AsyncOpenAI
    model: str = DEFAULT_MODEL
    name: str = field(default="openrouter", init=False)

    async def complete(self, prompt: str, *, response_format: str = "none") -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": TEMPERATURE,
        }
        if response_format == "json_object":
            payload["response_format"] = {"type": "json_object"}
        logger.debug("OpenRouter chat.completions.create model={} chars={}", self.model, len(prompt))
        response = await self.client.chat.completions.create(**payload)
        return _extract_chat_text(response)


def build_openai_provider(
    api_key: str | None, *, model: str | None = None, base_url: str | None = None
) -> OpenAIProvider:
    client = get_openai_client(api_key, base_url=base_url)
    return OpenAIProvider(client=client, model=model or DEFAULT_MODEL)


def build_openrouter_provider(
    api_key: str | None, *, model: str | None = None, base_url: str | None = None
) -> OpenRouterProvider:
    client = get_openai_client(
        api_key,
        base_url=base_url or OPENROUTER_BASE_URL,
        default_headers=OPENROUTER_HEADERS,
    )
    return OpenRouterProvider(client=client, model=model or DEFAULT_MODEL)


__all__ = [
    "DEFAULT_MODEL",
    "EmptyCompletionError",
    "OpenAIProvider",
    "OpenRouterProvider",
    "build_openai_provider",
    "build_openrouter_provider",
]
