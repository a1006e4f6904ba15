"""Provider contracts for LLM integrations."""

from __future__ import annotations

from typing import Protocol


class LLMProvider(Protocol):
    """Interface implemented by provider adapters."""

    name: str
    model: str

    async def complete(self, prompt: str, *, response_format: str = "json_object") -> str:
        """Send ``prompt`` as a single user message and return the raw text reply.

        ``response_format`` is ``json_object`` to request provider-side JSON mode
        or ``none`` to send plain text. Transport and API errors propagate.
        """


__all__ = ["LLMProvider"]
