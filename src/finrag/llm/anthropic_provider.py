"""Anthropic Claude LLM provider.

Requires the ``anthropic`` extra and ``ANTHROPIC_API_KEY`` env var.
"""

from __future__ import annotations

import logging
from typing import Any

from finrag.errors import ProviderError
from finrag.llm.base import LLMProvider, alternating_turns
from finrag.memory.schemas import PromptContext

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"


class AnthropicLLMProvider(LLMProvider):
    """Generate responses via the Anthropic Messages API."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ):
        try:
            import anthropic
        except ImportError as exc:
            raise ImportError(
                "anthropic package required: pip install finrag[anthropic]"
            ) from exc

        self._anthropic = anthropic
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client: Any = anthropic.AsyncAnthropic(api_key=api_key)

    async def generate(self, context: PromptContext) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": alternating_turns(context.to_messages()),
        }
        if context.system:
            kwargs["system"] = context.system

        try:
            response = await self._client.messages.create(**kwargs)
        except self._anthropic.APIError as exc:
            raise ProviderError(f"Anthropic request failed: {exc}", provider="anthropic") from exc

        return "".join(block.text for block in response.content if block.type == "text")

    async def aclose(self) -> None:
        await self._client.close()

    @classmethod
    def provider_name(cls) -> str:
        return "anthropic"
