"""OpenAI LLM provider — GPT-4o and OpenAI-compatible endpoints.

Requires ``OPENAI_API_KEY`` in the environment (or ``api_key``).
"""

from __future__ import annotations

import logging
from typing import Any

import openai

from finrag.errors import ProviderError
from finrag.llm.base import LLMProvider
from finrag.memory.schemas import PromptContext

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"


class OpenAILLMProvider(LLMProvider):
    """Generate responses via the OpenAI Chat Completions API."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

        kwargs: dict[str, Any] = {}
        if api_key:
            kwargs["api_key"] = api_key
        if base_url:
            kwargs["base_url"] = base_url

        self._client: Any = openai.AsyncOpenAI(**kwargs)

    async def generate(self, context: PromptContext) -> str:
        messages = [{"role": "system", "content": context.system}, *context.to_messages()]

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.APIError as exc:
            raise ProviderError(f"OpenAI request failed: {exc}", provider="openai") from exc

        return response.choices[0].message.content or ""

    async def aclose(self) -> None:
        await self._client.close()

    @classmethod
    def provider_name(cls) -> str:
        return "openai"
