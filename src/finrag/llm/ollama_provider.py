"""Ollama LLM provider — local-first, no API keys.

Supports DeepSeek-R1, Llama, Mistral, and any model available via Ollama.
"""

from __future__ import annotations

import logging

import httpx

from finrag.errors import ProviderError
from finrag.llm.base import LLMProvider
from finrag.memory.schemas import PromptContext

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "deepseek-r1:32b"
DEFAULT_BASE_URL = "http://localhost:11434"


class OllamaLLMProvider(LLMProvider):
    """Generate responses via a local Ollama server's chat endpoint."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        timeout: float = 120.0,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def generate(self, context: PromptContext) -> str:
        messages = [{"role": "system", "content": context.system}, *context.to_messages()]
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }

        try:
            resp = await self._client.post("/api/chat", json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            raise ProviderError(f"Ollama chat request failed: {exc}", provider="ollama") from exc

        return data.get("message", {}).get("content", "")

    async def aclose(self) -> None:
        await self._client.aclose()

    @classmethod
    def provider_name(cls) -> str:
        return "ollama"
