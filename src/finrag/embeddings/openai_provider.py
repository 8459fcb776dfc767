"""OpenAI embedding provider — text-embedding-3-small/large.

Requires ``OPENAI_API_KEY`` in the environment (or ``api_key``).
"""

from __future__ import annotations

import logging
from typing import Any

import openai

from finrag.embeddings.base import EmbeddingProvider
from finrag.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"

_DIMENSION_MAP = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embed text via the OpenAI Embeddings API."""

    max_batch_size = 2048  # OpenAI max batch size

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        dimensions: int | None = None,
    ):
        self.model = model
        self._dimensions = dimensions or _DIMENSION_MAP.get(model, 1536)
        self._client: Any = openai.AsyncOpenAI(api_key=api_key)

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        try:
            resp = await self._client.embeddings.create(model=self.model, input=texts)
        except openai.APIError as exc:
            raise ProviderError(f"OpenAI embed request failed: {exc}", provider="openai") from exc

        # Sort by index to guarantee order
        sorted_data = sorted(resp.data, key=lambda x: x.index)
        return [d.embedding for d in sorted_data]

    @property
    def dimension(self) -> int:
        return self._dimensions

    async def aclose(self) -> None:
        await self._client.close()

    @classmethod
    def provider_name(cls) -> str:
        return "openai"
