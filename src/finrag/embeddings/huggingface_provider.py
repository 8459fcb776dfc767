"""HuggingFace/sentence-transformers embedding provider.

Runs locally via ``sentence-transformers``. Requires the ``huggingface`` extra.
Encoding is CPU/GPU bound, so it runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from finrag.embeddings.base import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "all-MiniLM-L6-v2"


class HuggingFaceEmbeddingProvider(EmbeddingProvider):
    """Embed text locally using sentence-transformers."""

    max_batch_size = 64

    def __init__(self, model: str = DEFAULT_MODEL, device: str | None = None):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise ImportError(
                "sentence-transformers required: "
                "pip install finrag[huggingface]"
            ) from exc

        self.model = model
        self._model: Any = SentenceTransformer(model, device=device)
        self._dim: int = self._model.get_sentence_embedding_dimension()
        logger.info("Loaded HF model %s (dim=%d)", model, self._dim)

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        embeddings = await asyncio.to_thread(
            self._model.encode, texts, show_progress_bar=False,
        )
        return [vec.tolist() for vec in embeddings]

    @property
    def dimension(self) -> int:
        return self._dim

    @classmethod
    def provider_name(cls) -> str:
        return "huggingface"
