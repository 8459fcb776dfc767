"""Abstract base class for embedding providers."""

from __future__ import annotations

from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """Interface for the external "embed text" capability.

    Implementations wrap transport failures in ``ProviderError`` so the
    ``Embedder`` can retry them.
    """

    #: Largest number of texts accepted by one provider request.
    max_batch_size: int = 256

    model: str

    @abstractmethod
    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts.

        Args:
            texts: Strings to embed.

        Returns:
            List of embedding vectors (same order as input).
        """

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimensionality."""

    @property
    def model_id(self) -> str:
        """Identifier of the vector space, e.g. ``ollama:nomic-embed-text``.

        Vectors produced under different model ids are not comparable.
        """
        return f"{self.provider_name()}:{self.model}"

    async def aclose(self) -> None:
        """Release network resources (optional)."""

    @classmethod
    def provider_name(cls) -> str:
        """Return human-readable provider name."""
        return cls.__name__
