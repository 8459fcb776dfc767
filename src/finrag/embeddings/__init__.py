"""Embeddings — providers, durable cache, and the cache-aware Embedder."""

from finrag.embeddings.base import EmbeddingProvider
from finrag.embeddings.cache import (
    EmbeddingCache,
    InMemoryEmbeddingCache,
    SQLiteEmbeddingCache,
)
from finrag.embeddings.embedder import Embedder, EmbedderStats
from finrag.embeddings.factory import available_providers, get_embedding_provider

__all__ = [
    "Embedder",
    "EmbedderStats",
    "EmbeddingCache",
    "EmbeddingProvider",
    "InMemoryEmbeddingCache",
    "SQLiteEmbeddingCache",
    "available_providers",
    "get_embedding_provider",
]
