"""Vector store factory."""

from __future__ import annotations

from finrag.config import VectorStoreSettings
from finrag.registry import Registry
from finrag.vectorstore.base import VectorStore

_stores: Registry[VectorStore] = Registry(
    "vector store",
    [
        ("faiss", "finrag.vectorstore.faiss_store", "FAISSStore"),
        ("qdrant", "finrag.vectorstore.qdrant_store", "QdrantStore"),
        ("pgvector", "finrag.vectorstore.pgvector_store", "PgVectorStore"),
    ],
)


def get_vector_store(provider: str = "faiss", **kwargs) -> VectorStore:
    """Get a vector store by name.

    Args:
        provider: One of ``faiss``, ``qdrant``, ``pgvector``.
        **kwargs: Passed to the store constructor.
    """
    return _stores.get(provider, **kwargs)


def available_stores() -> list[str]:
    """Return names of registered vector stores."""
    return _stores.available()


def clear_cache() -> None:
    """Clear singleton cache (for testing)."""
    _stores.clear()


def store_from_settings(settings: VectorStoreSettings, dimension: int) -> VectorStore:
    """Build the configured backend with the options it accepts."""
    key = settings.backend.lower()
    if key == "faiss":
        return get_vector_store(key, dimension=dimension, path=settings.path)
    if key == "qdrant":
        return get_vector_store(
            key,
            dimension=dimension,
            url=settings.url,
            api_key=settings.api_key,
            path=None if settings.url else settings.path,
        )
    if key == "pgvector":
        return get_vector_store(key, dsn=settings.dsn, dimension=dimension)
    return get_vector_store(key, dimension=dimension)
