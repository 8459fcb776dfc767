"""Embedding provider factory."""

from __future__ import annotations

from finrag.config import EmbeddingSettings
from finrag.embeddings.base import EmbeddingProvider
from finrag.registry import Registry

_providers: Registry[EmbeddingProvider] = Registry(
    "embedding provider",
    [
        ("ollama", "finrag.embeddings.ollama_provider", "OllamaEmbeddingProvider"),
        ("openai", "finrag.embeddings.openai_provider", "OpenAIEmbeddingProvider"),
        ("huggingface", "finrag.embeddings.huggingface_provider", "HuggingFaceEmbeddingProvider"),
    ],
)


def get_embedding_provider(provider: str = "ollama", **kwargs) -> EmbeddingProvider:
    """Get an embedding provider by name.

    Args:
        provider: One of ``ollama``, ``openai``, ``huggingface``.
        **kwargs: Passed to the provider constructor.
    """
    return _providers.get(provider, **kwargs)


def available_providers() -> list[str]:
    """Return names of registered embedding providers."""
    return _providers.available()


def clear_cache() -> None:
    """Clear singleton cache (for testing)."""
    _providers.clear()


def provider_from_settings(settings: EmbeddingSettings) -> EmbeddingProvider:
    """Build the configured provider, passing only the options it accepts."""
    key = settings.provider.lower()
    if key == "ollama":
        return get_embedding_provider(key, model=settings.model, dimension=settings.dimension)
    if key == "openai":
        return get_embedding_provider(key, model=settings.model, dimensions=settings.dimension)
    return get_embedding_provider(key, model=settings.model)
