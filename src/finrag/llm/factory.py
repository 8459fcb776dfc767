"""LLM provider factory."""

from __future__ import annotations

from finrag.config import LLMSettings
from finrag.llm.base import LLMProvider
from finrag.registry import Registry

_providers: Registry[LLMProvider] = Registry(
    "LLM provider",
    [
        ("ollama", "finrag.llm.ollama_provider", "OllamaLLMProvider"),
        ("anthropic", "finrag.llm.anthropic_provider", "AnthropicLLMProvider"),
        ("openai", "finrag.llm.openai_provider", "OpenAILLMProvider"),
    ],
)


def get_llm_provider(provider: str = "ollama", **kwargs) -> LLMProvider:
    """Get an LLM provider by name (``ollama``, ``anthropic``, ``openai``)."""
    return _providers.get(provider, **kwargs)


def available_providers() -> list[str]:
    return _providers.available()


def clear_cache() -> None:
    """Clear singleton cache (for testing)."""
    _providers.clear()


def provider_from_settings(settings: LLMSettings) -> LLMProvider:
    """Build the configured generation provider."""
    return get_llm_provider(
        settings.provider,
        model=settings.model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
