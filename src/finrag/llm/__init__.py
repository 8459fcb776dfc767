"""LLM providers — Ollama, Anthropic, OpenAI."""

from finrag.llm.base import LLMProvider
from finrag.llm.factory import available_providers, get_llm_provider, provider_from_settings

__all__ = ["LLMProvider", "available_providers", "get_llm_provider", "provider_from_settings"]
