"""Tests for embedding and LLM providers — mocked transports, no network calls."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from finrag.config import EmbeddingSettings, LLMSettings
from finrag.embeddings import factory as embedding_factory
from finrag.embeddings.base import EmbeddingProvider
from finrag.embeddings.ollama_provider import OllamaEmbeddingProvider
from finrag.embeddings.openai_provider import OpenAIEmbeddingProvider
from finrag.errors import ProviderError
from finrag.llm import factory as llm_factory
from finrag.llm.base import LLMProvider, alternating_turns
from finrag.llm.ollama_provider import OllamaLLMProvider
from finrag.llm.openai_provider import OpenAILLMProvider
from finrag.memory.schemas import PromptContext

from fakes import FakeEmbeddingProvider


def _mock_client(handler, base_url: str = "http://localhost:11434") -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Base classes
# ---------------------------------------------------------------------------


class TestProviderABCs:
    def test_cannot_instantiate_embedding_base(self):
        with pytest.raises(TypeError):
            EmbeddingProvider()  # type: ignore[abstract]

    def test_cannot_instantiate_llm_base(self):
        with pytest.raises(TypeError):
            LLMProvider()  # type: ignore[abstract]

    def test_model_id(self):
        assert FakeEmbeddingProvider(model="mini").model_id == "fake:mini"


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------


class TestOllamaEmbeddingProvider:
    async def test_embed_texts(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2], [0.3, 0.4]]})

        provider = OllamaEmbeddingProvider(model="nomic-embed-text", dimension=2)
        provider._client = _mock_client(handler)

        vectors = await provider.embed_texts(["alpha", "beta"])
        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        assert seen == [{"model": "nomic-embed-text", "input": ["alpha", "beta"]}]
        assert provider.model_id == "ollama:nomic-embed-text"
        await provider.aclose()

    async def test_empty_batch_skips_request(self):
        provider = OllamaEmbeddingProvider()
        provider._client = _mock_client(lambda request: pytest.fail("unexpected request"))
        assert await provider.embed_texts([]) == []

    async def test_http_error_is_provider_error(self):
        provider = OllamaEmbeddingProvider()
        provider._client = _mock_client(lambda request: httpx.Response(503, text="loading model"))
        with pytest.raises(ProviderError):
            await provider.embed_texts(["alpha"])

    async def test_missing_embeddings_key(self):
        provider = OllamaEmbeddingProvider()
        provider._client = _mock_client(lambda request: httpx.Response(200, json={"error": "nope"}))
        with pytest.raises(ProviderError, match="missing 'embeddings'"):
            await provider.embed_texts(["alpha"])


class TestOllamaLLMProvider:
    async def test_generate_sends_system_then_conversation(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"message": {"role": "assistant", "content": "EPS was $6.97 [1]."}})

        provider = OllamaLLMProvider(model="llama3", temperature=0.0, max_tokens=256)
        provider._client = _mock_client(handler)

        answer = await provider.generate(PromptContext(system="Be precise.", query="What was EPS?"))
        assert answer == "EPS was $6.97 [1]."

        [payload] = seen
        assert payload["model"] == "llama3"
        assert payload["stream"] is False
        assert payload["options"] == {"temperature": 0.0, "num_predict": 256}
        assert payload["messages"] == [
            {"role": "system", "content": "Be precise."},
            {"role": "user", "content": "What was EPS?"},
        ]

    async def test_http_error_is_provider_error(self):
        provider = OllamaLLMProvider()
        provider._client = _mock_client(lambda request: httpx.Response(500))
        with pytest.raises(ProviderError):
            await provider.generate(PromptContext(system="", query="q"))


# ---------------------------------------------------------------------------
# OpenAI (client mocked)
# ---------------------------------------------------------------------------


class TestOpenAIProviders:
    async def test_embeddings_sorted_by_index(self):
        provider = OpenAIEmbeddingProvider(api_key="test-key")
        provider._client = MagicMock()
        provider._client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[
            SimpleNamespace(index=1, embedding=[0.0, 1.0]),
            SimpleNamespace(index=0, embedding=[1.0, 0.0]),
        ]))

        assert await provider.embed_texts(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]
        assert provider.dimension == 1536

    def test_embedding_dimensions_override(self):
        provider = OpenAIEmbeddingProvider(model="text-embedding-3-large", api_key="test-key", dimensions=256)
        assert provider.dimension == 256

    async def test_chat_completion(self):
        provider = OpenAILLMProvider(api_key="test-key", model="gpt-4o-mini")
        provider._client = MagicMock()
        provider._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Margins expanded."))]
        ))

        answer = await provider.generate(PromptContext(system="sys", query="Margins?"))
        assert answer == "Margins expanded."
        kwargs = provider._client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}


# ---------------------------------------------------------------------------
# Turn alternation
# ---------------------------------------------------------------------------


class TestAlternatingTurns:
    def test_merges_consecutive_roles(self):
        merged = alternating_turns([
            {"role": "user", "content": "a"},
            {"role": "user", "content": "b"},
            {"role": "assistant", "content": "c"},
        ])
        assert merged == [
            {"role": "user", "content": "a\n\nb"},
            {"role": "assistant", "content": "c"},
        ]

    def test_drops_leading_assistant(self):
        merged = alternating_turns([
            {"role": "assistant", "content": "orphan"},
            {"role": "user", "content": "q"},
        ])
        assert merged == [{"role": "user", "content": "q"}]

    def test_input_not_mutated(self):
        messages = [{"role": "user", "content": "a"}, {"role": "user", "content": "b"}]
        alternating_turns(messages)
        assert messages[0]["content"] == "a"


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


class TestProviderFactories:
    def setup_method(self):
        embedding_factory.clear_cache()

    def test_available(self):
        assert embedding_factory.available_providers() == ["ollama", "openai", "huggingface"]
        assert llm_factory.available_providers() == ["ollama", "anthropic", "openai"]

    def test_unknown_embedding_provider(self):
        with pytest.raises(ValueError, match="Unknown embedding provider"):
            embedding_factory.get_embedding_provider("nonexistent")

    def test_unknown_llm_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            llm_factory.get_llm_provider("nonexistent")

    def test_embedding_from_settings(self):
        provider = embedding_factory.provider_from_settings(
            EmbeddingSettings(provider="ollama", model="mxbai-embed-large", dimension=1024)
        )
        assert isinstance(provider, OllamaEmbeddingProvider)
        assert provider.dimension == 1024
        assert provider.model_id == "ollama:mxbai-embed-large"

    def test_llm_from_settings(self):
        provider = llm_factory.provider_from_settings(
            LLMSettings(provider="ollama", model="llama3", temperature=0.1, max_tokens=512)
        )
        assert isinstance(provider, OllamaLLMProvider)
        assert provider.model_id == "ollama:llama3"
        assert provider.max_tokens == 512
