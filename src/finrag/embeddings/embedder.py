"""Embedder — cache-checked, batched, retried calls to an embedding provider."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from finrag.chunking.schemas import Chunk, content_hash
from finrag.embeddings.base import EmbeddingProvider
from finrag.embeddings.cache import EmbeddingCache
from finrag.embeddings.rate_limit import RateLimiter
from finrag.errors import ConfigurationError, FinragError, ProviderError
from finrag.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 4


@dataclass
class EmbedderStats:
    """Running counters, mostly for logs and tests."""

    cache_hits: int = 0
    cache_misses: int = 0
    provider_calls: int = 0


class Embedder:
    """Turns chunks into vectors, calling the provider only on cache misses.

    Misses are deduplicated by content hash, grouped into provider-sized
    batches and dispatched concurrently (bounded by ``max_concurrency`` and
    an optional rate limiter). Each batch is retried by ``retry_policy``; if
    any batch still fails the whole call fails. Vectors are written to the
    cache as soon as their batch succeeds.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: EmbeddingCache,
        retry_policy: RetryPolicy | None = None,
        batch_size: int | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        rate_limiter: RateLimiter | None = None,
    ):
        self.provider = provider
        self.cache = cache
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = min(batch_size or provider.max_batch_size, provider.max_batch_size)
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._rate_limiter = rate_limiter
        self.stats = EmbedderStats()

    @property
    def model_id(self) -> str:
        return self.provider.model_id

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed_batch(self, chunks: Sequence[Chunk]) -> list[list[float]]:
        """Return one vector per chunk, in input order."""
        return await self._embed([(c.content_hash, c.text) for c in chunks])

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        return await self._embed([(content_hash(t), t) for t in texts])

    async def embed_query(self, query: str) -> list[float]:
        vectors = await self.embed_texts([query])
        return vectors[0]

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    async def _embed(self, items: list[tuple[str, str]]) -> list[list[float]]:
        if not items:
            return []

        model_id = self.model_id
        unique: dict[str, str] = {}
        for h, text in items:
            unique.setdefault(h, text)

        async with self.cache.pinned(unique, model_id):
            found = await self.cache.get_many(list(unique), model_id)
            misses = [(h, t) for h, t in unique.items() if h not in found]

            self.stats.cache_hits += len(unique) - len(misses)
            self.stats.cache_misses += len(misses)

            if misses:
                batches = [
                    misses[i : i + self.batch_size]
                    for i in range(0, len(misses), self.batch_size)
                ]
                logger.info(
                    "Embedding %d uncached texts in %d batch(es) (%d cache hits, model=%s)",
                    len(misses), len(batches), len(unique) - len(misses), model_id,
                )
                results = await asyncio.gather(
                    *(self._embed_provider_batch(b) for b in batches),
                    return_exceptions=True,
                )
                errors = [r for r in results if isinstance(r, BaseException)]
                for r in results:
                    if not isinstance(r, BaseException):
                        found.update(r)
                if errors:
                    first = errors[0]
                    if isinstance(first, FinragError):
                        raise first
                    raise ProviderError(
                        f"Embedding failed for {len(errors)} of {len(batches)} batches: {first}",
                        provider=self.provider.provider_name(),
                    ) from first

        return [found[h] for h, _ in items]

    async def _embed_provider_batch(self, batch: list[tuple[str, str]]) -> dict[str, list[float]]:
        texts = [t for _, t in batch]
        async with self._semaphore:
            vectors = await self.retry_policy.run(self._call_provider, texts)

        embedded = {h: vec for (h, _), vec in zip(batch, vectors, strict=True)}
        await self.cache.put_many(embedded, self.model_id)
        return embedded

    async def _call_provider(self, texts: list[str]) -> list[list[float]]:
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        self.stats.provider_calls += 1
        vectors = await self.provider.embed_texts(texts)

        if len(vectors) != len(texts):
            raise ProviderError(
                f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                provider=self.provider.provider_name(),
            )
        for vec in vectors:
            if len(vec) != self.dimension:
                raise ConfigurationError(
                    f"Provider {self.model_id} returned dimension {len(vec)}, "
                    f"configured dimension is {self.dimension}"
                )
        return vectors
