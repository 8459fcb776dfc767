"""Wire the ingestion and conversation pipelines from ``Settings``."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from finrag.chunking.overlap_chunker import OverlapChunker
from finrag.config import EmbeddingCacheSettings, MemorySettings, Settings, load_settings
from finrag.embeddings.cache import EmbeddingCache, InMemoryEmbeddingCache, SQLiteEmbeddingCache
from finrag.embeddings.embedder import Embedder
from finrag.embeddings.factory import provider_from_settings as embedding_provider_from_settings
from finrag.embeddings.rate_limit import RateLimiter
from finrag.errors import ConfigurationError
from finrag.llm.base import LLMProvider
from finrag.llm.factory import provider_from_settings as llm_provider_from_settings
from finrag.memory.base import ConversationStore
from finrag.memory.context import ConversationMemory
from finrag.memory.in_memory_store import InMemoryConversationStore
from finrag.pipeline.engine import ConversationEngine
from finrag.pipeline.ingest import IngestPipeline
from finrag.retrieval.retriever import Retriever
from finrag.retrieval.schemas import RetrievalConfig
from finrag.retry import RetryPolicy
from finrag.vectorstore.base import VectorStore
from finrag.vectorstore.factory import store_from_settings

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Everything a front-end needs, sharing one embedder and one vector store."""

    settings: Settings
    embedder: Embedder
    vector_store: VectorStore
    ingest: IngestPipeline
    retriever: Retriever
    memory: ConversationMemory
    llm: LLMProvider
    engine: ConversationEngine

    async def aclose(self) -> None:
        await self.embedder.provider.aclose()
        await self.embedder.cache.close()
        await self.vector_store.close()
        await self.memory.store.close()
        await self.llm.aclose()


def cache_from_settings(settings: EmbeddingCacheSettings) -> EmbeddingCache:
    if settings.backend == "memory":
        return InMemoryEmbeddingCache(max_entries=settings.max_entries)
    return SQLiteEmbeddingCache(settings.path, max_entries=settings.max_entries)


def conversation_store_from_settings(settings: MemorySettings) -> ConversationStore:
    if settings.backend == "memory":
        return InMemoryConversationStore()
    if not settings.dsn:
        raise ConfigurationError("memory.backend is 'postgres' but no dsn or DATABASE_URL is set")
    from finrag.memory.postgres_store import PostgresConversationStore

    return PostgresConversationStore(dsn=settings.dsn)


def build_components(
    settings: Settings | None = None,
    embedder: Embedder | None = None,
    vector_store: VectorStore | None = None,
    store: ConversationStore | None = None,
    llm: LLMProvider | None = None,
) -> Components:
    """Build every pipeline component; explicit arguments override settings."""
    settings = settings or load_settings()
    retry = settings.retry.policy()

    if embedder is None:
        emb = settings.embedding
        embedder = Embedder(
            provider=embedding_provider_from_settings(emb),
            cache=cache_from_settings(settings.embedding_cache),
            retry_policy=retry,
            batch_size=emb.batch_size,
            max_concurrency=emb.max_concurrency,
            rate_limiter=RateLimiter(emb.requests_per_second) if emb.requests_per_second else None,
        )

    vector_store = vector_store or store_from_settings(settings.vectorstore, embedder.dimension)
    collections = dict(settings.vectorstore.collections)

    chunking = settings.chunking
    ingest = IngestPipeline(
        chunker=OverlapChunker(
            chunk_size=chunking.chunk_size,
            overlap=chunking.overlap,
            boundary_tolerance=chunking.boundary_tolerance,
        ),
        embedder=embedder,
        vector_store=vector_store,
        collections=collections,
    )

    retrieval = settings.retrieval
    retriever = Retriever(
        embedder,
        vector_store,
        RetrievalConfig(
            top_k=retrieval.top_k,
            overfetch_factor=retrieval.overfetch_factor,
            max_fetch=retrieval.max_fetch,
            collections=collections,
        ),
    )

    mem = settings.memory
    memory = ConversationMemory(
        store or conversation_store_from_settings(mem),
        budget=mem.budget,
        unit=mem.budget_unit,
        history_window=mem.history_window,
    )

    llm = llm or llm_provider_from_settings(settings.llm)
    engine = ConversationEngine(
        retriever=retriever,
        memory=memory,
        llm=llm,
        generation_retry=retry,
        persist_retry=RetryPolicy(
            max_attempts=settings.engine.persist_attempts,
            base_delay=retry.base_delay,
            max_delay=retry.max_delay,
        ),
        timeout=settings.engine.timeout_seconds,
    )

    logger.info(
        "Built components: embedding=%s, vectorstore=%s, memory=%s, llm=%s",
        embedder.model_id, settings.vectorstore.backend, mem.backend, llm.model_id,
    )
    return Components(
        settings=settings,
        embedder=embedder,
        vector_store=vector_store,
        ingest=ingest,
        retriever=retriever,
        memory=memory,
        llm=llm,
        engine=engine,
    )
