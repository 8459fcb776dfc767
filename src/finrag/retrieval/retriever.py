"""Retriever — embed query, search vector store, deduplicate overlapping passages."""

from __future__ import annotations

import asyncio
import logging
import math

from finrag.embeddings.embedder import Embedder
from finrag.errors import ConfigurationError
from finrag.retrieval.schemas import RetrievalConfig, RetrievedPassage
from finrag.vectorstore.base import VectorStore
from finrag.vectorstore.schemas import MetadataFilter

logger = logging.getLogger(__name__)


def rank_key(passage: RetrievedPassage) -> tuple:
    """Score desc, then newer filing date, then document id, then seq."""
    filed = passage.filing_date
    # Ordinals start at 1, so 0 puts missing dates after every real one.
    date_rank = -filed.toordinal() if filed else 0
    return (-passage.score, date_rank, passage.document_id, passage.seq)


def deduplicate(passages: list[RetrievedPassage]) -> list[RetrievedPassage]:
    """Drop passages overlapping a better-ranked passage from the same document."""
    kept: list[RetrievedPassage] = []
    for passage in sorted(passages, key=rank_key):
        if any(passage.overlaps(other) for other in kept):
            continue
        kept.append(passage)
    return kept


class Retriever:
    """Orchestrates query embedding → filtered search → dedup → ranking.

    The query must be embedded with the same model the collections were built
    with; a mismatch raises ``ConfigurationError`` before anything is embedded.
    """

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        config: RetrievalConfig | None = None,
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.config = config or RetrievalConfig()

    async def retrieve(
        self,
        query: str,
        filters: MetadataFilter | None = None,
        k: int | None = None,
    ) -> list[RetrievedPassage]:
        """Return up to ``k`` non-overlapping passages, best first.

        Args:
            query: The user's question.
            filters: Metadata predicates applied inside the vector search.
            k: Number of passages wanted; defaults to ``config.top_k``.
        """
        cfg = self.config
        k = cfg.top_k if k is None else k
        if k <= 0:
            return []

        collections = self._collections_for(filters)
        await self._check_collection_models(collections)

        query_vector = await self.embedder.embed_query(query)

        fetch_k = min(max(k, math.ceil(k * cfg.overfetch_factor)), max(cfg.max_fetch, k))
        while True:
            batches = await asyncio.gather(*(
                self.vector_store.search(c, query_vector, fetch_k, filters)
                for c in collections
            ))

            candidates: list[RetrievedPassage] = []
            exhausted = True
            for collection, results in zip(collections, batches, strict=True):
                if len(results) >= fetch_k:
                    exhausted = False
                for result in results:
                    if result.record.embedding_model != self.embedder.model_id:
                        raise ConfigurationError(
                            f"Record {result.record.chunk_id} in '{collection}' was embedded with "
                            f"{result.record.embedding_model!r}, query uses {self.embedder.model_id!r}"
                        )
                    if cfg.min_score > 0 and result.score < cfg.min_score:
                        continue
                    candidates.append(RetrievedPassage.from_result(result, collection))

            passages = deduplicate(candidates)
            if len(passages) >= k or exhausted or fetch_k >= cfg.max_fetch:
                break
            fetch_k = min(fetch_k * 2, cfg.max_fetch)
            logger.debug("Widening search to %d candidates per collection", fetch_k)

        logger.info(
            "Retrieved %d passages for query (candidates=%d, collections=%s)",
            min(k, len(passages)),
            len(candidates),
            collections,
        )
        return passages[:k]

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _collections_for(self, filters: MetadataFilter | None) -> list[str]:
        mapping = self.config.collections
        if filters is not None and filters.report_type is not None:
            name = mapping.get(str(filters.report_type))
            if name is None:
                raise ConfigurationError(f"No collection configured for '{filters.report_type}'")
            return [name]
        return sorted(set(mapping.values()))

    async def _check_collection_models(self, collections: list[str]) -> None:
        models = await asyncio.gather(*(self.vector_store.collection_model(c) for c in collections))
        for collection, model in zip(collections, models, strict=True):
            if model is not None and model != self.embedder.model_id:
                raise ConfigurationError(
                    f"Collection '{collection}' was built with embedding model {model!r}, "
                    f"but queries use {self.embedder.model_id!r}"
                )
