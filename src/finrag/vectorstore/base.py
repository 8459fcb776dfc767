"""Abstract base class for vector stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from finrag.errors import ConfigurationError
from finrag.vectorstore.schemas import MetadataFilter, SearchResult, VectorRecord


class VectorStore(ABC):
    """Interface for vector store backends.

    Records live in named collections. A record is identified within its
    collection by ``chunk_id``; inserting an existing id replaces the record.
    """

    async def insert(self, collection: str, record: VectorRecord) -> None:
        """Insert or replace a single record."""
        await self.insert_many(collection, [record])

    @abstractmethod
    async def insert_many(self, collection: str, records: list[VectorRecord]) -> int:
        """Insert or replace records.

        Args:
            collection: Logical namespace, e.g. ``filings``.
            records: Chunks with embeddings.

        Returns:
            Number of records written.
        """

    @abstractmethod
    async def delete_by_document(self, collection: str, document_id: str) -> int:
        """Delete every record of a document.

        Returns:
            Number of records deleted.
        """

    @abstractmethod
    async def replace_document(
        self,
        collection: str,
        document_id: str,
        records: list[VectorRecord],
    ) -> int:
        """Swap every record of a document for a new version.

        Readers observe each chunk either in its previous or in its new form.
        If the call fails, the previous version stays searchable.

        Returns:
            Number of records the document had before the swap.
        """

    @abstractmethod
    async def search(
        self,
        collection: str,
        query_vector: list[float],
        k: int = 10,
        filters: MetadataFilter | None = None,
    ) -> list[SearchResult]:
        """Search for similar records.

        Args:
            collection: Collection to search.
            query_vector: The query embedding.
            k: Maximum results to return.
            filters: Optional metadata predicates; every result satisfies all of them.

        Returns:
            ``min(k, matching records)`` results, score descending, ties by chunk id.
        """

    @abstractmethod
    async def count(self, collection: str) -> int:
        """Return the number of records in a collection."""

    @abstractmethod
    async def collection_model(self, collection: str) -> str | None:
        """Return the embedding model id the collection was built with, if any."""

    @abstractmethod
    async def clear(self, collection: str) -> None:
        """Delete all records of a collection."""

    async def close(self) -> None:
        """Release connections (optional)."""

    @classmethod
    def store_name(cls) -> str:
        """Return human-readable store name."""
        return cls.__name__


def check_models(collection: str, existing: str | None, records: Sequence[VectorRecord]) -> None:
    """Raise ``ConfigurationError`` if a write would mix embedding models in a collection."""
    models = {r.embedding_model for r in records}
    if existing:
        models.add(existing)
    if len(models) > 1:
        raise ConfigurationError(
            f"Collection '{collection}' would mix embedding models: {sorted(models)}"
        )


def check_document(document_id: str, records: Sequence[VectorRecord]) -> None:
    foreign = sorted({r.document_id for r in records} - {document_id})
    if foreign:
        raise ValueError(f"Records of {foreign} cannot replace document '{document_id}'")


def sort_results(results: list[SearchResult]) -> list[SearchResult]:
    """Score descending, chunk id ascending for ties."""
    return sorted(results, key=lambda r: (-r.score, r.record.chunk_id))
