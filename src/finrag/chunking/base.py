"""Abstract base class for all chunkers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from finrag.chunking.schemas import Chunk, ChunkMetadata
from finrag.documents.schemas import Document


class BaseChunker(ABC):
    """Interface for document chunking strategies."""

    @abstractmethod
    def chunk_text(
        self,
        text: str,
        document_id: str,
        metadata: ChunkMetadata | None = None,
    ) -> list[Chunk]:
        """Split normalized text into chunks.

        Args:
            text: Full normalized document text.
            document_id: Owning document; becomes part of each chunk id.
            metadata: Metadata to propagate to each chunk.

        Returns:
            Ordered list of ``Chunk`` objects covering the text.
        """

    def chunk(self, document: Document) -> list[Chunk]:
        """Chunk a ``Document``, carrying its filter metadata onto each chunk."""
        meta = ChunkMetadata(
            ticker=document.ticker,
            filing_date=document.filing_date,
            report_type=document.report_type,
            source_url=document.source_url,
        )
        return self.chunk_text(document.text, document.id, meta)

    @classmethod
    def strategy_name(cls) -> str:
        """Return human-readable strategy name."""
        return cls.__name__
