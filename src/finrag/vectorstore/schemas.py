"""Data models for vector store operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from finrag.chunking.schemas import Chunk, ChunkMetadata
from finrag.documents.schemas import ReportType


@dataclass(frozen=True)
class VectorRecord:
    """A chunk with its embedding, ready for storage.

    ``embedding_model`` records which model produced the vector; vectors from
    different models are not comparable.
    """

    chunk_id: str
    document_id: str
    seq: int
    text: str
    embedding: list[float]
    start_char: int = 0
    end_char: int = 0
    content_hash: str = ""
    embedding_model: str = ""
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)

    @classmethod
    def from_chunk(cls, chunk: Chunk, embedding: list[float], embedding_model: str) -> VectorRecord:
        return cls(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            seq=chunk.seq,
            text=chunk.text,
            embedding=list(embedding),
            start_char=chunk.start_char,
            end_char=chunk.end_char,
            content_hash=chunk.content_hash,
            embedding_model=embedding_model,
            metadata=chunk.metadata,
        )


@dataclass(frozen=True)
class SearchResult:
    """A single search result: the stored record and its cosine similarity."""

    record: VectorRecord
    score: float

    @property
    def chunk_id(self) -> str:
        return self.record.chunk_id


@dataclass
class MetadataFilter:
    """Filter search results by metadata fields.

    All specified fields must match (AND logic). ``date_from`` and ``date_to``
    are inclusive; records without a filing date never match a date range.
    """

    ticker: str | None = None
    report_type: ReportType | None = None
    date_from: date | None = None
    date_to: date | None = None
    document_id: str | None = None

    def is_empty(self) -> bool:
        return not self.to_dict()

    def matches(self, meta: ChunkMetadata, document_id: str | None = None) -> bool:
        """Check if a record's metadata matches this filter."""
        if self.ticker and meta.ticker != self.ticker:
            return False
        if self.report_type and meta.report_type != self.report_type:
            return False
        if self.document_id and document_id != self.document_id:
            return False
        if self.date_from or self.date_to:
            if meta.filing_date is None:
                return False
            if self.date_from and meta.filing_date < self.date_from:
                return False
            if self.date_to and meta.filing_date > self.date_to:
                return False
        return True

    def matches_record(self, record: VectorRecord) -> bool:
        return self.matches(record.metadata, record.document_id)

    def to_dict(self) -> dict[str, Any]:
        """Set fields only, dates as ISO strings."""
        d: dict[str, Any] = {}
        if self.ticker:
            d["ticker"] = self.ticker
        if self.report_type:
            d["report_type"] = str(self.report_type)
        if self.date_from:
            d["date_from"] = self.date_from.isoformat()
        if self.date_to:
            d["date_to"] = self.date_to.isoformat()
        if self.document_id:
            d["document_id"] = self.document_id
        return d
