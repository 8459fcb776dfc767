"""Data models for retrieval operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from finrag.chunking.schemas import ChunkMetadata
from finrag.vectorstore.schemas import SearchResult


@dataclass
class RetrievalConfig:
    """Configuration for the retriever.

    ``overfetch_factor`` controls how many raw candidates are requested per
    wanted passage, leaving room for overlap deduplication. Widening stops at
    ``max_fetch`` candidates per collection.
    """

    top_k: int = 5
    overfetch_factor: float = 3.0
    max_fetch: int = 200
    min_score: float = 0.0
    collections: dict[str, str] = field(
        default_factory=lambda: {
            "filing": "filings",
            "transcript": "transcripts",
            "other": "other",
        }
    )

    def __post_init__(self) -> None:
        if self.overfetch_factor < 1.0:
            raise ValueError("overfetch_factor must be >= 1.0")


@dataclass(frozen=True)
class RetrievedPassage:
    """A passage returned to the conversation layer, with its similarity score."""

    chunk_id: str
    document_id: str
    seq: int
    text: str
    score: float
    start_char: int
    end_char: int
    collection: str = ""
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)

    @classmethod
    def from_result(cls, result: SearchResult, collection: str) -> RetrievedPassage:
        r = result.record
        return cls(
            chunk_id=r.chunk_id,
            document_id=r.document_id,
            seq=r.seq,
            text=r.text,
            score=result.score,
            start_char=r.start_char,
            end_char=r.end_char,
            collection=collection,
            metadata=r.metadata,
        )

    @property
    def filing_date(self) -> date | None:
        return self.metadata.filing_date

    def overlaps(self, other: RetrievedPassage) -> bool:
        return (
            self.document_id == other.document_id
            and self.start_char < other.end_char
            and other.start_char < self.end_char
        )

    def label(self) -> str:
        """Short source label used in prompts, e.g. ``AAPL filing 2024-11-01``."""
        parts = [self.metadata.ticker or "unknown", str(self.metadata.report_type)]
        if self.filing_date:
            parts.append(self.filing_date.isoformat())
        return " ".join(parts)
