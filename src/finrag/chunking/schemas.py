"""Data models for chunks."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date

from finrag.documents.schemas import ReportType


def content_hash(text: str) -> str:
    """SHA-256 of whitespace-collapsed text.

    Identical passages hash identically regardless of the document they
    came from, so they share one embedding cache entry.
    """
    normalized = " ".join(text.split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ChunkMetadata:
    """Metadata denormalized onto every chunk and vector record for filtering."""

    ticker: str | None = None
    filing_date: date | None = None
    report_type: ReportType = ReportType.OTHER
    source_url: str | None = None


@dataclass(frozen=True)
class Chunk:
    """A bounded span of one document's normalized text.

    ``start_char``/``end_char`` index into the normalized document text;
    consecutive chunks of the same document may overlap.
    """

    document_id: str
    seq: int
    text: str
    start_char: int
    end_char: int
    content_hash: str
    token_count: int = 0
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)

    @property
    def chunk_id(self) -> str:
        return f"{self.document_id}:{self.seq}"

    def overlaps(self, other: Chunk) -> bool:
        return (
            self.document_id == other.document_id
            and self.start_char < other.end_char
            and other.start_char < self.end_char
        )
