"""Boundary-aware overlapping chunker.

Cuts near a target size, preferring (in order) a paragraph break, a sentence
end, then any whitespace inside a tolerance window that ends at the target.
With no acceptable boundary in the window it hard-cuts at the target.
Consecutive chunks share ``overlap * chunk_size`` characters (snapped forward
to a word start), so the chunks cover the text with no gaps.
"""

from __future__ import annotations

import logging
import re

from finrag.chunking.base import BaseChunker
from finrag.chunking.schemas import Chunk, ChunkMetadata, content_hash
from finrag.chunking.tokens import count_tokens

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4000
OVERLAP = 0.1
BOUNDARY_TOLERANCE = 0.15

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"[.!?][\"')\]]*\s")
_WHITESPACE = re.compile(r"\s")


class OverlapChunker(BaseChunker):
    """Fixed-size chunker with overlap and boundary preference."""

    def __init__(
        self,
        chunk_size: int = CHUNK_SIZE,
        overlap: float = OVERLAP,
        boundary_tolerance: float = BOUNDARY_TOLERANCE,
    ):
        if chunk_size < 2:
            raise ValueError("chunk_size must be >= 2")
        if not 0.0 <= overlap < 0.5:
            raise ValueError("overlap must be in [0, 0.5)")
        if not 0.0 <= boundary_tolerance < 0.5:
            raise ValueError("boundary_tolerance must be in [0, 0.5)")

        self.chunk_size = chunk_size
        self.overlap = overlap
        self.boundary_tolerance = boundary_tolerance

    @property
    def overlap_chars(self) -> int:
        return int(self.chunk_size * self.overlap)

    def chunk_text(
        self,
        text: str,
        document_id: str,
        metadata: ChunkMetadata | None = None,
    ) -> list[Chunk]:
        meta = metadata or ChunkMetadata()
        if not text.strip():
            return []

        chunks: list[Chunk] = []
        for start, end in self.spans(text):
            piece = text[start:end].strip()
            if not piece:
                continue
            chunks.append(Chunk(
                document_id=document_id,
                seq=len(chunks),
                text=piece,
                start_char=start,
                end_char=end,
                content_hash=content_hash(piece),
                token_count=count_tokens(piece),
                metadata=meta,
            ))

        logger.info(
            "OverlapChunker produced %d chunks from %d chars (document=%s)",
            len(chunks), len(text), document_id,
        )
        return chunks

    def spans(self, text: str) -> list[tuple[int, int]]:
        """Compute ``(start, end)`` character spans covering ``text``."""
        n = len(text)
        spans: list[tuple[int, int]] = []
        start = 0

        while start < n:
            target = start + self.chunk_size
            end = n if target >= n else self._find_cut(text, start, target)
            spans.append((start, end))
            if end >= n:
                break

            next_start = end - self.overlap_chars
            if self.overlap_chars:
                next_start = self._snap_to_word(text, next_start, end)
            start = max(next_start, start + 1)

        return spans

    def _find_cut(self, text: str, start: int, target: int) -> int:
        window_start = max(start + 1, target - int(self.chunk_size * self.boundary_tolerance))
        window = text[window_start:target]

        for pattern in (_PARAGRAPH_BREAK, _SENTENCE_END, _WHITESPACE):
            last = None
            for last in pattern.finditer(window):
                pass
            if last is not None:
                return window_start + last.end()

        return target

    @staticmethod
    def _snap_to_word(text: str, pos: int, limit: int) -> int:
        """Move ``pos`` forward to the next word start, never past ``limit``."""
        if pos <= 0 or text[pos - 1].isspace():
            return pos
        match = _WHITESPACE.search(text, pos, limit)
        if match is None:
            return pos
        return match.end()
