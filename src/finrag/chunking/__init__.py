"""Overlapping, boundary-aware document chunking."""

from finrag.chunking.base import BaseChunker
from finrag.chunking.overlap_chunker import OverlapChunker
from finrag.chunking.schemas import Chunk, ChunkMetadata, content_hash

__all__ = ["BaseChunker", "Chunk", "ChunkMetadata", "OverlapChunker", "content_hash"]
