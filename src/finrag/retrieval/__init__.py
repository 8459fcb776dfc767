"""Retrieval — filtered similarity search with overlap deduplication."""

from finrag.retrieval.retriever import Retriever, deduplicate, rank_key
from finrag.retrieval.schemas import RetrievalConfig, RetrievedPassage

__all__ = ["RetrievalConfig", "RetrievedPassage", "Retriever", "deduplicate", "rank_key"]
