"""Vector store backends — FAISS (local), Qdrant and PostgreSQL/pgvector."""

from finrag.vectorstore.base import VectorStore
from finrag.vectorstore.factory import available_stores, get_vector_store, store_from_settings
from finrag.vectorstore.schemas import MetadataFilter, SearchResult, VectorRecord

__all__ = [
    "MetadataFilter",
    "SearchResult",
    "VectorRecord",
    "VectorStore",
    "available_stores",
    "get_vector_store",
    "store_from_settings",
]
