"""Data models for the ingestion and conversation pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field

from finrag.memory.schemas import ConversationMessage
from finrag.retrieval.schemas import RetrievedPassage


@dataclass
class Citation:
    """A source cited as ``[n]`` in a generated answer."""

    index: int
    chunk_id: str
    document_id: str
    text: str
    ticker: str | None = None
    score: float = 0.0


@dataclass
class IngestResult:
    """Result of ingesting one document."""

    document_id: str
    collection: str
    chunks_created: int
    chunks_embedded: int
    chunks_stored: int
    records_replaced: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass
class ConversationTurn:
    """One answered question, as persisted."""

    conversation_id: str
    query: str
    answer: str
    model: str
    passages: list[RetrievedPassage] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    context_used: int = 0
    context_budget: int = 0
    messages: list[ConversationMessage] = field(default_factory=list)
    created_conversation: bool = False
