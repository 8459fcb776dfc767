"""Data models for conversations and assembled prompt context."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from finrag.retrieval.schemas import RetrievedPassage


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Conversation:
    """A dialogue session owned by one user."""

    id: str
    user_id: str
    summary: str
    tickers: tuple[str, ...]
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("Conversation requires a user_id")


@dataclass(frozen=True)
class ConversationMessage:
    """One immutable message; ``created_at`` is strictly increasing per conversation."""

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NewMessage:
    """A message to append; the store assigns id and timestamp."""

    role: MessageRole
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PromptContext:
    """Everything sent to the generation model for one turn.

    ``used`` counts the budgeted parts (query, history, passages) in the
    budget's unit. The system text is not budgeted; ``system_used`` reports
    its size in the same unit and ``system_messages`` how many stored
    system messages it carries.
    """

    system: str
    query: str
    history: list[ConversationMessage] = field(default_factory=list)
    passages: list[RetrievedPassage] = field(default_factory=list)
    used: int = 0
    budget: int = 0
    unit: str = "chars"
    system_messages: int = 0
    system_used: int = 0

    def is_empty(self) -> bool:
        """True when there is nothing beyond the base system prompt."""
        return not (self.query or self.history or self.passages or self.system_messages)

    def render_passages(self) -> str:
        """Numbered sources, the numbers the model cites as ``[n]``."""
        blocks = []
        for i, passage in enumerate(self.passages, 1):
            blocks.append(f"[{i}] ({passage.label()})\n{passage.text}")
        return "\n\n---\n\n".join(blocks)

    def to_messages(self) -> list[dict[str, str]]:
        """Chat-style messages: history in order, then sources and the query."""
        messages = [{"role": str(m.role), "content": m.content} for m in self.history]

        final = self.query
        if self.passages:
            final = f"Sources:\n\n{self.render_passages()}\n\nQuestion: {self.query}"
        messages.append({"role": "user", "content": final})
        return messages
