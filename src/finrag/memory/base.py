"""Abstract base class for conversation stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from finrag.errors import ConsistencyError
from finrag.memory.schemas import Conversation, ConversationMessage, MessageRole, NewMessage


def default_system_prompt(tickers: Sequence[str]) -> str:
    return (
        f"This is a conversation about the following companies: {', '.join(tickers)}. "
        "Focus on providing accurate financial analysis and insights."
    )


def owned_by(conversation: Conversation, user_id: str) -> Conversation:
    if conversation.user_id != user_id:
        raise ConsistencyError(f"Conversation '{conversation.id}' belongs to another user")
    return conversation


class ConversationStore(ABC):
    """Durable conversation and message storage.

    Appends to one conversation are serialized; each message gets a
    ``created_at`` strictly greater than the previous one and the
    conversation's ``updated_at`` moves to the newest message's timestamp in
    the same atomic step.
    """

    @abstractmethod
    async def create_conversation(
        self,
        user_id: str,
        summary: str = "",
        tickers: Sequence[str] = (),
        system_prompt: str | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        """Create a conversation.

        When ``tickers`` or ``system_prompt`` is given, an initial system
        message is stored with it (``default_system_prompt`` if only tickers).

        ``conversation_id`` makes the call idempotent: if that id already
        exists for the same user, the existing conversation is returned
        unchanged. An id owned by another user raises ``ConsistencyError``.
        """

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Return the conversation, or ``None`` if it does not exist."""

    @abstractmethod
    async def list_conversations(self, user_id: str) -> list[Conversation]:
        """Return a user's conversations, most recently updated first."""

    @abstractmethod
    async def update_summary(self, conversation_id: str, summary: str) -> None:
        """Replace the summary. Raises ``NotFoundError`` for unknown ids."""

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages. Returns whether it existed."""

    @abstractmethod
    async def load_history(
        self,
        conversation_id: str,
        limit: int | None = None,
    ) -> list[ConversationMessage]:
        """Return messages in chronological order.

        Args:
            limit: Keep only the most recent ``limit`` messages.

        Raises:
            NotFoundError: The conversation does not exist.
        """

    @abstractmethod
    async def append_exchange(
        self,
        conversation_id: str,
        messages: Sequence[NewMessage],
    ) -> list[ConversationMessage]:
        """Append several messages atomically, all or none.

        Raises:
            ConsistencyError: The conversation does not exist.
            StorageError: Transient backend failure; nothing was written.
        """

    async def append(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ConversationMessage:
        """Append one message."""
        written = await self.append_exchange(
            conversation_id, [NewMessage(role=role, content=content, metadata=metadata or {})]
        )
        return written[0]

    async def close(self) -> None:
        """Release resources (optional)."""

    @classmethod
    def store_name(cls) -> str:
        return cls.__name__
