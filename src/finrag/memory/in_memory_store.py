"""Process-local conversation store, used in tests and single-process deployments."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from finrag.errors import ConsistencyError, NotFoundError
from finrag.memory.base import ConversationStore, default_system_prompt, owned_by
from finrag.memory.schemas import Conversation, ConversationMessage, MessageRole, NewMessage

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


class InMemoryConversationStore(ConversationStore):
    """Conversations in dicts, appends serialized by a per-conversation lock."""

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[ConversationMessage]] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_conversation(
        self,
        user_id: str,
        summary: str = "",
        tickers: Sequence[str] = (),
        system_prompt: str | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        existing = self._conversations.get(conversation_id) if conversation_id else None
        if existing is not None:
            return owned_by(existing, user_id)

        now = datetime.now(UTC)
        conversation = Conversation(
            id=conversation_id or str(uuid.uuid4()),
            user_id=user_id,
            summary=summary,
            tickers=tuple(tickers),
            created_at=now,
            updated_at=now,
        )

        if system_prompt is None and tickers:
            system_prompt = default_system_prompt(tickers)
        messages: list[ConversationMessage] = []
        if system_prompt:
            messages.append(ConversationMessage(
                id=str(uuid.uuid4()),
                conversation_id=conversation.id,
                role=MessageRole.SYSTEM,
                content=system_prompt,
                created_at=now,
            ))

        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = messages
        logger.info("Created conversation %s for user %s", conversation.id, user_id)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        owned = [c for c in self._conversations.values() if c.user_id == user_id]
        return sorted(owned, key=lambda c: c.updated_at, reverse=True)

    async def update_summary(self, conversation_id: str, summary: str) -> None:
        async with self._locks[conversation_id]:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise NotFoundError("conversation", conversation_id)
            self._conversations[conversation_id] = replace(conversation, summary=summary)

    async def delete_conversation(self, conversation_id: str) -> bool:
        async with self._locks[conversation_id]:
            existed = self._conversations.pop(conversation_id, None) is not None
            self._messages.pop(conversation_id, None)
        self._locks.pop(conversation_id, None)
        return existed

    async def load_history(
        self,
        conversation_id: str,
        limit: int | None = None,
    ) -> list[ConversationMessage]:
        messages = self._messages.get(conversation_id)
        if messages is None:
            raise NotFoundError("conversation", conversation_id)
        if limit is not None:
            return list(messages[-limit:]) if limit > 0 else []
        return list(messages)

    async def append_exchange(
        self,
        conversation_id: str,
        messages: Sequence[NewMessage],
    ) -> list[ConversationMessage]:
        async with self._locks[conversation_id]:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise ConsistencyError(
                    f"Cannot append to conversation '{conversation_id}': it does not exist"
                )

            last = conversation.updated_at
            written: list[ConversationMessage] = []
            for message in messages:
                last = max(datetime.now(UTC), last + _TICK)
                written.append(ConversationMessage(
                    id=str(uuid.uuid4()),
                    conversation_id=conversation_id,
                    role=message.role,
                    content=message.content,
                    created_at=last,
                    metadata=dict(message.metadata),
                ))

            self._messages[conversation_id].extend(written)
            self._conversations[conversation_id] = replace(conversation, updated_at=last)
        return written
