"""PostgreSQL conversation store over asyncpg.

Appends lock the conversation row (``SELECT ... FOR UPDATE``), so concurrent
writers to one conversation queue up while other conversations proceed.
Message timestamps come from the server clock, bumped by one microsecond when
needed to stay strictly increasing.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Sequence
from typing import Any

import asyncpg

from finrag.errors import ConsistencyError, NotFoundError, StorageError
from finrag.memory.base import ConversationStore, default_system_prompt, owned_by
from finrag.memory.schemas import Conversation, ConversationMessage, MessageRole, NewMessage
from finrag.postgres import TRANSIENT_ERRORS, create_pool, load_json

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL CHECK (user_id <> ''),
        summary TEXT NOT NULL DEFAULT '',
        tickers TEXT[] NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        CHECK (updated_at >= created_at)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_messages (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
        role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
        content TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conversation_messages_conversation "
    "ON conversation_messages (conversation_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_user "
    "ON conversations (user_id, updated_at DESC)",
]

_NEXT_TIMESTAMP = "SELECT greatest(clock_timestamp(), $1::timestamptz + interval '1 microsecond')"


class PostgresConversationStore(ConversationStore):
    """Conversation store on PostgreSQL."""

    def __init__(self, dsn: str | None = None, pool: asyncpg.Pool | None = None):
        if dsn is None and pool is None:
            raise ValueError("PostgresConversationStore needs a dsn or a pool")
        self._dsn = dsn
        self._pool = pool

    async def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await create_pool(self._dsn)
        return self._pool

    async def ensure_schema(self) -> None:
        pool = await self.pool()
        async with pool.acquire() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
        logger.info("Ensured conversation schema")

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(
        self,
        user_id: str,
        summary: str = "",
        tickers: Sequence[str] = (),
        system_prompt: str | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        if not user_id:
            raise ValueError("Conversation requires a user_id")
        if system_prompt is None and tickers:
            system_prompt = default_system_prompt(tickers)

        conversation_id = conversation_id or str(uuid.uuid4())
        pool = await self.pool()
        try:
            async with pool.acquire() as conn, conn.transaction():
                row = await conn.fetchrow(
                    """
                    INSERT INTO conversations (id, user_id, summary, tickers, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, clock_timestamp(), clock_timestamp())
                    ON CONFLICT (id) DO NOTHING
                    RETURNING *
                    """,
                    conversation_id,
                    user_id,
                    summary,
                    list(tickers),
                )
                if row is None:
                    existing = await conn.fetchrow(
                        "SELECT * FROM conversations WHERE id = $1", conversation_id
                    )
                    return owned_by(_row_to_conversation(existing), user_id)
                if system_prompt:
                    await self._insert_messages(
                        conn, conversation_id, row["updated_at"],
                        [NewMessage(role=MessageRole.SYSTEM, content=system_prompt)],
                    )
                    row = await conn.fetchrow(
                        "SELECT * FROM conversations WHERE id = $1", conversation_id
                    )
        except TRANSIENT_ERRORS as exc:
            raise StorageError(f"Creating conversation failed: {exc}") from exc

        logger.info("Created conversation %s for user %s", conversation_id, user_id)
        return _row_to_conversation(row)

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        pool = await self.pool()
        row = await pool.fetchrow("SELECT * FROM conversations WHERE id = $1", conversation_id)
        return _row_to_conversation(row) if row else None

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        pool = await self.pool()
        rows = await pool.fetch(
            "SELECT * FROM conversations WHERE user_id = $1 ORDER BY updated_at DESC",
            user_id,
        )
        return [_row_to_conversation(r) for r in rows]

    async def update_summary(self, conversation_id: str, summary: str) -> None:
        pool = await self.pool()
        status = await pool.execute(
            "UPDATE conversations SET summary = $1 WHERE id = $2", summary, conversation_id
        )
        if status.endswith(" 0"):
            raise NotFoundError("conversation", conversation_id)

    async def delete_conversation(self, conversation_id: str) -> bool:
        pool = await self.pool()
        status = await pool.execute("DELETE FROM conversations WHERE id = $1", conversation_id)
        return not status.endswith(" 0")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def load_history(
        self,
        conversation_id: str,
        limit: int | None = None,
    ) -> list[ConversationMessage]:
        pool = await self.pool()
        async with pool.acquire() as conn:
            exists = await conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM conversations WHERE id = $1)", conversation_id
            )
            if not exists:
                raise NotFoundError("conversation", conversation_id)

            if limit is None:
                rows = await conn.fetch(
                    "SELECT * FROM conversation_messages WHERE conversation_id = $1 "
                    "ORDER BY created_at ASC",
                    conversation_id,
                )
            else:
                rows = await conn.fetch(
                    "SELECT * FROM ("
                    "  SELECT * FROM conversation_messages WHERE conversation_id = $1 "
                    "  ORDER BY created_at DESC LIMIT $2"
                    ") recent ORDER BY created_at ASC",
                    conversation_id,
                    max(limit, 0),
                )
        return [_row_to_message(r) for r in rows]

    async def append_exchange(
        self,
        conversation_id: str,
        messages: Sequence[NewMessage],
    ) -> list[ConversationMessage]:
        pool = await self.pool()
        try:
            async with pool.acquire() as conn, conn.transaction():
                updated_at = await conn.fetchval(
                    "SELECT updated_at FROM conversations WHERE id = $1 FOR UPDATE",
                    conversation_id,
                )
                if updated_at is None:
                    raise ConsistencyError(
                        f"Cannot append to conversation '{conversation_id}': it does not exist"
                    )
                return await self._insert_messages(conn, conversation_id, updated_at, messages)
        except asyncpg.exceptions.ForeignKeyViolationError as exc:
            raise ConsistencyError(
                f"Conversation '{conversation_id}' was deleted during append"
            ) from exc
        except TRANSIENT_ERRORS as exc:
            raise StorageError(f"Appending to conversation '{conversation_id}' failed: {exc}") from exc

    @staticmethod
    async def _insert_messages(
        conn: asyncpg.Connection,
        conversation_id: str,
        last: Any,
        messages: Sequence[NewMessage],
    ) -> list[ConversationMessage]:
        written: list[ConversationMessage] = []
        for message in messages:
            last = await conn.fetchval(_NEXT_TIMESTAMP, last)
            message_id = str(uuid.uuid4())
            await conn.execute(
                """
                INSERT INTO conversation_messages (id, conversation_id, role, content, created_at, metadata)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                """,
                message_id,
                conversation_id,
                str(message.role),
                message.content,
                last,
                json.dumps(message.metadata),
            )
            written.append(ConversationMessage(
                id=message_id,
                conversation_id=conversation_id,
                role=message.role,
                content=message.content,
                created_at=last,
                metadata=dict(message.metadata),
            ))

        if written:
            await conn.execute(
                "UPDATE conversations SET updated_at = $1 WHERE id = $2", last, conversation_id
            )
        return written


def _row_to_conversation(row: Any) -> Conversation:
    return Conversation(
        id=row["id"],
        user_id=row["user_id"],
        summary=row["summary"],
        tickers=tuple(row["tickers"] or ()),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: Any) -> ConversationMessage:
    return ConversationMessage(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=MessageRole(row["role"]),
        content=row["content"],
        created_at=row["created_at"],
        metadata=load_json(row["metadata"]),
    )
