"""Tests for the PostgreSQL helpers and conversation store that need no database."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime

import pytest

from finrag.config import MemorySettings
from finrag.errors import ConsistencyError
from finrag.memory import postgres_store
from finrag.memory.postgres_store import PostgresConversationStore
from finrag.memory.schemas import MessageRole
from finrag.pipeline.builder import conversation_store_from_settings
from finrag.postgres import load_json, parse_vector, vector_literal


class TestValueCodecs:
    def test_vector_literal(self):
        assert vector_literal([1, -0.5, 0.25]) == "[1.0,-0.5,0.25]"

    def test_parse_vector(self):
        assert parse_vector("[1,-0.5,0.25]") == [1.0, -0.5, 0.25]
        assert parse_vector(None) == []
        assert parse_vector("") == []

    def test_load_json(self):
        assert load_json('{"model": "fake"}') == {"model": "fake"}
        assert load_json({"a": 1}) == {"a": 1}
        assert load_json(None) == {}


class TestConversationSchema:
    def test_tables_and_constraints(self):
        ddl = "\n".join(postgres_store.SCHEMA_STATEMENTS)
        assert "CREATE TABLE IF NOT EXISTS conversations" in ddl
        assert "CREATE TABLE IF NOT EXISTS conversation_messages" in ddl
        assert "CHECK (user_id <> '')" in ddl
        assert "CHECK (updated_at >= created_at)" in ddl
        assert "ON DELETE CASCADE" in ddl
        assert "(conversation_id, created_at)" in ddl

    def test_row_mapping(self):
        now = datetime(2024, 11, 1, 12, 0, tzinfo=UTC)
        conversation = postgres_store._row_to_conversation({
            "id": "c1",
            "user_id": "analyst-1",
            "summary": "Q4 revenue",
            "tickers": ["AAPL"],
            "created_at": now,
            "updated_at": now,
        })
        assert conversation.tickers == ("AAPL",)

        message = postgres_store._row_to_message({
            "id": "m1",
            "conversation_id": "c1",
            "role": "assistant",
            "content": "Revenue grew [1].",
            "created_at": now,
            "metadata": '{"cited_chunks": ["aapl-10k:0"]}',
        })
        assert message.role == MessageRole.ASSISTANT
        assert message.metadata == {"cited_chunks": ["aapl-10k:0"]}

    def test_requires_dsn_or_pool(self):
        with pytest.raises(ValueError):
            PostgresConversationStore()

    def test_built_from_settings(self):
        store = conversation_store_from_settings(
            MemorySettings(backend="postgres", dsn="postgresql://localhost/finrag")
        )
        assert isinstance(store, PostgresConversationStore)


# ---------------------------------------------------------------------------
# Idempotent creation
# ---------------------------------------------------------------------------


class _ExistingRowConnection:
    """A connection where the conversation id is already taken."""

    def __init__(self, row: dict):
        self.row = row
        self.statements: list[str] = []

    async def fetchrow(self, sql: str, *args):
        self.statements.append(" ".join(sql.split()))
        if sql.lstrip().startswith("INSERT"):
            return None
        return self.row

    async def execute(self, sql: str, *args):
        self.statements.append(" ".join(sql.split()))

    @asynccontextmanager
    async def transaction(self):
        yield


class _Pool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


class TestCreateConversationWithId:
    @pytest.fixture
    def existing(self) -> dict:
        now = datetime(2024, 11, 1, 12, 0, tzinfo=UTC)
        return {
            "id": "c-1",
            "user_id": "analyst-1",
            "summary": "Q4 revenue",
            "tickers": ["AAPL"],
            "created_at": now,
            "updated_at": now,
        }

    async def test_conflict_returns_existing(self, existing: dict):
        conn = _ExistingRowConnection(existing)
        store = PostgresConversationStore(pool=_Pool(conn))

        conversation = await store.create_conversation("analyst-1", tickers=["AAPL"], conversation_id="c-1")

        assert conversation.id == "c-1"
        assert conversation.summary == "Q4 revenue"
        assert "ON CONFLICT (id) DO NOTHING" in conn.statements[0]
        # No second system message for the retried create
        assert not any("conversation_messages" in s for s in conn.statements)

    async def test_conflict_with_other_user(self, existing: dict):
        store = PostgresConversationStore(pool=_Pool(_ExistingRowConnection(existing)))
        with pytest.raises(ConsistencyError):
            await store.create_conversation("analyst-2", conversation_id="c-1")
