"""Conversation engine — question → retrieve → assemble → generate → persist.

The caller's timeout covers the whole turn. If it fires before an answer is
generated, nothing has been written and ``TimeoutError`` propagates.
Persistence gets whatever time remains, under its own retry policy: the user
message and the reply are appended together or not at all, and if every
attempt fails or the deadline passes, the generated answer is handed back on
a ``PersistenceError`` rather than lost.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from finrag.errors import FinragError, PersistenceError
from finrag.llm.base import LLMProvider
from finrag.memory.context import ConversationMemory
from finrag.memory.schemas import MessageRole, NewMessage, PromptContext
from finrag.pipeline.citations import extract_citations
from finrag.pipeline.prompts import ANALYST_SYSTEM_PROMPT, build_system_prompt
from finrag.pipeline.schemas import ConversationTurn
from finrag.retrieval.retriever import Retriever
from finrag.retrieval.schemas import RetrievedPassage
from finrag.retry import RetryPolicy
from finrag.vectorstore.schemas import MetadataFilter

logger = logging.getLogger(__name__)

SUMMARY_CHARS = 80


@dataclass
class _Generated:
    conversation_id: str | None
    passages: list[RetrievedPassage]
    context: PromptContext
    answer: str


class ConversationEngine:
    """Orchestrates one conversational turn over the retrieval stack."""

    def __init__(
        self,
        retriever: Retriever,
        memory: ConversationMemory,
        llm: LLMProvider,
        generation_retry: RetryPolicy | None = None,
        persist_retry: RetryPolicy | None = None,
        timeout: float | None = 120.0,
        system_prompt: str = ANALYST_SYSTEM_PROMPT,
    ):
        self.retriever = retriever
        self.memory = memory
        self.llm = llm
        self.generation_retry = generation_retry or RetryPolicy()
        self.persist_retry = persist_retry or RetryPolicy(max_attempts=5)
        self.timeout = timeout
        self.system_prompt = system_prompt

    async def ask(
        self,
        query: str,
        conversation_id: str | None = None,
        user_id: str | None = None,
        filters: MetadataFilter | None = None,
        k: int | None = None,
        timeout: float | None = None,
    ) -> ConversationTurn:
        """Answer ``query`` within a conversation.

        Args:
            query: The user's question.
            conversation_id: Existing conversation; a new one is created when omitted.
            user_id: Owner of a new conversation (required when creating).
            filters: Metadata predicates for retrieval.
            k: Number of passages to retrieve.
            timeout: Seconds for the whole turn; defaults to the engine's.

        Raises:
            NotFoundError: ``conversation_id`` does not exist.
            ConfigurationError: Embedding model mismatch between query and index.
            ProviderError: Generation or embedding failed after retries.
            TimeoutError: The timeout fired before an answer was generated.
            PersistenceError: The answer was generated but could not be stored
                before the deadline.
        """
        if not query.strip():
            raise ValueError("query must not be empty")
        if conversation_id is None and not user_id:
            raise ValueError("user_id is required to start a conversation")

        timeout = self.timeout if timeout is None else timeout
        deadline = None if timeout is None else asyncio.get_running_loop().time() + timeout
        async with asyncio.timeout_at(deadline):
            generated = await self._generate(query, conversation_id, filters, k)

        return await self._persist(query, user_id, filters, generated, deadline)

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    async def _generate(
        self,
        query: str,
        conversation_id: str | None,
        filters: MetadataFilter | None,
        k: int | None,
    ) -> _Generated:
        # Step 1: Resolve the conversation
        if conversation_id is not None:
            await self.memory.get_conversation(conversation_id)
            tickers: tuple[str, ...] = ()
        else:
            tickers = (filters.ticker,) if filters and filters.ticker else ()

        # Step 2: Retrieve
        passages = await self.retriever.retrieve(query, filters=filters, k=k)

        # Step 3: Assemble bounded context
        system = build_system_prompt(
            report_type=filters.report_type if filters else None,
            tickers=tickers,
            base=self.system_prompt,
        )
        context = await self.memory.assemble_context(
            conversation_id, passages, pending_query=query, system_prompt=system
        )

        # Step 4: Generate
        answer = await self.generation_retry.run(self.llm.generate, context)
        return _Generated(conversation_id, passages, context, answer)

    async def _persist(
        self,
        query: str,
        user_id: str | None,
        filters: MetadataFilter | None,
        generated: _Generated,
        deadline: float | None,
    ) -> ConversationTurn:
        context = generated.context
        citations = extract_citations(generated.answer, context.passages)

        user_meta = {"filters": filters.to_dict()} if filters and not filters.is_empty() else {}
        assistant_meta = {
            "model": self.llm.model_id,
            "retrieved_chunks": [p.chunk_id for p in context.passages],
            "cited_chunks": [c.chunk_id for c in citations],
            "context_used": context.used,
            "context_budget": context.budget,
        }

        created = generated.conversation_id is None
        # Client-side id, so a retried create that already committed is a no-op
        conversation_id = str(uuid.uuid4()) if created else generated.conversation_id
        try:
            async with asyncio.timeout_at(deadline):
                if created:
                    await self.persist_retry.run(
                        self.memory.create_conversation,
                        user_id,
                        summary=_summarize(query),
                        tickers=(filters.ticker,) if filters and filters.ticker else (),
                        conversation_id=conversation_id,
                    )

                messages = await self.persist_retry.run(
                    self.memory.append_exchange,
                    conversation_id,
                    [
                        NewMessage(role=MessageRole.USER, content=query, metadata=user_meta),
                        NewMessage(role=MessageRole.ASSISTANT, content=generated.answer, metadata=assistant_meta),
                    ],
                )
        except (FinragError, TimeoutError, *self.persist_retry.retryable_exceptions) as exc:
            logger.error("Persisting turn for conversation %s failed: %s", conversation_id, exc)
            raise PersistenceError(
                f"Answer generated but not persisted: {exc}",
                answer=generated.answer,
                conversation_id=conversation_id,
            ) from exc

        logger.info(
            "Answered turn in %s: %d passages, %d citations",
            conversation_id, len(context.passages), len(citations),
        )
        return ConversationTurn(
            conversation_id=conversation_id,
            query=query,
            answer=generated.answer,
            model=self.llm.model_id,
            passages=list(context.passages),
            citations=citations,
            context_used=context.used,
            context_budget=context.budget,
            messages=messages,
            created_conversation=created,
        )


def _summarize(query: str) -> str:
    text = " ".join(query.split())
    if len(text) <= SUMMARY_CHARS:
        return text
    return text[: SUMMARY_CHARS - 3].rstrip() + "..."
