"""Conversation memory — history access and budgeted prompt assembly.

``assemble_context`` fills a fixed budget in priority order:

1. the most recent user message (truncated if it alone exceeds the budget)
2. the turn immediately before it (truncated to what remains)
3. retrieved passages in rank order, skipping any that do not fit
4. older history, most recent first, stopping at the first that does not fit

History is handed to the model in chronological order. The system text (base
prompt plus any stored system messages) is always sent whole and is reported
as ``system_used`` rather than charged against the budget.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Literal

from finrag.chunking.tokens import count_tokens, truncate_tokens
from finrag.errors import NotFoundError
from finrag.memory.base import ConversationStore
from finrag.memory.schemas import (
    Conversation,
    ConversationMessage,
    MessageRole,
    NewMessage,
    PromptContext,
)
from finrag.retrieval.schemas import RetrievedPassage

logger = logging.getLogger(__name__)

BudgetUnit = Literal["chars", "tokens"]

DEFAULT_SYSTEM_PROMPT = (
    "You are a financial research assistant. Answer using the numbered sources "
    "provided and cite them as [n]."
)


class BudgetMeter:
    """Measures and truncates text in characters or tokens."""

    def __init__(self, unit: BudgetUnit = "chars"):
        if unit not in ("chars", "tokens"):
            raise ValueError(f"Unknown budget unit '{unit}'")
        self.unit = unit

    def measure(self, text: str) -> int:
        return count_tokens(text) if self.unit == "tokens" else len(text)

    def truncate(self, text: str, limit: int) -> str:
        if limit <= 0:
            return ""
        if self.unit == "chars":
            return text[:limit]
        cut = truncate_tokens(text, limit)
        # Re-encoding a decoded prefix can occasionally count one token more.
        while cut and count_tokens(cut) > limit:
            limit -= 1
            cut = truncate_tokens(text, limit)
        return cut


class ConversationMemory:
    """Wraps a ``ConversationStore`` with context assembly."""

    def __init__(
        self,
        store: ConversationStore,
        budget: int = 12000,
        unit: BudgetUnit = "chars",
        history_window: int = 50,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ):
        if budget < 1:
            raise ValueError("budget must be positive")
        if history_window < 0:
            raise ValueError("history_window must not be negative")
        self.store = store
        self.budget = budget
        self.meter = BudgetMeter(unit)
        self.history_window = history_window
        self.system_prompt = system_prompt

    # ------------------------------------------------------------------
    # Store passthrough
    # ------------------------------------------------------------------

    async def create_conversation(
        self,
        user_id: str,
        summary: str = "",
        tickers: Sequence[str] = (),
        system_prompt: str | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        return await self.store.create_conversation(
            user_id, summary, tickers, system_prompt, conversation_id=conversation_id
        )

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("conversation", conversation_id)
        return conversation

    async def load_history(
        self,
        conversation_id: str,
        limit: int | None = None,
    ) -> list[ConversationMessage]:
        return await self.store.load_history(conversation_id, limit)

    async def append(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ConversationMessage:
        return await self.store.append(conversation_id, role, content, metadata)

    async def append_exchange(
        self,
        conversation_id: str,
        messages: Sequence[NewMessage],
    ) -> list[ConversationMessage]:
        return await self.store.append_exchange(conversation_id, messages)

    # ------------------------------------------------------------------
    # Context assembly
    # ------------------------------------------------------------------

    async def assemble_context(
        self,
        conversation_id: str | None,
        passages: Sequence[RetrievedPassage],
        budget: int | None = None,
        pending_query: str | None = None,
        system_prompt: str | None = None,
    ) -> PromptContext:
        """Build the bounded prompt context for the next model call.

        Args:
            conversation_id: Conversation whose history is used; ``None`` for
                a conversation that has not been stored yet.
            passages: Retrieved passages, best first.
            budget: Override of the configured budget.
            pending_query: The user message being answered, if it is not
                yet stored; otherwise the newest stored user message is used.
            system_prompt: Override of the configured system prompt.

        The returned ``used`` covers the query, history and passages only;
        the system text is measured into ``system_used`` but never trimmed,
        so a caller sizing the model's window should add the two.

        Raises:
            NotFoundError: Unknown conversation.
        """
        budget = self.budget if budget is None else budget
        history = await self.store.load_history(conversation_id) if conversation_id else []

        stored_system = [m.content for m in history if m.role == MessageRole.SYSTEM]
        system = "\n\n".join([self.system_prompt if system_prompt is None else system_prompt, *stored_system])
        dialogue = [m for m in history if m.role != MessageRole.SYSTEM]

        if pending_query is not None:
            query, prior = pending_query, dialogue
        else:
            latest = _last_index(dialogue, MessageRole.USER)
            if latest is None:
                query, prior = "", dialogue
            else:
                # Anything after the newest user message is its answer, not context for it.
                query, prior = dialogue[latest].content, dialogue[:latest]

        window = self.history_window
        prior = prior[-window:] if window > 0 else []

        meter = self.meter
        remaining = budget

        # 1. The message being answered.
        if meter.measure(query) > remaining:
            query = meter.truncate(query, remaining)
        remaining -= meter.measure(query)

        # 2. The turn right before it.
        turn = _preceding_turn(prior)
        selected: list[ConversationMessage] = []
        for message in reversed(turn):
            if remaining <= 0:
                break
            content = message.content
            if meter.measure(content) > remaining:
                content = meter.truncate(content, remaining)
            if not content:
                continue
            remaining -= meter.measure(content)
            selected.append(_with_content(message, content))

        # 3. Retrieved passages.
        chosen: list[RetrievedPassage] = []
        for passage in passages:
            cost = meter.measure(passage.text)
            if cost <= remaining:
                chosen.append(passage)
                remaining -= cost

        # 4. Older history, newest first.
        for message in reversed(prior[: len(prior) - len(turn)]):
            cost = meter.measure(message.content)
            if cost > remaining:
                break
            selected.append(message)
            remaining -= cost

        selected.sort(key=lambda m: m.created_at)
        context = PromptContext(
            system=system,
            query=query,
            history=selected,
            passages=chosen,
            used=budget - remaining,
            budget=budget,
            unit=meter.unit,
            system_messages=len(stored_system),
            system_used=meter.measure(system),
        )
        logger.info(
            "Assembled context for %s: %d/%d %s (%d history, %d passages)",
            conversation_id, context.used, budget, meter.unit, len(selected), len(chosen),
        )
        return context


def _last_index(messages: list[ConversationMessage], role: MessageRole) -> int | None:
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].role == role:
            return i
    return None


def _preceding_turn(prior: list[ConversationMessage]) -> list[ConversationMessage]:
    """The last user/assistant exchange, or the lone trailing message."""
    if not prior:
        return []
    last = prior[-1]
    if last.role == MessageRole.ASSISTANT and len(prior) > 1 and prior[-2].role == MessageRole.USER:
        return prior[-2:]
    return [last]


def _with_content(message: ConversationMessage, content: str) -> ConversationMessage:
    if content == message.content:
        return message
    return ConversationMessage(
        id=message.id,
        conversation_id=message.conversation_id,
        role=message.role,
        content=content,
        created_at=message.created_at,
        metadata={**message.metadata, "truncated": True},
    )
