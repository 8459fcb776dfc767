"""Conversation memory — stores, message history and prompt context assembly."""

from finrag.memory.base import ConversationStore, default_system_prompt
from finrag.memory.context import BudgetMeter, ConversationMemory
from finrag.memory.in_memory_store import InMemoryConversationStore
from finrag.memory.schemas import (
    Conversation,
    ConversationMessage,
    MessageRole,
    NewMessage,
    PromptContext,
)

__all__ = [
    "BudgetMeter",
    "Conversation",
    "ConversationMemory",
    "ConversationMessage",
    "ConversationStore",
    "InMemoryConversationStore",
    "MessageRole",
    "NewMessage",
    "PromptContext",
    "default_system_prompt",
]
