"""Abstract base class for LLM providers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from finrag.memory.schemas import PromptContext


class LLMProvider(ABC):
    """Interface for the external "generate reply" capability.

    Implementations wrap transport and API failures in ``ProviderError``.
    """

    model: str

    @abstractmethod
    async def generate(self, context: PromptContext) -> str:
        """Generate a reply for an assembled prompt context.

        Args:
            context: System text, history, passages and the pending query.

        Returns:
            Generated text response.
        """

    @property
    def model_id(self) -> str:
        return f"{self.provider_name()}:{self.model}"

    async def aclose(self) -> None:
        """Release network resources (optional)."""

    @classmethod
    def provider_name(cls) -> str:
        """Return human-readable provider name."""
        return cls.__name__


def alternating_turns(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    """Merge consecutive same-role messages and drop leading assistant turns.

    Chat APIs that require strict user/assistant alternation reject the raw
    history when a budget cut removed one side of an exchange.
    """
    merged: list[dict[str, str]] = []
    for message in messages:
        if not merged and message["role"] != "user":
            continue
        if merged and merged[-1]["role"] == message["role"]:
            merged[-1] = {
                "role": message["role"],
                "content": f"{merged[-1]['content']}\n\n{message['content']}",
            }
        else:
            merged.append(dict(message))
    return merged
