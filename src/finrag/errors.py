"""Exception hierarchy shared by ingestion and the conversation path."""

from __future__ import annotations


class FinragError(Exception):
    """Base exception for all finrag errors."""


class ConfigurationError(FinragError):
    """Mis-wired components, e.g. query and index built with different embedding models.

    Fatal: never retried.
    """


class ProviderError(FinragError):
    """Transient failure calling an embedding or generation provider."""

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class NotFoundError(FinragError):
    """A conversation or document does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class ConsistencyError(FinragError):
    """A write would violate referential integrity or was only partially applied."""


class StorageError(FinragError):
    """Transient storage backend failure (connection dropped, serialization failure)."""


class PersistenceError(FinragError):
    """A generated answer could not be persisted after all retries.

    The answer is carried on the exception so the caller can still deliver it.
    """

    def __init__(self, message: str, answer: str, conversation_id: str):
        self.answer = answer
        self.conversation_id = conversation_id
        super().__init__(message)
