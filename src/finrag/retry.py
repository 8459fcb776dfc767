"""Bounded retry with exponential backoff.

One ``RetryPolicy`` object is applied around every provider call and around
the persistence step of the conversation engine.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from finrag.errors import ProviderError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Max attempts and backoff schedule for a retried operation."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 20.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[type[BaseException], ...] = (
        ProviderError,
        StorageError,
        ConnectionError,
        TimeoutError,
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based), jitter applied."""
        delay = min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay,
        )
        if self.jitter:
            delay = delay * (0.5 + random.random())
        return delay

    async def run(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        on_retry: Callable[[int, BaseException, float], None] | None = None,
        **kwargs,
    ) -> T:
        """Call ``func`` until it succeeds or attempts are exhausted.

        Non-retryable exceptions propagate immediately. After the last
        attempt the final exception is re-raised unchanged.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func(*args, **kwargs)
            except self.retryable_exceptions as exc:
                if attempt == self.max_attempts:
                    logger.warning("Retry exhausted after %d attempts: %s", attempt, exc)
                    raise

                delay = self.delay_for(attempt)
                logger.info(
                    "Attempt %d/%d failed: %s. Retrying in %.2fs",
                    attempt, self.max_attempts, exc, delay,
                )
                if on_retry:
                    on_retry(attempt, exc, delay)
                await asyncio.sleep(delay)

        raise RuntimeError("unreachable")  # pragma: no cover
