"""PostgreSQL connection pools shared by the pgvector store and the conversation store."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

import asyncpg

logger = logging.getLogger(__name__)

# Failures worth retrying: dropped connections, serialization conflicts, deadlocks.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
    OSError,
)

# One pool per DSN, reused across stores.
_pools: dict[str, asyncpg.Pool] = {}


async def create_pool(
    dsn: str,
    min_size: int = 1,
    max_size: int = 10,
    command_timeout: float = 60.0,
) -> asyncpg.Pool:
    """Create (or reuse) a connection pool for ``dsn``."""
    pool = _pools.get(dsn)
    if pool is not None:
        return pool

    pool = await asyncpg.create_pool(
        dsn,
        min_size=min_size,
        max_size=max_size,
        command_timeout=command_timeout,
    )
    _pools[dsn] = pool
    logger.info("Opened PostgreSQL pool (min=%d, max=%d)", min_size, max_size)
    return pool


async def close_pools() -> None:
    """Close every pool opened by :func:`create_pool`."""
    while _pools:
        _, pool = _pools.popitem()
        await pool.close()


def vector_literal(vector: Sequence[float]) -> str:
    """Text form accepted by ``$n::vector``."""
    return "[" + ",".join(str(float(x)) for x in vector) + "]"


def parse_vector(value: str | None) -> list[float]:
    """Parse the text form of a pgvector value (``embedding::text``)."""
    if not value:
        return []
    return [float(x) for x in json.loads(value)]


def load_json(value: str | dict | None) -> dict:
    """asyncpg returns ``jsonb`` as text unless a codec is registered."""
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)
