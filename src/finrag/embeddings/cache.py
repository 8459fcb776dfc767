"""Embedding cache — content hash + model id → vector.

Embedding calls dominate ingestion cost, so vectors are kept in a durable
local store that outlives the process and is independent of the primary
relational database. Entries are immutable: a key is inserted once
(insert-or-ignore) and only ever removed by capacity eviction.

Eviction is least-recently-used and skips keys pinned by an in-flight
batch (``async with cache.pinned(hashes, model_id)``).
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from collections import Counter, OrderedDict
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str]  # (content_hash, model_id)

_SQLITE_IN_LIMIT = 500


class EmbeddingCache(ABC):
    """Interface for embedding caches."""

    def __init__(self, max_entries: int | None = None):
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._pins: Counter[CacheKey] = Counter()

    async def get(self, content_hash: str, model_id: str) -> list[float] | None:
        found = await self.get_many([content_hash], model_id)
        return found.get(content_hash)

    async def put(self, content_hash: str, model_id: str, vector: Sequence[float]) -> None:
        await self.put_many({content_hash: vector}, model_id)

    @abstractmethod
    async def get_many(self, content_hashes: Sequence[str], model_id: str) -> dict[str, list[float]]:
        """Return the cached vectors for the hashes that are present."""

    @abstractmethod
    async def put_many(self, entries: dict[str, Sequence[float]], model_id: str) -> int:
        """Insert vectors, ignoring keys already present.

        Returns:
            Number of new entries written.
        """

    @abstractmethod
    async def count(self) -> int:
        """Return the number of cached entries."""

    async def close(self) -> None:
        """Release resources (optional)."""

    @asynccontextmanager
    async def pinned(self, content_hashes: Iterable[str], model_id: str) -> AsyncIterator[None]:
        """Protect keys from eviction for the duration of the block."""
        keys = [(h, model_id) for h in set(content_hashes)]
        self._pins.update(keys)
        try:
            yield
        finally:
            self._pins.subtract(keys)
            self._pins += Counter()  # drop zero counts

    def is_pinned(self, key: CacheKey) -> bool:
        return self._pins[key] > 0


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryEmbeddingCache(EmbeddingCache):
    """Process-local cache, used in tests and as a non-durable fallback."""

    def __init__(self, max_entries: int | None = None):
        super().__init__(max_entries)
        self._entries: OrderedDict[CacheKey, tuple[float, ...]] = OrderedDict()

    async def get_many(self, content_hashes: Sequence[str], model_id: str) -> dict[str, list[float]]:
        found: dict[str, list[float]] = {}
        for h in content_hashes:
            key = (h, model_id)
            vec = self._entries.get(key)
            if vec is not None:
                self._entries.move_to_end(key)
                found[h] = list(vec)
        return found

    async def put_many(self, entries: dict[str, Sequence[float]], model_id: str) -> int:
        written = 0
        for h, vec in entries.items():
            key = (h, model_id)
            if key in self._entries:
                continue
            self._entries[key] = tuple(float(x) for x in vec)
            written += 1
        self._evict()
        return written

    async def count(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        if self.max_entries is None:
            return
        excess = len(self._entries) - self.max_entries
        if excess <= 0:
            return
        victims = [k for k in self._entries if not self.is_pinned(k)][:excess]
        for key in victims:
            del self._entries[key]
        if victims:
            logger.debug("Evicted %d embedding cache entries", len(victims))


# ---------------------------------------------------------------------------
# SQLite (durable)
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS embedding_cache (
    content_hash TEXT NOT NULL,
    model_id TEXT NOT NULL,
    dimension INTEGER NOT NULL,
    vector BLOB NOT NULL,
    created_at REAL NOT NULL,
    last_used REAL NOT NULL,
    PRIMARY KEY (content_hash, model_id)
)
"""


def _to_bytes(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _from_bytes(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype=np.float32).tolist()


class SQLiteEmbeddingCache(EmbeddingCache):
    """Durable cache in a local SQLite file.

    SQLite calls block, so each operation runs in a worker thread; a lock
    serializes access to the shared connection.
    """

    def __init__(self, path: str | Path, max_entries: int | None = None):
        super().__init__(max_entries)
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(_SCHEMA)
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_embedding_cache_last_used "
                "ON embedding_cache(last_used)"
            )
            self._conn.commit()

    async def get_many(self, content_hashes: Sequence[str], model_id: str) -> dict[str, list[float]]:
        if not content_hashes:
            return {}
        return await asyncio.to_thread(self._get_many_sync, list(content_hashes), model_id)

    async def put_many(self, entries: dict[str, Sequence[float]], model_id: str) -> int:
        if not entries:
            return 0
        rows = [(h, model_id, len(vec), _to_bytes(vec)) for h, vec in entries.items()]
        pins = frozenset(k for k, c in self._pins.items() if c > 0)
        return await asyncio.to_thread(self._put_many_sync, rows, pins)

    async def count(self) -> int:
        return await asyncio.to_thread(self._count_sync)

    async def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Blocking helpers
    # ------------------------------------------------------------------

    def _get_many_sync(self, hashes: list[str], model_id: str) -> dict[str, list[float]]:
        found: dict[str, list[float]] = {}
        with self._lock:
            for i in range(0, len(hashes), _SQLITE_IN_LIMIT):
                batch = hashes[i : i + _SQLITE_IN_LIMIT]
                placeholders = ",".join("?" * len(batch))
                rows = self._conn.execute(
                    f"SELECT content_hash, vector FROM embedding_cache "
                    f"WHERE model_id = ? AND content_hash IN ({placeholders})",
                    [model_id, *batch],
                ).fetchall()
                for h, blob in rows:
                    found[h] = _from_bytes(blob)

            if found and self.max_entries is not None:
                now = time.time()
                self._conn.executemany(
                    "UPDATE embedding_cache SET last_used = ? "
                    "WHERE content_hash = ? AND model_id = ?",
                    [(now, h, model_id) for h in found],
                )
                self._conn.commit()
        return found

    def _put_many_sync(self, rows: list[tuple[str, str, int, bytes]], pins: frozenset[CacheKey]) -> int:
        now = time.time()
        with self._lock:
            before = self._conn.total_changes
            self._conn.executemany(
                "INSERT OR IGNORE INTO embedding_cache "
                "(content_hash, model_id, dimension, vector, created_at, last_used) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [(h, m, d, blob, now, now) for h, m, d, blob in rows],
            )
            written = self._conn.total_changes - before
            self._evict_locked(pins)
            self._conn.commit()
        return written

    def _count_sync(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]

    def _evict_locked(self, pins: frozenset[CacheKey]) -> None:
        if self.max_entries is None:
            return
        total = self._conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]
        excess = total - self.max_entries
        if excess <= 0:
            return

        pinned = len(pins)
        candidates = self._conn.execute(
            "SELECT content_hash, model_id FROM embedding_cache "
            "ORDER BY last_used ASC, created_at ASC LIMIT ?",
            (excess + pinned,),
        ).fetchall()
        victims = [(h, m) for h, m in candidates if (h, m) not in pins][:excess]
        self._conn.executemany(
            "DELETE FROM embedding_cache WHERE content_hash = ? AND model_id = ?",
            victims,
        )
        if victims:
            logger.debug("Evicted %d embedding cache entries", len(victims))
