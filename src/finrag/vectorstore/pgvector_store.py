"""PostgreSQL + pgvector store.

All collections share one table keyed by ``(collection, chunk_id)``. Filters
become ``WHERE`` clauses evaluated alongside the ``<=>`` (cosine distance)
ordering. Approximate indexes drop rows that fail the filter after the index
scan, so filtered searches disable index scans for the statement and get an
exact ranking over the matching rows. Unfiltered searches widen the HNSW beam
to ``k``.

Writers of a collection take a transaction-scoped advisory lock, so the
embedding model check and the write cannot interleave with another writer.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from finrag.chunking.schemas import ChunkMetadata
from finrag.documents.schemas import ReportType
from finrag.errors import StorageError
from finrag.postgres import TRANSIENT_ERRORS, create_pool, parse_vector, vector_literal
from finrag.vectorstore.base import VectorStore, check_document, check_models, sort_results
from finrag.vectorstore.schemas import MetadataFilter, SearchResult, VectorRecord

logger = logging.getLogger(__name__)

_COLUMNS = (
    "chunk_id, document_id, seq, text, content_hash, start_char, end_char, "
    "embedding_model, ticker, report_type, filing_date, source_url"
)

# pgvector defaults and upper bound for hnsw.ef_search
_EF_SEARCH_DEFAULT = 40
_EF_SEARCH_MAX = 1000


def schema_statements(table: str, dimension: int) -> list[str]:
    return [
        "CREATE EXTENSION IF NOT EXISTS vector",
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            collection TEXT NOT NULL,
            chunk_id TEXT NOT NULL,
            document_id TEXT NOT NULL,
            seq INTEGER NOT NULL,
            text TEXT NOT NULL,
            content_hash TEXT NOT NULL,
            start_char INTEGER NOT NULL,
            end_char INTEGER NOT NULL,
            embedding_model TEXT NOT NULL,
            ticker TEXT,
            report_type TEXT NOT NULL,
            filing_date DATE,
            source_url TEXT,
            embedding vector({dimension}) NOT NULL,
            PRIMARY KEY (collection, chunk_id)
        )
        """,
        f"CREATE INDEX IF NOT EXISTS idx_{table}_document ON {table} (collection, document_id)",
        f"CREATE INDEX IF NOT EXISTS idx_{table}_filters "
        f"ON {table} (collection, ticker, report_type, filing_date)",
        f"CREATE INDEX IF NOT EXISTS idx_{table}_embedding "
        f"ON {table} USING hnsw (embedding vector_cosine_ops)",
    ]


def build_filter_clause(
    filters: MetadataFilter | None,
    first_param: int,
) -> tuple[str, list[Any]]:
    """Translate a filter into ``AND ...`` SQL with positional parameters.

    Returns:
        ``(sql, args)`` where placeholders start at ``$first_param``.
    """
    if filters is None:
        return "", []

    clauses: list[str] = []
    args: list[Any] = []

    def add(sql: str, value: Any) -> None:
        args.append(value)
        clauses.append(sql.format(f"${first_param + len(args) - 1}"))

    if filters.ticker:
        add("ticker = {}", filters.ticker)
    if filters.report_type:
        add("report_type = {}", str(filters.report_type))
    if filters.document_id:
        add("document_id = {}", filters.document_id)
    if filters.date_from:
        add("filing_date >= {}", filters.date_from)
    if filters.date_to:
        add("filing_date <= {}", filters.date_to)

    return "".join(f" AND {c}" for c in clauses), args


def build_search_query(
    table: str,
    collection: str,
    query_vector: list[float],
    k: int,
    filters: MetadataFilter | None = None,
) -> tuple[str, list[Any]]:
    """Build the nearest-neighbour query. ``$1`` is the query vector, ``$2`` the collection."""
    where, filter_args = build_filter_clause(filters, first_param=3)
    limit_param = 3 + len(filter_args)
    sql = (
        f"SELECT {_COLUMNS}, embedding::text AS embedding_text, "
        f"1 - (embedding <=> $1::vector) AS score "
        f"FROM {table} "
        f"WHERE collection = $2{where} "
        f"ORDER BY embedding <=> $1::vector, chunk_id "
        f"LIMIT ${limit_param}"
    )
    return sql, [vector_literal(query_vector), collection, *filter_args, k]


def search_settings(k: int, filtered: bool) -> list[str]:
    """Session settings for one search transaction.

    HNSW returns at most ``hnsw.ef_search`` candidates, so the beam is widened
    to ``k``. Past the extension's ceiling, and for filtered searches, index
    scans are disabled for an exact ranking.
    """
    if filtered or k > _EF_SEARCH_MAX:
        return ["SET LOCAL enable_indexscan = off"]
    return [f"SET LOCAL hnsw.ef_search = {max(k, _EF_SEARCH_DEFAULT)}"]


class PgVectorStore(VectorStore):
    """Vector store on PostgreSQL with the pgvector extension."""

    def __init__(
        self,
        dsn: str | None = None,
        dimension: int = 768,
        table: str = "vector_records",
        pool: asyncpg.Pool | None = None,
    ):
        if dsn is None and pool is None:
            raise ValueError("PgVectorStore needs a dsn or a pool")
        self._dsn = dsn
        self._pool = pool
        self._dimension = dimension
        self._table = table

    async def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await create_pool(self._dsn)
        return self._pool

    async def ensure_schema(self) -> None:
        """Create the extension, table and indexes if missing."""
        pool = await self.pool()
        async with pool.acquire() as conn:
            for statement in schema_statements(self._table, self._dimension):
                await conn.execute(statement)
        logger.info("Ensured pgvector schema for table %s (dim=%d)", self._table, self._dimension)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def insert_many(self, collection: str, records: list[VectorRecord]) -> int:
        if not records:
            return 0

        pool = await self.pool()
        try:
            async with pool.acquire() as conn, conn.transaction():
                await self._lock_collection(conn, collection)
                check_models(collection, await self._model(conn, collection), records)
                await self._upsert(conn, collection, records)
        except TRANSIENT_ERRORS as exc:
            raise StorageError(f"pgvector insert into '{collection}' failed: {exc}") from exc

        logger.info("PgVectorStore[%s] upserted %d records", collection, len(records))
        return len(records)

    async def delete_by_document(self, collection: str, document_id: str) -> int:
        pool = await self.pool()
        status = await pool.execute(
            f"DELETE FROM {self._table} WHERE collection = $1 AND document_id = $2",
            collection,
            document_id,
        )
        deleted = int(status.split()[-1])
        logger.info("PgVectorStore[%s] deleted %d records of %s", collection, deleted, document_id)
        return deleted

    async def replace_document(
        self,
        collection: str,
        document_id: str,
        records: list[VectorRecord],
    ) -> int:
        check_document(document_id, records)

        pool = await self.pool()
        try:
            async with pool.acquire() as conn, conn.transaction():
                await self._lock_collection(conn, collection)
                check_models(collection, await self._model(conn, collection), records)
                status = await conn.execute(
                    f"DELETE FROM {self._table} WHERE collection = $1 AND document_id = $2",
                    collection,
                    document_id,
                )
                if records:
                    await self._upsert(conn, collection, records)
        except TRANSIENT_ERRORS as exc:
            raise StorageError(f"pgvector replace of '{document_id}' failed: {exc}") from exc

        previous = int(status.split()[-1])
        logger.info(
            "PgVectorStore[%s] replaced %s: %d records -> %d",
            collection, document_id, previous, len(records),
        )
        return previous

    async def search(
        self,
        collection: str,
        query_vector: list[float],
        k: int = 10,
        filters: MetadataFilter | None = None,
    ) -> list[SearchResult]:
        if k <= 0:
            return []

        active = filters if filters is not None and not filters.is_empty() else None
        sql, args = build_search_query(self._table, collection, query_vector, k, active)

        pool = await self.pool()
        async with pool.acquire() as conn, conn.transaction():
            for statement in search_settings(k, filtered=active is not None):
                await conn.execute(statement)
            rows = await conn.fetch(sql, *args)

        return sort_results([
            SearchResult(record=self._row_to_record(row), score=float(row["score"]))
            for row in rows
        ])

    async def count(self, collection: str) -> int:
        pool = await self.pool()
        return await pool.fetchval(
            f"SELECT COUNT(*) FROM {self._table} WHERE collection = $1", collection
        )

    async def collection_model(self, collection: str) -> str | None:
        pool = await self.pool()
        return await pool.fetchval(
            f"SELECT embedding_model FROM {self._table} WHERE collection = $1 LIMIT 1",
            collection,
        )

    async def clear(self, collection: str) -> None:
        pool = await self.pool()
        await pool.execute(f"DELETE FROM {self._table} WHERE collection = $1", collection)

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    async def _lock_collection(self, conn: Any, collection: str) -> None:
        # Serializes writers of one collection until the transaction ends
        await conn.execute(
            "SELECT pg_advisory_xact_lock(hashtext($1))", f"{self._table}:{collection}"
        )

    async def _model(self, conn: Any, collection: str) -> str | None:
        return await conn.fetchval(
            f"SELECT embedding_model FROM {self._table} WHERE collection = $1 LIMIT 1",
            collection,
        )

    async def _upsert(self, conn: Any, collection: str, records: list[VectorRecord]) -> None:
        rows = [
            (
                collection,
                r.chunk_id,
                r.document_id,
                r.seq,
                r.text,
                r.content_hash,
                r.start_char,
                r.end_char,
                r.embedding_model,
                r.metadata.ticker,
                str(r.metadata.report_type),
                r.metadata.filing_date,
                r.metadata.source_url,
                vector_literal(r.embedding),
            )
            for r in records
        ]
        await conn.executemany(
            f"""
            INSERT INTO {self._table} (
                collection, {_COLUMNS}, embedding
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14::vector
            )
            ON CONFLICT (collection, chunk_id) DO UPDATE SET
                document_id = EXCLUDED.document_id,
                seq = EXCLUDED.seq,
                text = EXCLUDED.text,
                content_hash = EXCLUDED.content_hash,
                start_char = EXCLUDED.start_char,
                end_char = EXCLUDED.end_char,
                embedding_model = EXCLUDED.embedding_model,
                ticker = EXCLUDED.ticker,
                report_type = EXCLUDED.report_type,
                filing_date = EXCLUDED.filing_date,
                source_url = EXCLUDED.source_url,
                embedding = EXCLUDED.embedding
            """,
            rows,
        )

    @staticmethod
    def _row_to_record(row: Any) -> VectorRecord:
        return VectorRecord(
            chunk_id=row["chunk_id"],
            document_id=row["document_id"],
            seq=row["seq"],
            text=row["text"],
            embedding=parse_vector(row["embedding_text"]),
            start_char=row["start_char"],
            end_char=row["end_char"],
            content_hash=row["content_hash"],
            embedding_model=row["embedding_model"],
            metadata=ChunkMetadata(
                ticker=row["ticker"],
                filing_date=row["filing_date"],
                report_type=ReportType(row["report_type"]),
                source_url=row["source_url"],
            ),
        )
