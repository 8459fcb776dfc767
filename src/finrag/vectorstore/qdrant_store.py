"""Qdrant vector store — dedicated vector database with native metadata filtering.

Requires the ``qdrant`` extra. Supports Qdrant Cloud, a local server, an
on-disk local path, or ``:memory:`` for tests. Each logical collection maps to
one Qdrant collection; filters are pushed down as Qdrant payload filters, so
the HNSW search is pre-filtered.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date
from typing import Any

from finrag.chunking.schemas import ChunkMetadata
from finrag.documents.schemas import ReportType
from finrag.errors import StorageError
from finrag.vectorstore.base import VectorStore, check_document, check_models, sort_results
from finrag.vectorstore.schemas import MetadataFilter, SearchResult, VectorRecord

logger = logging.getLogger(__name__)

# Stable point ids: Qdrant accepts UUIDs or integers, not arbitrary strings.
_POINT_NAMESPACE = uuid.UUID("6f1c9b7e-2d4a-5e8f-9a3b-1c2d3e4f5a6b")

_KEYWORD_FIELDS = ("ticker", "report_type", "document_id", "embedding_model")


def point_id(chunk_id: str) -> str:
    return str(uuid.uuid5(_POINT_NAMESPACE, chunk_id))


class QdrantStore(VectorStore):
    """Qdrant-backed vector store."""

    def __init__(
        self,
        dimension: int = 768,
        url: str | None = None,
        api_key: str | None = None,
        path: str | None = None,
        prefix: str = "finrag_",
    ):
        try:
            from qdrant_client import AsyncQdrantClient, models
            from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
        except ImportError as exc:
            raise ImportError("qdrant-client required: pip install finrag[qdrant]") from exc

        self._models = models
        self._transient = (ResponseHandlingException, UnexpectedResponse)
        self._dimension = dimension
        self._prefix = prefix
        self._known: set[str] = set()
        self._create_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

        if url:
            self._client = AsyncQdrantClient(url=url, api_key=api_key)
            self._local = False
        elif path:
            self._client = AsyncQdrantClient(path=path)
            self._local = True
        else:
            # In-memory for testing
            self._client = AsyncQdrantClient(location=":memory:")
            self._local = True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def insert_many(self, collection: str, records: list[VectorRecord]) -> int:
        if not records:
            return 0

        async with self._write_lock:
            check_models(collection, await self.collection_model(collection), records)
            name = await self._ensure_collection(collection)
            await self._upsert(name, records)

        logger.info("QdrantStore[%s] upserted %d records", collection, len(records))
        return len(records)

    async def delete_by_document(self, collection: str, document_id: str) -> int:
        name = self._name(collection)
        if not await self._exists(name):
            return 0

        doc_filter = self._build_filter(MetadataFilter(document_id=document_id))
        result = await self._client.count(collection_name=name, count_filter=doc_filter, exact=True)
        if result.count == 0:
            return 0

        await self._client.delete(
            collection_name=name,
            points_selector=self._models.FilterSelector(filter=doc_filter),
            wait=True,
        )
        logger.info("QdrantStore[%s] deleted %d records of %s", collection, result.count, document_id)
        return result.count

    async def replace_document(
        self,
        collection: str,
        document_id: str,
        records: list[VectorRecord],
    ) -> int:
        """Upsert the new version, then delete chunks it no longer has.

        A failed upsert leaves the previous version untouched. If the final
        delete fails, the new chunks are live next to the stale tail and a
        retry of the same call removes it.
        """
        check_document(document_id, records)
        name = self._name(collection)
        if not records and not await self._exists(name):
            return 0

        m = self._models
        async with self._write_lock:
            check_models(collection, await self.collection_model(collection), records)
            name = await self._ensure_collection(collection)
            doc_conditions = self._build_filter(MetadataFilter(document_id=document_id)).must
            try:
                previous = await self._client.count(
                    collection_name=name, count_filter=m.Filter(must=doc_conditions), exact=True
                )
            except self._transient as exc:
                raise StorageError(f"Qdrant count in '{name}' failed: {exc}") from exc

            if records:
                await self._upsert(name, records)

            keep = [point_id(r.chunk_id) for r in records]
            stale = m.Filter(
                must=doc_conditions,
                must_not=[m.HasIdCondition(has_id=keep)] if keep else None,
            )
            try:
                await self._client.delete(
                    collection_name=name,
                    points_selector=m.FilterSelector(filter=stale),
                    wait=True,
                )
            except self._transient as exc:
                raise StorageError(f"Qdrant delete of stale chunks in '{name}' failed: {exc}") from exc

        logger.info(
            "QdrantStore[%s] replaced %s: %d records -> %d",
            collection, document_id, previous.count, len(records),
        )
        return previous.count

    async def search(
        self,
        collection: str,
        query_vector: list[float],
        k: int = 10,
        filters: MetadataFilter | None = None,
    ) -> list[SearchResult]:
        name = self._name(collection)
        if k <= 0 or not await self._exists(name):
            return []

        response = await self._client.query_points(
            collection_name=name,
            query=list(query_vector),
            limit=k,
            query_filter=self._build_filter(filters) if filters else None,
            with_payload=True,
            with_vectors=True,
        )

        results = [
            SearchResult(
                record=self._payload_to_record(point.payload or {}, point.vector),
                score=point.score if point.score is not None else 0.0,
            )
            for point in response.points
        ]
        return sort_results(results)

    async def count(self, collection: str) -> int:
        name = self._name(collection)
        if not await self._exists(name):
            return 0
        result = await self._client.count(collection_name=name, exact=True)
        return result.count

    async def collection_model(self, collection: str) -> str | None:
        name = self._name(collection)
        if not await self._exists(name):
            return None
        points, _ = await self._client.scroll(
            collection_name=name,
            limit=1,
            with_payload=["embedding_model"],
            with_vectors=False,
        )
        if not points:
            return None
        return (points[0].payload or {}).get("embedding_model")

    async def clear(self, collection: str) -> None:
        name = self._name(collection)
        if await self._exists(name):
            await self._client.delete_collection(collection_name=name)
        self._known.discard(name)

    async def close(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def _name(self, collection: str) -> str:
        return f"{self._prefix}{collection}"

    async def _exists(self, name: str) -> bool:
        if name in self._known:
            return True
        if await self._client.collection_exists(collection_name=name):
            self._known.add(name)
            return True
        return False

    async def _ensure_collection(self, collection: str) -> str:
        name = self._name(collection)
        async with self._create_lock:
            if await self._exists(name):
                return name
            await self._client.create_collection(
                collection_name=name,
                vectors_config=self._models.VectorParams(
                    size=self._dimension,
                    distance=self._models.Distance.COSINE,
                ),
            )
            if not self._local:
                for field_name in _KEYWORD_FIELDS:
                    await self._client.create_payload_index(
                        collection_name=name,
                        field_name=field_name,
                        field_schema=self._models.PayloadSchemaType.KEYWORD,
                    )
                await self._client.create_payload_index(
                    collection_name=name,
                    field_name="filing_ordinal",
                    field_schema=self._models.PayloadSchemaType.INTEGER,
                )
            self._known.add(name)
            logger.info("Created Qdrant collection '%s' (dim=%d)", name, self._dimension)
        return name

    async def _upsert(self, name: str, records: list[VectorRecord]) -> None:
        points = [
            self._models.PointStruct(
                id=point_id(record.chunk_id),
                vector=list(record.embedding),
                payload=self._record_to_payload(record),
            )
            for record in records
        ]
        try:
            await self._client.upsert(collection_name=name, points=points, wait=True)
        except self._transient as exc:
            raise StorageError(f"Qdrant upsert into '{name}' failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Filters and payloads
    # ------------------------------------------------------------------

    def _build_filter(self, filters: MetadataFilter) -> Any:
        m = self._models
        conditions = []
        if filters.ticker:
            conditions.append(m.FieldCondition(key="ticker", match=m.MatchValue(value=filters.ticker)))
        if filters.report_type:
            conditions.append(
                m.FieldCondition(key="report_type", match=m.MatchValue(value=str(filters.report_type)))
            )
        if filters.document_id:
            conditions.append(
                m.FieldCondition(key="document_id", match=m.MatchValue(value=filters.document_id))
            )
        if filters.date_from or filters.date_to:
            conditions.append(
                m.FieldCondition(
                    key="filing_ordinal",
                    range=m.Range(
                        gte=filters.date_from.toordinal() if filters.date_from else None,
                        lte=filters.date_to.toordinal() if filters.date_to else None,
                    ),
                )
            )
        return m.Filter(must=conditions) if conditions else None

    @staticmethod
    def _record_to_payload(record: VectorRecord) -> dict[str, Any]:
        meta = record.metadata
        return {
            "chunk_id": record.chunk_id,
            "document_id": record.document_id,
            "seq": record.seq,
            "text": record.text,
            "start_char": record.start_char,
            "end_char": record.end_char,
            "content_hash": record.content_hash,
            "embedding_model": record.embedding_model,
            "ticker": meta.ticker,
            "report_type": str(meta.report_type),
            "filing_date": meta.filing_date.isoformat() if meta.filing_date else None,
            "filing_ordinal": meta.filing_date.toordinal() if meta.filing_date else None,
            "source_url": meta.source_url,
        }

    @staticmethod
    def _payload_to_record(payload: dict[str, Any], vector: Any) -> VectorRecord:
        filing_date = payload.get("filing_date")
        return VectorRecord(
            chunk_id=payload.get("chunk_id", ""),
            document_id=payload.get("document_id", ""),
            seq=payload.get("seq", 0),
            text=payload.get("text", ""),
            embedding=list(vector) if isinstance(vector, list) else [],
            start_char=payload.get("start_char", 0),
            end_char=payload.get("end_char", 0),
            content_hash=payload.get("content_hash", ""),
            embedding_model=payload.get("embedding_model", ""),
            metadata=ChunkMetadata(
                ticker=payload.get("ticker"),
                filing_date=date.fromisoformat(filing_date) if filing_date else None,
                report_type=ReportType(payload.get("report_type", "other")),
                source_url=payload.get("source_url"),
            ),
        )
