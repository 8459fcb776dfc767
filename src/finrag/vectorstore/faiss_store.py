"""FAISS vector store — local, zero infrastructure.

One ``IndexIDMap2(IndexFlatIP)`` per collection, so records can be removed
and replaced in place. Vectors are L2-normalized on the way in, which makes
inner product equal to cosine similarity.

FAISS cannot pre-filter a flat index, so filtered searches over-fetch and
keep doubling the fetch size until ``k`` matches are found or the index is
exhausted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

import numpy as np

from finrag.chunking.schemas import ChunkMetadata
from finrag.documents.schemas import ReportType
from finrag.errors import ConfigurationError
from finrag.vectorstore.base import VectorStore, check_document, check_models, sort_results
from finrag.vectorstore.schemas import MetadataFilter, SearchResult, VectorRecord

logger = logging.getLogger(__name__)

_INITIAL_FILTER_FACTOR = 4


@dataclass
class _Collection:
    index: object
    records: dict[int, VectorRecord] = field(default_factory=dict)
    ids: dict[str, int] = field(default_factory=dict)  # chunk_id -> int id
    next_id: int = 0
    model: str | None = None


class FAISSStore(VectorStore):
    """FAISS-backed vector store with metadata filtering.

    All index mutations happen synchronously inside a single coroutine step,
    so concurrent searches on the event loop see either the old or the new
    record, never a partial replacement.
    """

    def __init__(self, dimension: int = 768, path: str | None = None):
        try:
            import faiss
        except ImportError as exc:
            raise ImportError("faiss-cpu required: pip install finrag[faiss]") from exc

        self._faiss = faiss
        self._dimension = dimension
        self._collections: dict[str, _Collection] = {}
        self._path = path
        if path and (Path(path) / "collections.json").exists():
            self.load(path)

    @property
    def dimension(self) -> int:
        return self._dimension

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def insert_many(self, collection: str, records: list[VectorRecord]) -> int:
        if not records:
            return 0

        # Last write wins within a batch
        records = list({r.chunk_id: r for r in records}.values())
        coll = self._collection(collection)
        check_models(collection, _model_of(coll), records)

        vectors = self._normalized([r.embedding for r in records])
        replaced = [coll.ids[r.chunk_id] for r in records if r.chunk_id in coll.ids]
        self._swap(coll, replaced, records, vectors)

        logger.info(
            "FAISSStore[%s] wrote %d records (%d replaced, total: %d)",
            collection, len(records), len(replaced), coll.index.ntotal,
        )
        return len(records)

    async def delete_by_document(self, collection: str, document_id: str) -> int:
        coll = self._collections.get(collection)
        if coll is None:
            return 0

        doomed = [i for i, r in coll.records.items() if r.document_id == document_id]
        if not doomed:
            return 0

        self._swap(coll, doomed, [], None)
        logger.info("FAISSStore[%s] deleted %d records of %s", collection, len(doomed), document_id)
        return len(doomed)

    async def replace_document(
        self,
        collection: str,
        document_id: str,
        records: list[VectorRecord],
    ) -> int:
        records = list({r.chunk_id: r for r in records}.values())
        check_document(document_id, records)
        if not records and collection not in self._collections:
            return 0

        coll = self._collection(collection)
        check_models(collection, _model_of(coll), records)
        vectors = self._normalized([r.embedding for r in records]) if records else None

        previous = [i for i, r in coll.records.items() if r.document_id == document_id]
        doomed = set(previous) | {coll.ids[r.chunk_id] for r in records if r.chunk_id in coll.ids}
        self._swap(coll, sorted(doomed), records, vectors)

        logger.info(
            "FAISSStore[%s] replaced %s: %d records -> %d",
            collection, document_id, len(previous), len(records),
        )
        return len(previous)

    async def search(
        self,
        collection: str,
        query_vector: list[float],
        k: int = 10,
        filters: MetadataFilter | None = None,
    ) -> list[SearchResult]:
        coll = self._collections.get(collection)
        if coll is None or k <= 0:
            return []
        total = coll.index.ntotal
        if total == 0:
            return []

        query = self._normalized([query_vector])
        active = filters if filters is not None and not filters.is_empty() else None

        fetch_k = min(total, k * _INITIAL_FILTER_FACTOR if active else k)
        while True:
            scores, indices = coll.index.search(query, fetch_k)
            results: list[SearchResult] = []
            for score, idx in zip(scores[0], indices[0], strict=True):
                if idx == -1:
                    continue
                record = coll.records.get(int(idx))
                if record is None:
                    continue
                if active and not active.matches_record(record):
                    continue
                results.append(SearchResult(record=record, score=float(score)))

            if len(results) >= k or fetch_k >= total:
                break
            fetch_k = min(total, fetch_k * 2)

        return sort_results(results)[:k]

    async def count(self, collection: str) -> int:
        coll = self._collections.get(collection)
        return coll.index.ntotal if coll else 0

    async def collection_model(self, collection: str) -> str | None:
        coll = self._collections.get(collection)
        return coll.model if coll else None

    async def clear(self, collection: str) -> None:
        self._collections.pop(collection, None)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: str | None = None) -> None:
        """Save every collection's index and records to disk."""
        target = path or self._path
        if target is None:
            raise ValueError("No path given and store was created without one")
        p = Path(target)
        p.mkdir(parents=True, exist_ok=True)

        manifest: dict[str, dict] = {}
        for name, coll in self._collections.items():
            index_file = f"{name}.faiss"
            self._faiss.write_index(coll.index, str(p / index_file))
            manifest[name] = {
                "index_file": index_file,
                "next_id": coll.next_id,
                "model": coll.model,
                "records": {str(i): _record_to_dict(r) for i, r in coll.records.items()},
            }

        with open(p / "collections.json", "w", encoding="utf-8") as f:
            json.dump({"dimension": self._dimension, "collections": manifest}, f)

        logger.info("FAISSStore saved %d collections to %s", len(manifest), target)

    def load(self, path: str) -> None:
        """Load collections written by :meth:`save`."""
        p = Path(path)
        with open(p / "collections.json", encoding="utf-8") as f:
            data = json.load(f)

        if data["dimension"] != self._dimension:
            raise ConfigurationError(
                f"Saved index has dimension {data['dimension']}, store expects {self._dimension}"
            )

        self._collections = {}
        for name, entry in data["collections"].items():
            records = {int(i): _record_from_dict(r) for i, r in entry["records"].items()}
            self._collections[name] = _Collection(
                index=self._faiss.read_index(str(p / entry["index_file"])),
                records=records,
                ids={r.chunk_id: i for i, r in records.items()},
                next_id=entry["next_id"],
                model=entry["model"],
            )

        logger.info("FAISSStore loaded %d collections from %s", len(self._collections), path)

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _collection(self, name: str) -> _Collection:
        coll = self._collections.get(name)
        if coll is None:
            index = self._faiss.IndexIDMap2(self._faiss.IndexFlatIP(self._dimension))
            coll = _Collection(index=index)
            self._collections[name] = coll
        return coll

    def _normalized(self, vectors: list[list[float]]) -> np.ndarray:
        arr = np.array(vectors, dtype=np.float32)
        if arr.ndim != 2 or arr.shape[1] != self._dimension:
            raise ConfigurationError(
                f"Vector dimension {arr.shape[-1]} does not match store dimension {self._dimension}"
            )
        self._faiss.normalize_L2(arr)
        return arr

    @staticmethod
    def _swap(
        coll: _Collection,
        doomed: list[int],
        records: list[VectorRecord],
        vectors: np.ndarray | None,
    ) -> None:
        """Remove ``doomed`` ids and add ``records`` without yielding to the loop."""
        if doomed:
            coll.index.remove_ids(np.array(doomed, dtype=np.int64))
            for int_id in doomed:
                record = coll.records.pop(int_id)
                if coll.ids.get(record.chunk_id) == int_id:
                    del coll.ids[record.chunk_id]

        if records:
            new_ids = np.arange(coll.next_id, coll.next_id + len(records), dtype=np.int64)
            coll.index.add_with_ids(vectors, new_ids)
            for int_id, record in zip(new_ids.tolist(), records, strict=True):
                coll.records[int_id] = record
                coll.ids[record.chunk_id] = int_id
            coll.next_id += len(records)
            coll.model = records[-1].embedding_model or coll.model

        if not coll.records:
            coll.model = None


def _model_of(coll: _Collection) -> str | None:
    return coll.model if coll.records else None


# ---------------------------------------------------------------------------
# Record serialization
# ---------------------------------------------------------------------------


def _record_to_dict(record: VectorRecord) -> dict:
    meta = record.metadata
    return {
        "chunk_id": record.chunk_id,
        "document_id": record.document_id,
        "seq": record.seq,
        "text": record.text,
        "embedding": record.embedding,
        "start_char": record.start_char,
        "end_char": record.end_char,
        "content_hash": record.content_hash,
        "embedding_model": record.embedding_model,
        "metadata": {
            "ticker": meta.ticker,
            "filing_date": meta.filing_date.isoformat() if meta.filing_date else None,
            "report_type": str(meta.report_type),
            "source_url": meta.source_url,
        },
    }


def _record_from_dict(d: dict) -> VectorRecord:
    meta = d["metadata"]
    return VectorRecord(
        chunk_id=d["chunk_id"],
        document_id=d["document_id"],
        seq=d["seq"],
        text=d["text"],
        embedding=d["embedding"],
        start_char=d["start_char"],
        end_char=d["end_char"],
        content_hash=d["content_hash"],
        embedding_model=d["embedding_model"],
        metadata=ChunkMetadata(
            ticker=meta.get("ticker"),
            filing_date=date.fromisoformat(meta["filing_date"]) if meta.get("filing_date") else None,
            report_type=ReportType(meta.get("report_type", "other")),
            source_url=meta.get("source_url"),
        ),
    )
