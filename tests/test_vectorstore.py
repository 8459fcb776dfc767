"""Tests for vector store backends — FAISS, Qdrant (in-memory) and pgvector SQL."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path

import pytest
from qdrant_client.http.exceptions import ResponseHandlingException

from finrag.documents.schemas import ReportType
from finrag.errors import ConfigurationError, StorageError
from finrag.vectorstore.base import VectorStore
from finrag.vectorstore.factory import available_stores, clear_cache, get_vector_store
from finrag.vectorstore.faiss_store import FAISSStore
from finrag.vectorstore.pgvector_store import (
    PgVectorStore,
    build_filter_clause,
    build_search_query,
    schema_statements,
    search_settings,
)
from finrag.vectorstore.qdrant_store import QdrantStore, point_id
from finrag.vectorstore.schemas import MetadataFilter, VectorRecord

from fakes import DIM, axis_vector, hash_vector, make_record

# ---------------------------------------------------------------------------
# Shared contract (FAISS and Qdrant)
# ---------------------------------------------------------------------------


@pytest.fixture(params=["faiss", "qdrant"])
def store(request) -> VectorStore:
    if request.param == "faiss":
        return FAISSStore(dimension=DIM)
    return QdrantStore(dimension=DIM)


def _three_records() -> list[VectorRecord]:
    return [
        make_record("aapl-10k", 0, "Revenue was $391B", axis_vector(1.0)),
        make_record("aapl-10k", 1, "Services grew 13%", axis_vector(0.8, 0.6)),
        make_record("aapl-10k", 2, "Risk factors: FX", axis_vector(0.0, 1.0)),
    ]


class TestVectorStoreContract:
    async def test_is_vector_store(self, store: VectorStore):
        assert isinstance(store, VectorStore)

    async def test_empty_collection(self, store: VectorStore):
        assert await store.count("filings") == 0
        assert await store.search("filings", axis_vector(1.0), k=5) == []
        assert await store.collection_model("filings") is None

    async def test_insert_and_search_ranked(self, store: VectorStore):
        assert await store.insert_many("filings", _three_records()) == 3
        assert await store.count("filings") == 3

        results = await store.search("filings", axis_vector(1.0), k=3)
        assert [r.chunk_id for r in results] == ["aapl-10k:0", "aapl-10k:1", "aapl-10k:2"]
        assert results[0].score == pytest.approx(1.0, abs=1e-5)
        assert results[1].score == pytest.approx(0.8, abs=1e-5)

    async def test_result_count_is_min_of_k_and_matches(self, store: VectorStore):
        await store.insert_many("filings", _three_records())
        assert len(await store.search("filings", axis_vector(1.0), k=2)) == 2
        assert len(await store.search("filings", axis_vector(1.0), k=10)) == 3

    async def test_records_round_trip(self, store: VectorStore):
        record = make_record("aapl-10k", 4, "Gross margin 46.2%", axis_vector(1.0), start=120, end=138)
        await store.insert("filings", record)
        [hit] = await store.search("filings", axis_vector(1.0), k=1)
        got = hit.record
        assert got.chunk_id == "aapl-10k:4"
        assert got.document_id == "aapl-10k"
        assert got.seq == 4
        assert (got.start_char, got.end_char) == (120, 138)
        assert got.text == "Gross margin 46.2%"
        assert got.embedding_model == "fake:fake-embed"
        assert got.metadata.ticker == "AAPL"
        assert got.metadata.filing_date == date(2024, 11, 1)
        assert got.metadata.report_type == ReportType.FILING

    async def test_insert_same_chunk_id_replaces(self, store: VectorStore):
        await store.insert("filings", make_record("aapl-10k", 0, "old text", axis_vector(1.0)))
        await store.insert("filings", make_record("aapl-10k", 0, "new text", axis_vector(0.0, 1.0)))

        assert await store.count("filings") == 1
        [hit] = await store.search("filings", axis_vector(0.0, 1.0), k=5)
        assert hit.record.text == "new text"
        assert hit.score == pytest.approx(1.0, abs=1e-5)

    async def test_ties_broken_by_chunk_id(self, store: VectorStore):
        same = axis_vector(1.0)
        await store.insert_many("filings", [
            make_record("doc-b", 0, "b", same),
            make_record("doc-a", 1, "a1", same),
            make_record("doc-a", 0, "a0", same),
        ])
        results = await store.search("filings", same, k=3)
        assert [r.chunk_id for r in results] == ["doc-a:0", "doc-a:1", "doc-b:0"]

    async def test_delete_by_document(self, store: VectorStore):
        await store.insert_many("filings", [
            *_three_records(),
            make_record("msft-10k", 0, "Azure grew 29%", axis_vector(1.0), ticker="MSFT"),
        ])
        assert await store.delete_by_document("filings", "aapl-10k") == 3
        assert await store.count("filings") == 1
        results = await store.search("filings", axis_vector(1.0), k=10)
        assert [r.record.document_id for r in results] == ["msft-10k"]

    async def test_delete_unknown_document(self, store: VectorStore):
        assert await store.delete_by_document("filings", "nope") == 0
        await store.insert_many("filings", _three_records())
        assert await store.delete_by_document("filings", "nope") == 0

    async def test_collections_are_isolated(self, store: VectorStore):
        await store.insert_many("filings", _three_records())
        await store.insert("transcripts", make_record("call", 0, "On the call", axis_vector(1.0)))
        assert await store.count("filings") == 3
        assert await store.count("transcripts") == 1
        results = await store.search("transcripts", axis_vector(1.0), k=10)
        assert [r.chunk_id for r in results] == ["call:0"]

    async def test_collection_model(self, store: VectorStore):
        await store.insert_many("filings", _three_records())
        assert await store.collection_model("filings") == "fake:fake-embed"

    async def test_clear(self, store: VectorStore):
        await store.insert_many("filings", _three_records())
        await store.clear("filings")
        assert await store.count("filings") == 0
        assert await store.search("filings", axis_vector(1.0), k=3) == []

    async def test_mixing_models_rejected(self, store: VectorStore):
        await store.insert("filings", make_record("a", 0, "x", axis_vector(1.0)))
        with pytest.raises(ConfigurationError, match="mix embedding models"):
            await store.insert("filings", make_record("b", 0, "y", axis_vector(1.0), model="other:model"))
        assert await store.count("filings") == 1
        assert await store.collection_model("filings") == "fake:fake-embed"

    async def test_mixed_batch_rejected(self, store: VectorStore):
        with pytest.raises(ConfigurationError):
            await store.insert_many("filings", [
                make_record("a", 0, "x", axis_vector(1.0)),
                make_record("a", 1, "y", axis_vector(0.0, 1.0), model="other:model"),
            ])
        assert await store.count("filings") == 0


# ---------------------------------------------------------------------------
# Document replacement
# ---------------------------------------------------------------------------


async def _texts(store: VectorStore, collection: str = "filings") -> list[str]:
    return sorted(r.record.text for r in await store.search(collection, axis_vector(1.0), k=50))


class TestReplaceDocument:
    async def test_swaps_versions_and_drops_stale_chunks(self, store: VectorStore):
        await store.insert_many("filings", [
            *_three_records(),
            make_record("msft-10k", 0, "Azure grew 29%", axis_vector(1.0), ticker="MSFT"),
        ])
        amended = [
            make_record("aapl-10k", 0, "Revenue was $391.0B", axis_vector(1.0)),
            make_record("aapl-10k", 1, "Services grew 13.1%", axis_vector(0.8, 0.6)),
        ]

        assert await store.replace_document("filings", "aapl-10k", amended) == 3
        assert await store.count("filings") == 3
        assert await _texts(store) == ["Azure grew 29%", "Revenue was $391.0B", "Services grew 13.1%"]

    async def test_new_document(self, store: VectorStore):
        assert await store.replace_document("filings", "aapl-10k", _three_records()) == 0
        assert await store.count("filings") == 3

    async def test_empty_replacement_removes_document(self, store: VectorStore):
        await store.insert_many("filings", _three_records())
        assert await store.replace_document("filings", "aapl-10k", []) == 3
        assert await store.count("filings") == 0
        assert await store.replace_document("transcripts", "call", []) == 0

    async def test_rejected_replacement_keeps_previous_version(self, store: VectorStore):
        await store.insert_many("filings", _three_records())
        other_model = [make_record("aapl-10k", 0, "re-embedded", axis_vector(1.0), model="other:model")]

        with pytest.raises(ConfigurationError):
            await store.replace_document("filings", "aapl-10k", other_model)
        assert await store.count("filings") == 3
        assert "re-embedded" not in await _texts(store)

    async def test_records_of_another_document_rejected(self, store: VectorStore):
        await store.insert_many("filings", _three_records())
        with pytest.raises(ValueError, match="cannot replace"):
            await store.replace_document("filings", "aapl-10k", [make_record("msft-10k", 0, "x", axis_vector(1.0))])
        assert await store.count("filings") == 3


class TestVectorStoreFilters:
    @pytest.fixture
    async def populated(self, store: VectorStore) -> VectorStore:
        await store.insert_many("filings", [
            make_record("aapl-2023", 0, "AAPL FY23", axis_vector(1.0), filing_date=date(2023, 11, 3)),
            make_record("aapl-2024", 0, "AAPL FY24", axis_vector(0.9, 0.1), filing_date=date(2024, 11, 1)),
            make_record("msft-2024", 0, "MSFT FY24", axis_vector(0.8, 0.2), ticker="MSFT",
                        filing_date=date(2024, 7, 30)),
            make_record("aapl-call", 0, "AAPL call", axis_vector(0.7, 0.3),
                        filing_date=date(2024, 10, 31), report_type=ReportType.TRANSCRIPT),
            make_record("undated", 0, "No date", axis_vector(0.6, 0.4), filing_date=None),
        ])
        return store

    async def test_ticker_filter(self, populated: VectorStore):
        results = await populated.search("filings", axis_vector(1.0), k=10, filters=MetadataFilter(ticker="MSFT"))
        assert [r.chunk_id for r in results] == ["msft-2024:0"]

    async def test_report_type_filter(self, populated: VectorStore):
        results = await populated.search(
            "filings", axis_vector(1.0), k=10, filters=MetadataFilter(report_type=ReportType.TRANSCRIPT)
        )
        assert [r.chunk_id for r in results] == ["aapl-call:0"]

    async def test_date_range_inclusive(self, populated: VectorStore):
        flt = MetadataFilter(date_from=date(2024, 7, 30), date_to=date(2024, 11, 1))
        results = await populated.search("filings", axis_vector(1.0), k=10, filters=flt)
        assert {r.record.document_id for r in results} == {"aapl-2024", "msft-2024", "aapl-call"}

    async def test_undated_records_excluded_by_date_range(self, populated: VectorStore):
        flt = MetadataFilter(date_from=date(2000, 1, 1))
        results = await populated.search("filings", axis_vector(1.0), k=10, filters=flt)
        assert "undated" not in {r.record.document_id for r in results}
        assert len(results) == 4

    async def test_combined_filters(self, populated: VectorStore):
        flt = MetadataFilter(ticker="AAPL", report_type=ReportType.FILING, date_from=date(2024, 1, 1))
        results = await populated.search("filings", axis_vector(1.0), k=10, filters=flt)
        assert [r.chunk_id for r in results] == ["aapl-2024:0"]

    async def test_document_filter(self, populated: VectorStore):
        flt = MetadataFilter(document_id="aapl-2023")
        results = await populated.search("filings", axis_vector(0.0, 1.0), k=10, filters=flt)
        assert [r.chunk_id for r in results] == ["aapl-2023:0"]

    async def test_filtered_k_returns_best_matches(self, populated: VectorStore):
        results = await populated.search("filings", axis_vector(1.0), k=2, filters=MetadataFilter(ticker="AAPL"))
        assert [r.chunk_id for r in results] == ["aapl-2023:0", "aapl-2024:0"]


# ---------------------------------------------------------------------------
# FAISS specifics
# ---------------------------------------------------------------------------


class TestFAISSStore:
    @pytest.fixture
    def faiss_store(self) -> FAISSStore:
        return FAISSStore(dimension=DIM)

    async def test_rare_match_found_beyond_initial_fetch(self, faiss_store: FAISSStore):
        noise = [
            make_record("msft", i, f"noise {i}", hash_vector(f"noise {i}"), ticker="MSFT")
            for i in range(60)
        ]
        target = make_record("aapl", 0, "target", hash_vector("something else entirely"))
        await faiss_store.insert_many("filings", [*noise, target])

        results = await faiss_store.search(
            "filings", hash_vector("noise 0"), k=1, filters=MetadataFilter(ticker="AAPL")
        )
        assert [r.chunk_id for r in results] == ["aapl:0"]

    async def test_bad_replacement_vectors_keep_previous_version(self, faiss_store: FAISSStore):
        await faiss_store.insert_many("filings", _three_records())
        with pytest.raises(ConfigurationError):
            await faiss_store.replace_document("filings", "aapl-10k", [make_record("aapl-10k", 0, "x", [1.0, 0.0])])
        assert await faiss_store.count("filings") == 3
        [hit] = await faiss_store.search("filings", axis_vector(1.0), k=1)
        assert hit.record.text == "Revenue was $391B"

    async def test_replacement_claims_chunk_ids_once(self, faiss_store: FAISSStore):
        await faiss_store.insert_many("filings", _three_records())
        await faiss_store.replace_document("filings", "aapl-10k", _three_records()[:1])
        await faiss_store.replace_document("filings", "aapl-10k", _three_records()[:1])
        assert await faiss_store.count("filings") == 1

    async def test_model_switch_allowed_after_collection_emptied(self, faiss_store: FAISSStore):
        await faiss_store.insert("filings", make_record("a", 0, "x", axis_vector(1.0)))
        await faiss_store.delete_by_document("filings", "a")
        await faiss_store.insert("filings", make_record("b", 0, "y", axis_vector(1.0), model="other:model"))
        assert await faiss_store.collection_model("filings") == "other:model"

    async def test_dimension_mismatch(self, faiss_store: FAISSStore):
        with pytest.raises(ConfigurationError):
            await faiss_store.insert("filings", make_record("a", 0, "x", [1.0, 0.0]))

    async def test_duplicate_ids_in_one_batch(self, faiss_store: FAISSStore):
        await faiss_store.insert_many("filings", [
            make_record("a", 0, "first", axis_vector(1.0)),
            make_record("a", 0, "second", axis_vector(1.0)),
        ])
        assert await faiss_store.count("filings") == 1
        [hit] = await faiss_store.search("filings", axis_vector(1.0), k=5)
        assert hit.record.text == "second"

    async def test_save_and_load(self, faiss_store: FAISSStore, tmp_path: Path):
        await faiss_store.insert_many("filings", _three_records())
        await faiss_store.insert("transcripts", make_record("call", 0, "call", axis_vector(1.0)))
        faiss_store.save(str(tmp_path / "index"))

        loaded = FAISSStore(dimension=DIM, path=str(tmp_path / "index"))
        assert await loaded.count("filings") == 3
        assert await loaded.count("transcripts") == 1
        assert await loaded.collection_model("filings") == "fake:fake-embed"
        results = await loaded.search("filings", axis_vector(1.0), k=1)
        assert results[0].chunk_id == "aapl-10k:0"
        assert results[0].record.metadata.filing_date == date(2024, 11, 1)

        # Ids keep advancing after a reload
        await loaded.insert("filings", make_record("aapl-10k", 9, "new", axis_vector(0.0, 0.0, 1.0)))
        assert await loaded.count("filings") == 4

    async def test_load_dimension_mismatch(self, faiss_store: FAISSStore, tmp_path: Path):
        await faiss_store.insert_many("filings", _three_records())
        faiss_store.save(str(tmp_path))
        with pytest.raises(ConfigurationError):
            FAISSStore(dimension=DIM * 2, path=str(tmp_path))

    def test_save_without_path(self, faiss_store: FAISSStore):
        with pytest.raises(ValueError):
            faiss_store.save()


# ---------------------------------------------------------------------------
# Qdrant specifics
# ---------------------------------------------------------------------------


class TestQdrantStore:
    def test_point_ids_stable_uuids(self):
        assert point_id("aapl-10k:0") == point_id("aapl-10k:0")
        assert point_id("aapl-10k:0") != point_id("aapl-10k:1")
        assert len(point_id("aapl-10k:0")) == 36

    async def test_close(self):
        store = QdrantStore(dimension=DIM)
        await store.insert_many("filings", _three_records())
        await store.close()

    async def test_failed_upsert_keeps_previous_version(self, monkeypatch: pytest.MonkeyPatch):
        store = QdrantStore(dimension=DIM)
        await store.insert_many("filings", _three_records())

        async def unreachable(**kwargs):
            raise ResponseHandlingException(ConnectionError("connection reset"))

        monkeypatch.setattr(store._client, "upsert", unreachable)
        amended = [make_record("aapl-10k", 0, "amended", axis_vector(1.0))]
        with pytest.raises(StorageError, match="upsert"):
            await store.replace_document("filings", "aapl-10k", amended)

        assert await store.count("filings") == 3
        assert "amended" not in await _texts(store)


# ---------------------------------------------------------------------------
# pgvector SQL
# ---------------------------------------------------------------------------


class TestPgVectorSQL:
    def test_schema_uses_dimension(self):
        statements = schema_statements("vector_records", 768)
        assert statements[0] == "CREATE EXTENSION IF NOT EXISTS vector"
        assert "vector(768)" in statements[1]
        assert any("hnsw" in s and "vector_cosine_ops" in s for s in statements)

    def test_no_filter(self):
        assert build_filter_clause(None, first_param=3) == ("", [])
        assert build_filter_clause(MetadataFilter(), first_param=3) == ("", [])

    def test_filter_params_numbered_from_first_param(self):
        flt = MetadataFilter(
            ticker="AAPL",
            report_type=ReportType.FILING,
            date_from=date(2024, 1, 1),
            date_to=date(2024, 12, 31),
        )
        sql, args = build_filter_clause(flt, first_param=3)
        assert sql == (
            " AND ticker = $3 AND report_type = $4"
            " AND filing_date >= $5 AND filing_date <= $6"
        )
        assert args == ["AAPL", "filing", date(2024, 1, 1), date(2024, 12, 31)]

    def test_search_query(self):
        sql, args = build_search_query(
            "vector_records", "filings", [0.5, -0.25], 5, MetadataFilter(ticker="AAPL")
        )
        assert "WHERE collection = $2 AND ticker = $3" in sql
        assert "ORDER BY embedding <=> $1::vector, chunk_id" in sql
        assert sql.endswith("LIMIT $4")
        assert args == ["[0.5,-0.25]", "filings", "AAPL", 5]

    def test_search_query_unfiltered(self):
        sql, args = build_search_query("vector_records", "filings", [1.0], 3)
        assert sql.endswith("LIMIT $3")
        assert args[1:] == ["filings", 3]

    def test_requires_dsn_or_pool(self):
        with pytest.raises(ValueError):
            PgVectorStore()

    def test_search_settings_widen_hnsw_beam(self):
        assert search_settings(5, filtered=False) == ["SET LOCAL hnsw.ef_search = 40"]
        assert search_settings(200, filtered=False) == ["SET LOCAL hnsw.ef_search = 200"]

    def test_search_settings_exact_scan(self):
        assert search_settings(5, filtered=True) == ["SET LOCAL enable_indexscan = off"]
        assert search_settings(5000, filtered=False) == ["SET LOCAL enable_indexscan = off"]


class _RecordingConnection:
    """Stands in for an asyncpg connection and records every statement."""

    def __init__(self, model: str | None = None, deleted: int = 0):
        self.model = model
        self.deleted = deleted
        self.statements: list[str] = []
        self.transactions = 0

    async def execute(self, sql: str, *args):
        self.statements.append(sql.strip())
        return f"DELETE {self.deleted}" if sql.startswith("DELETE") else "SELECT 1"

    async def executemany(self, sql: str, rows):
        self.statements.append("INSERT")

    async def fetchval(self, sql: str, *args):
        self.statements.append(sql.strip())
        return self.model

    async def fetch(self, sql: str, *args):
        self.statements.append(sql.strip())
        return []

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield


class _RecordingPool:
    def __init__(self, conn: _RecordingConnection):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


class TestPgVectorStatements:
    def _store(self, conn: _RecordingConnection) -> PgVectorStore:
        return PgVectorStore(pool=_RecordingPool(conn), dimension=DIM)

    async def test_unfiltered_search_sets_ef_search(self):
        conn = _RecordingConnection()
        await self._store(conn).search("filings", axis_vector(1.0), k=100)
        assert conn.transactions == 1
        assert conn.statements[0] == "SET LOCAL hnsw.ef_search = 100"
        assert conn.statements[1].startswith("SELECT")

    async def test_filtered_search_disables_index_scan(self):
        conn = _RecordingConnection()
        await self._store(conn).search("filings", axis_vector(1.0), k=5, filters=MetadataFilter(ticker="AAPL"))
        assert conn.statements[0] == "SET LOCAL enable_indexscan = off"

    async def test_insert_rejects_model_mismatch_before_writing(self):
        conn = _RecordingConnection(model="other:model")
        with pytest.raises(ConfigurationError, match="mix embedding models"):
            await self._store(conn).insert_many("filings", _three_records())
        assert "INSERT" not in conn.statements
        assert "pg_advisory_xact_lock" in conn.statements[0]

    async def test_insert_checks_model_inside_transaction(self):
        conn = _RecordingConnection(model="fake:fake-embed")
        assert await self._store(conn).insert_many("filings", _three_records()) == 3
        assert conn.transactions == 1
        assert conn.statements[-1] == "INSERT"

    async def test_replace_deletes_and_inserts_in_one_transaction(self):
        conn = _RecordingConnection(model="fake:fake-embed", deleted=4)
        replaced = await self._store(conn).replace_document("filings", "aapl-10k", _three_records())

        assert replaced == 4
        assert conn.transactions == 1
        assert "pg_advisory_xact_lock" in conn.statements[0]
        assert conn.statements[1].startswith("SELECT embedding_model")
        assert conn.statements[2].startswith("DELETE FROM vector_records")
        assert conn.statements[3] == "INSERT"

    async def test_replace_rejects_model_mismatch_before_deleting(self):
        conn = _RecordingConnection(model="other:model", deleted=4)
        with pytest.raises(ConfigurationError):
            await self._store(conn).replace_document("filings", "aapl-10k", _three_records())
        assert not any(s.startswith("DELETE") for s in conn.statements)


# ---------------------------------------------------------------------------
# MetadataFilter
# ---------------------------------------------------------------------------


class TestMetadataFilter:
    def test_empty(self):
        assert MetadataFilter().is_empty()
        assert not MetadataFilter(ticker="AAPL").is_empty()

    def test_to_dict(self):
        flt = MetadataFilter(ticker="AAPL", report_type=ReportType.TRANSCRIPT, date_from=date(2024, 1, 1))
        assert flt.to_dict() == {"ticker": "AAPL", "report_type": "transcript", "date_from": "2024-01-01"}

    def test_matches_record(self):
        record = make_record("aapl", 0, "x", axis_vector(1.0))
        assert MetadataFilter(ticker="AAPL", date_to=date(2024, 11, 1)).matches_record(record)
        assert not MetadataFilter(ticker="MSFT").matches_record(record)
        assert not MetadataFilter(date_from=date(2024, 11, 2)).matches_record(record)
        assert not MetadataFilter(document_id="other").matches_record(record)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestVectorStoreFactory:
    def setup_method(self):
        clear_cache()

    def test_available_stores(self):
        assert available_stores() == ["faiss", "qdrant", "pgvector"]

    def test_get_faiss(self):
        store = get_vector_store("faiss", dimension=DIM)
        assert isinstance(store, FAISSStore)
        assert store.dimension == DIM

    def test_singleton_without_kwargs(self):
        assert get_vector_store("faiss") is get_vector_store("faiss")

    def test_unknown_store(self):
        with pytest.raises(ValueError, match="Unknown vector store"):
            get_vector_store("pinecone")
