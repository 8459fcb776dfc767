"""Ingestion pipeline — document → normalize → chunk → embed → store.

This is the main entry point for adding documents to the vector store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from finrag.chunking.base import BaseChunker
from finrag.documents.normalize import NormalizeConfig, normalize_text
from finrag.documents.schemas import Document, ReportType
from finrag.embeddings.embedder import Embedder
from finrag.errors import ConfigurationError
from finrag.pipeline.schemas import IngestResult
from finrag.vectorstore.base import VectorStore
from finrag.vectorstore.schemas import VectorRecord

logger = logging.getLogger(__name__)

DEFAULT_COLLECTIONS = {
    "filing": "filings",
    "transcript": "transcripts",
    "other": "other",
}


class IngestPipeline:
    """Orchestrates ingestion of normalized financial documents.

    Nothing is written to the vector store unless every chunk was embedded:
    a provider failure propagates from ``Embedder.embed_batch`` before any
    insert happens.
    """

    def __init__(
        self,
        chunker: BaseChunker,
        embedder: Embedder,
        vector_store: VectorStore,
        collections: dict[str, str] | None = None,
        normalize_config: NormalizeConfig | None = None,
    ):
        self.chunker = chunker
        self.embedder = embedder
        self.vector_store = vector_store
        self.collections = collections or dict(DEFAULT_COLLECTIONS)
        self.normalize_config = normalize_config or NormalizeConfig()

    def collection_for(self, report_type: ReportType) -> str:
        name = self.collections.get(str(report_type))
        if name is None:
            raise ConfigurationError(f"No collection configured for '{report_type}'")
        return name

    async def ingest(
        self,
        document: Document,
        collection: str | None = None,
        replace_existing: bool = False,
    ) -> IngestResult:
        """Ingest one document.

        Args:
            document: The document; its text is normalized before chunking.
            collection: Target collection; defaults by report type.
            replace_existing: Swap out the document's previous records in one
                store operation, so chunks that no longer exist do not linger
                and a failed write keeps the previous version.

        Returns:
            An ``IngestResult`` with counts and warnings.
        """
        collection = collection or self.collection_for(document.report_type)
        warnings: list[str] = []

        # Step 1: Check the collection's vector space before spending on embeddings
        existing_model = await self.vector_store.collection_model(collection)
        if existing_model is not None and existing_model != self.embedder.model_id:
            raise ConfigurationError(
                f"Collection '{collection}' holds {existing_model!r} vectors; "
                f"cannot add {self.embedder.model_id!r} vectors"
            )

        # Step 2: Normalize
        text = normalize_text(document.text, self.normalize_config)
        if text != document.text:
            document = replace(document, text=text)

        # Step 3: Chunk
        chunks = self.chunker.chunk(document)
        if not chunks:
            warnings.append("Document contains no text after normalization")

        # Step 4: Embed (cache-checked)
        vectors = await self.embedder.embed_batch(chunks)

        # Step 5: Store
        records = [
            VectorRecord.from_chunk(chunk, vector, self.embedder.model_id)
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]
        replaced = 0
        if replace_existing:
            replaced = await self.vector_store.replace_document(collection, document.id, records)
            stored = len(records)
        else:
            stored = await self.vector_store.insert_many(collection, records)

        logger.info(
            "Ingested %s into %s: %d chunks → %d embedded → %d stored (%d replaced)",
            document.id, collection, len(chunks), len(vectors), stored, replaced,
        )

        return IngestResult(
            document_id=document.id,
            collection=collection,
            chunks_created=len(chunks),
            chunks_embedded=len(vectors),
            chunks_stored=stored,
            records_replaced=replaced,
            warnings=warnings,
        )

    async def ingest_many(
        self,
        documents: Iterable[Document],
        replace_existing: bool = False,
    ) -> list[IngestResult]:
        """Ingest documents one after another into their default collections."""
        results = []
        for document in documents:
            results.append(await self.ingest(document, replace_existing=replace_existing))
        return results
