"""Shared fixtures for tests — synthetic documents and in-process components."""

from __future__ import annotations

import textwrap
from datetime import date

import pytest

from finrag.chunking.overlap_chunker import OverlapChunker
from finrag.documents.schemas import Document, ReportType
from finrag.embeddings.cache import InMemoryEmbeddingCache
from finrag.embeddings.embedder import Embedder
from finrag.memory.context import ConversationMemory
from finrag.memory.in_memory_store import InMemoryConversationStore

from fakes import FAST_RETRY, FakeEmbeddingProvider


# ---------------------------------------------------------------------------
# Synthetic document content
# ---------------------------------------------------------------------------


@pytest.fixture
def earnings_summary_text() -> str:
    return textwrap.dedent("""\
        Apple Inc. (AAPL) Q4 2024 Earnings Summary

        Revenue came in at $94.9 billion, up 6% year-over-year. Services revenue
        hit a new all-time record of $25.0 billion, driven by advertising, App Store,
        and cloud services. Gross margin expanded 120 basis points to 46.2%.

        Management raised guidance for Q1 2025, citing strong iPhone 16 demand
        and continued growth in emerging markets. The company repurchased
        $25 billion of stock during the quarter.

        Risk Factors

        Foreign exchange headwinds remain a concern, with the strong dollar
        reducing international revenue by approximately 3 percentage points.
        Supply chain constraints in advanced chip manufacturing could impact
        product availability during peak holiday season.
    """)


@pytest.fixture
def sec_filing_text() -> str:
    """Long 10-K style text with repeated sections."""
    return (
        "PART I\n\n"
        "Item 1. Business\n\n"
        + "Apple Inc. designs smartphones and computers. "
        "The company operates globally with significant presence "
        "in North America, Europe, and Greater China. " * 20
        + "\n\nItem 1A. Risk Factors\n\n"
        + "Global economic conditions affect demand for consumer electronics. "
        "Foreign exchange fluctuations impact international revenue. " * 15
        + "\n\nItem 7. Management's Discussion and Analysis\n\n"
        + "Revenue for fiscal 2024 was $395.8 billion, an increase of 3.3% "
        "from $383.3 billion in fiscal 2023. " * 25
    )


@pytest.fixture
def filing_document(sec_filing_text: str) -> Document:
    return Document(
        id="aapl-10k-2024",
        ticker="AAPL",
        text=sec_filing_text,
        filing_date=date(2024, 11, 1),
        report_type=ReportType.FILING,
        source_url="https://www.sec.gov/Archives/edgar/data/320193/aapl-10k-2024.htm",
    )


@pytest.fixture
def transcript_document(earnings_summary_text: str) -> Document:
    return Document(
        id="aapl-q4-2024-call",
        ticker="AAPL",
        text=earnings_summary_text,
        filing_date=date(2024, 10, 31),
        report_type=ReportType.TRANSCRIPT,
    )


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedding_cache() -> InMemoryEmbeddingCache:
    return InMemoryEmbeddingCache()


@pytest.fixture
def embedder(fake_provider: FakeEmbeddingProvider, embedding_cache: InMemoryEmbeddingCache) -> Embedder:
    return Embedder(fake_provider, embedding_cache, retry_policy=FAST_RETRY)


@pytest.fixture
def chunker() -> OverlapChunker:
    return OverlapChunker(chunk_size=400, overlap=0.1, boundary_tolerance=0.15)


@pytest.fixture
def conversation_store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def memory(conversation_store: InMemoryConversationStore) -> ConversationMemory:
    return ConversationMemory(conversation_store, budget=2000)

