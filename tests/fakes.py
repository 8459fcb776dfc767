"""Deterministic fakes shared across tests — no network, no model downloads."""

from __future__ import annotations

import asyncio
import hashlib
from datetime import date

import numpy as np

from finrag.chunking.schemas import Chunk, ChunkMetadata, content_hash
from finrag.documents.schemas import ReportType
from finrag.embeddings.base import EmbeddingProvider
from finrag.errors import ProviderError
from finrag.llm.base import LLMProvider
from finrag.memory.schemas import PromptContext
from finrag.retry import RetryPolicy
from finrag.vectorstore.schemas import VectorRecord

DIM = 32

# No sleeping between retries in tests.
FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)


def hash_vector(text: str, dim: int = DIM) -> list[float]:
    """Deterministic unit vector derived from the text's SHA-256."""
    h = hashlib.sha256(text.encode()).digest()
    vec = np.array([(h[i % len(h)] / 255.0) * 2 - 1 for i in range(dim)], dtype=np.float32)
    vec /= np.linalg.norm(vec)
    return vec.tolist()


def axis_vector(*weights: float, dim: int = DIM) -> list[float]:
    """Vector with the given leading components and zeros elsewhere."""
    vec = [0.0] * dim
    for i, w in enumerate(weights):
        vec[i] = w
    return vec


# ---------------------------------------------------------------------------
# Fake providers
# ---------------------------------------------------------------------------


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic embeddings that count every provider call.

    ``vectors`` pins specific texts to specific vectors; everything else is
    hashed. ``fail_times`` makes the next N calls raise ``ProviderError``.
    """

    max_batch_size = 8

    def __init__(
        self,
        dim: int = DIM,
        model: str = "fake-embed",
        vectors: dict[str, list[float]] | None = None,
        fail_times: int = 0,
        delay: float = 0.0,
    ):
        self.model = model
        self._dim = dim
        self.vectors = dict(vectors or {})
        self.fail_times = fail_times
        self.delay = delay
        self.calls: list[list[str]] = []

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ProviderError("simulated outage", provider="fake")
        return [self.vectors.get(t) or hash_vector(t, self._dim) for t in texts]

    @property
    def dimension(self) -> int:
        return self._dim

    @property
    def embedded_texts(self) -> list[str]:
        return [t for call in self.calls for t in call]

    @classmethod
    def provider_name(cls) -> str:
        return "fake"


class FakeLLM(LLMProvider):
    """Returns a canned answer and records every context it was given."""

    def __init__(
        self,
        answer: str = "Revenue grew 6% year-over-year [1]. Services hit a record [2].",
        delay: float = 0.0,
        fail_times: int = 0,
    ):
        self.model = "fake-llm"
        self.answer = answer
        self.delay = delay
        self.fail_times = fail_times
        self.contexts: list[PromptContext] = []

    async def generate(self, context: PromptContext) -> str:
        self.contexts.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ProviderError("simulated generation outage", provider="fake")
        return self.answer

    @classmethod
    def provider_name(cls) -> str:
        return "fake"


# ---------------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------------


def make_record(
    document_id: str,
    seq: int,
    text: str,
    embedding: list[float],
    *,
    start: int | None = None,
    end: int | None = None,
    ticker: str = "AAPL",
    filing_date: date | None = date(2024, 11, 1),
    report_type: ReportType = ReportType.FILING,
    model: str = "fake:fake-embed",
) -> VectorRecord:
    start = seq * 1000 if start is None else start
    end = start + len(text) if end is None else end
    chunk = Chunk(
        document_id=document_id,
        seq=seq,
        text=text,
        start_char=start,
        end_char=end,
        content_hash=content_hash(text),
        metadata=ChunkMetadata(ticker=ticker, filing_date=filing_date, report_type=report_type),
    )
    return VectorRecord.from_chunk(chunk, embedding, model)
