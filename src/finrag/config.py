"""Application settings loaded from YAML with environment variable overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from finrag.retry import RetryPolicy

# ---------------------------------------------------------------------------
# Settings sections
# ---------------------------------------------------------------------------


class EmbeddingSettings(BaseModel):
    provider: str = "ollama"
    model: str = "nomic-embed-text"
    dimension: int = 768
    batch_size: int = 64
    max_concurrency: int = 4
    requests_per_second: float | None = None


class EmbeddingCacheSettings(BaseModel):
    backend: Literal["sqlite", "memory"] = "sqlite"
    path: str = "local_data/embedding_cache.sqlite3"
    max_entries: int | None = None


class VectorStoreSettings(BaseModel):
    backend: str = "faiss"
    path: str = "local_data/vectorstore"
    url: str | None = None
    api_key: str | None = None
    dsn: str | None = None
    collections: dict[str, str] = Field(
        default_factory=lambda: {
            "filing": "filings",
            "transcript": "transcripts",
            "other": "other",
        }
    )


class LLMSettings(BaseModel):
    provider: str = "ollama"
    model: str = "deepseek-r1:32b"
    temperature: float = 0.2
    max_tokens: int = 2048


class ChunkingSettings(BaseModel):
    chunk_size: int = 4000
    overlap: float = 0.1
    boundary_tolerance: float = 0.15

    @field_validator("overlap")
    @classmethod
    def _check_overlap(cls, v: float) -> float:
        if not 0.0 <= v < 0.5:
            raise ValueError("overlap must be in [0, 0.5)")
        return v


class RetrievalSettings(BaseModel):
    top_k: int = 5
    overfetch_factor: float = 3.0
    max_fetch: int = 200


class MemorySettings(BaseModel):
    backend: Literal["memory", "postgres"] = "memory"
    dsn: str | None = None
    budget: int = 12000
    budget_unit: Literal["chars", "tokens"] = "chars"
    history_window: int = Field(default=50, ge=0)


class RetrySettings(BaseModel):
    max_attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 20.0

    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )


class EngineSettings(BaseModel):
    timeout_seconds: float | None = 120.0
    persist_attempts: int = 5


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseModel):
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    embedding_cache: EmbeddingCacheSettings = Field(default_factory=EmbeddingCacheSettings)
    vectorstore: VectorStoreSettings = Field(default_factory=VectorStoreSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)


def _find_settings_file() -> Path | None:
    """Walk up from cwd looking for settings.yaml."""
    profile = os.getenv("FINRAG_PROFILE", "")
    names = [f"settings-{profile}.yaml", "settings.yaml"] if profile else ["settings.yaml"]

    cwd = Path.cwd()
    for parent in [cwd, *cwd.parents]:
        for name in names:
            candidate = parent / name
            if candidate.exists():
                return candidate
    return None


def _apply_env_overrides(settings: Settings) -> Settings:
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        if settings.memory.dsn is None:
            settings.memory.dsn = database_url
        if settings.vectorstore.dsn is None:
            settings.vectorstore.dsn = database_url
    return settings


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from YAML file, falling back to defaults."""
    settings_path = Path(path) if path else _find_settings_file()
    if settings_path is None:
        return _apply_env_overrides(Settings())

    with open(settings_path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    return _apply_env_overrides(Settings(**raw))
