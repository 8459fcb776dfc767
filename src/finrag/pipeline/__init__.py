"""End-to-end pipelines — ingestion and conversation, plus prompts and citations."""

from finrag.pipeline.builder import Components, build_components
from finrag.pipeline.engine import ConversationEngine
from finrag.pipeline.ingest import IngestPipeline
from finrag.pipeline.schemas import Citation, ConversationTurn, IngestResult

__all__ = [
    "Citation",
    "Components",
    "ConversationEngine",
    "ConversationTurn",
    "IngestPipeline",
    "IngestResult",
    "build_components",
]
