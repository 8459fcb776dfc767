"""Documents — data model and normalization."""

from finrag.documents.normalize import (
    NormalizeConfig,
    normalize_text,
    sanitize_document_text,
)
from finrag.documents.schemas import Document, ReportType

__all__ = [
    "Document",
    "NormalizeConfig",
    "ReportType",
    "normalize_text",
    "sanitize_document_text",
]
