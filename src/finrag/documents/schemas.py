"""Data models for ingested documents."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import StrEnum


class ReportType(StrEnum):
    """Supported financial document categories."""

    FILING = "filing"
    TRANSCRIPT = "transcript"
    OTHER = "other"


@dataclass(frozen=True)
class Document:
    """A normalized financial disclosure, immutable once ingested.

    Attributes:
        id: Stable identifier; re-ingesting a corrected version uses a new id.
        ticker: Stock ticker the disclosure belongs to.
        filing_date: Filing or call date.
        report_type: Filing, transcript or other.
        text: Normalized full text.
        source_url: Where the raw document was fetched from.
    """

    id: str
    ticker: str
    text: str
    filing_date: date | None = None
    report_type: ReportType = ReportType.OTHER
    source_url: str | None = None
