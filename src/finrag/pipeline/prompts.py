"""Financial-domain system prompts for the conversation engine."""

from __future__ import annotations

from collections.abc import Sequence

from finrag.documents.schemas import ReportType
from finrag.memory.base import default_system_prompt

# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

ANALYST_SYSTEM_PROMPT = """\
You are a senior investment research analyst in an ongoing conversation about \
company disclosures. Answer using ONLY the numbered sources supplied with the \
question and the earlier conversation. If they do not contain enough \
information, say so explicitly.

Rules:
1. Cite sources as [1], [2], etc., matching the numbered sources.
2. Be precise with financial figures; do not round unless the source rounds.
3. Separate what the filings state from your own analysis.
4. If sources conflict, note the discrepancy and the dates involved.
"""

# ---------------------------------------------------------------------------
# Report-type focus
# ---------------------------------------------------------------------------

FILING_FOCUS = """\
The sources are SEC filings. Focus on material changes, risk factors and \
financial trends, with year-over-year comparisons where the filing gives them.
"""

TRANSCRIPT_FOCUS = """\
The sources are earnings-call transcripts. Focus on management guidance, key \
metrics and analyst concerns, and attribute statements to speakers when possible.
"""

_FOCUS = {
    ReportType.FILING: FILING_FOCUS,
    ReportType.TRANSCRIPT: TRANSCRIPT_FOCUS,
}


def build_system_prompt(
    report_type: ReportType | None = None,
    tickers: Sequence[str] = (),
    base: str = ANALYST_SYSTEM_PROMPT,
) -> str:
    """Base prompt plus report-type focus and, for new conversations, the tickers."""
    parts = [base]
    if report_type in _FOCUS:
        parts.append(_FOCUS[report_type])
    if tickers:
        parts.append(default_system_prompt(tickers))
    return "\n".join(p.rstrip("\n") for p in parts)
