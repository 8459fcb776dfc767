"""Citation extraction and source mapping.

Parses [1], [2], etc. from LLM output and maps them back to the retrieved
passages that were numbered in the prompt.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from finrag.pipeline.schemas import Citation
from finrag.retrieval.schemas import RetrievedPassage

# Matches [1], [2], [3,4], [1-3], etc.
_CITATION_RE = re.compile(r"\[(\d+(?:\s*[,\-]\s*\d+)*)\]")

_SNIPPET_CHARS = 200


def cited_numbers(answer: str) -> set[int]:
    """Every source number referenced by the answer, ranges expanded."""
    numbers: set[int] = set()
    for match in _CITATION_RE.finditer(answer):
        for part in match.group(1).split(","):
            part = part.strip()
            if "-" in part:
                start, end = (int(p) for p in part.split("-", 1))
                numbers.update(range(start, end + 1))
            else:
                numbers.add(int(part))
    return numbers


def extract_citations(
    answer: str,
    passages: Sequence[RetrievedPassage],
) -> list[Citation]:
    """Map citation numbers in an answer to the passages shown to the model.

    Numbers outside ``1..len(passages)`` are ignored.
    """
    citations: list[Citation] = []
    for idx in sorted(cited_numbers(answer)):
        if not 1 <= idx <= len(passages):
            continue
        passage = passages[idx - 1]
        snippet = passage.text
        if len(snippet) > _SNIPPET_CHARS:
            snippet = snippet[:_SNIPPET_CHARS] + "..."
        citations.append(Citation(
            index=idx,
            chunk_id=passage.chunk_id,
            document_id=passage.document_id,
            text=snippet,
            ticker=passage.metadata.ticker,
            score=passage.score,
        ))
    return citations


def format_citations(citations: list[Citation]) -> str:
    """Markdown source list for display under an answer."""
    if not citations:
        return ""

    lines = ["\n---\n**Sources:**"]
    for c in citations:
        parts = [f"[{c.index}]"]
        if c.ticker:
            parts.append(c.ticker)
        parts.append(c.document_id)
        lines.append(f"- {' | '.join(parts)}")
    return "\n".join(lines)
