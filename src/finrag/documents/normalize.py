"""Text normalization applied before chunking.

Three passes, in order:
1. Whitespace/unicode normalization (always on; chunk hashes depend on it)
2. Prompt-injection redaction (retrieved text ends up inside LLM prompts)
3. Optional paragraph-level boilerplate removal (safe-harbor, forward-looking
   statement notices and similar)
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_HORIZONTAL_WS = re.compile(r"[ \t ]+")
_TRAILING_WS = re.compile(r"[ \t]+\n")
_BLANK_LINES = re.compile(r"\n{3,}")

_INJECTION_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(?i)ignore\s+(?:all\s+)?previous\s+instructions"),
    re.compile(r"(?i)you\s+are\s+now\s+an?\b"),
    re.compile(r"(?im)^\s*system\s*:"),
    re.compile(r"(?i)</?system>"),
    re.compile(r"(?im)^\s*assistant\s*:"),
    re.compile(r"(?i)forget\s+(?:everything|your)\b"),
    re.compile(r"(?i)new\s+instructions\s*:"),
    re.compile(r"(?i)override\s+your\s+(?:instructions|rules)"),
]

_REDACTED = "[REDACTED]"

_BOILERPLATE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(?i)safe\s+harbor\s+(?:statement|provision)"),
    re.compile(r"(?i)this\s+(?:call|presentation)\s+(?:may\s+)?contains?\s+forward[- ]looking"),
    re.compile(r"(?i)(?:all|any)\s+(?:rights?\s+)?reserved"),
    re.compile(r"(?i)(?:the\s+)?securities\s+and\s+exchange\s+commission\s+has\s+not"),
    re.compile(r"(?i)xbrl\s+(?:instance|taxonomy|viewer)"),
]


@dataclass
class NormalizeConfig:
    """Toggles for the optional passes."""

    redact_injections: bool = True
    strip_boilerplate: bool = False
    protected_keywords: list[str] = field(
        default_factory=lambda: ["material nonpublic", "guidance"]
    )


def normalize_whitespace(text: str) -> str:
    """Unicode NFKC, strip control characters, collapse horizontal whitespace.

    Paragraph breaks (blank lines) survive as exactly one empty line.
    """
    text = unicodedata.normalize("NFKC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _TRAILING_WS.sub("\n", text)
    text = _BLANK_LINES.sub("\n\n", text)
    return text.strip()


def sanitize_document_text(text: str) -> str:
    """Replace known prompt-injection phrases with ``[REDACTED]``."""
    if not text:
        return text
    hits = 0
    for pattern in _INJECTION_PATTERNS:
        text, n = pattern.subn(_REDACTED, text)
        hits += n
    if hits:
        logger.warning("Redacted %d prompt-injection pattern(s) from document text", hits)
    return text


def strip_boilerplate(text: str, protected_keywords: list[str] | None = None) -> str:
    """Drop paragraphs that match a boilerplate pattern and no protected keyword."""
    protected = [kw.lower() for kw in (protected_keywords or [])]
    kept: list[str] = []
    removed = 0
    for para in re.split(r"\n{2,}", text):
        lower = para.lower()
        if not any(kw in lower for kw in protected) and any(
            p.search(para) for p in _BOILERPLATE_PATTERNS
        ):
            removed += 1
            continue
        kept.append(para)
    if removed:
        logger.info("Boilerplate filter removed %d paragraphs", removed)
    return "\n\n".join(kept)


def normalize_text(text: str, config: NormalizeConfig | None = None) -> str:
    """Run all enabled normalization passes."""
    cfg = config or NormalizeConfig()
    text = normalize_whitespace(text)
    if cfg.redact_injections:
        text = sanitize_document_text(text)
    if cfg.strip_boilerplate:
        text = strip_boilerplate(text, cfg.protected_keywords)
    return text
