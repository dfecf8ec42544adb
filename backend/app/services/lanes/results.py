"""
Tagged lane outcomes.

Every lane returns exactly one of:

  LaneSuccess     — one or more documents were acquired
  LaneEscalation  — this strategy cannot help; a more expensive lane should try
  LaneFailure     — nothing was acquired and there is nothing to escalate

The orchestrator dispatches on the outcome type instead of checking flags.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from app.models.extraction import ExtractedDocument, TraceEntry


PDF_MAGIC = b"%PDF"


def is_pdf_bytes(content: Optional[bytes]) -> bool:
    """True when content is non-empty and starts with the PDF file signature."""
    return bool(content) and content[:4] == PDF_MAGIC


@dataclass
class LaneSuccess:
    documents: list[ExtractedDocument]
    trace: list[TraceEntry] = field(default_factory=list)


@dataclass
class LaneEscalation:
    reason: str
    next_hint: Optional[str] = None      # URL the next lane should start from
    error: Optional[str] = None
    trace: list[TraceEntry] = field(default_factory=list)


@dataclass
class LaneFailure:
    error: str
    trace: list[TraceEntry] = field(default_factory=list)


LaneOutcome = Union[LaneSuccess, LaneEscalation, LaneFailure]
