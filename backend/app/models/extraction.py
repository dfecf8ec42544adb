"""
Pydantic models for the document-acquisition pipeline.

Models:
  Lane                  — which acquisition strategy handled (or will handle) an email
  CandidateLink         — a hyperlink found in an email body
  ClassifiedLink        — a candidate link labelled direct_pdf / interactive_portal
  LinkClassification    — classifier output (document links + discarded links)
  LaneDecision          — decision matrix output
  InteractionSignal     — interaction detector output for one HTML page
  PinExtractionResult   — a PIN / access code pulled from the email
  TraceEntry            — one step in the audit trail
  ExtractedDocument     — one acquired PDF
  PipelineResult        — the pipeline's single output shape
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional
from pydantic import BaseModel, Field


class Lane(str, Enum):
    LANE1_ATTACHMENTS = "lane1_attachments"
    LANE2_DIRECT = "lane2_direct"
    LANE3_INTERACTIVE = "lane3_interactive"
    UNKNOWN = "unknown"


class LinkType(str, Enum):
    DIRECT_PDF = "direct_pdf"
    INTERACTIVE_PORTAL = "interactive_portal"


class InteractionKind(str, Enum):
    PIN = "pin"
    LOGIN = "login"
    BUTTON = "button"
    FORM = "form"


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

class CandidateLink(BaseModel):
    """A URL plus the anchor text it was found under (if any)."""
    url: str
    label: Optional[str] = None


class ClassifiedLink(CandidateLink):
    link_type: LinkType


class LinkClassification(BaseModel):
    """
    Result of classifying an email's candidate links.

    document_links are the only links that ever reach a lane; other_links
    (ads, unsubscribe, social) are kept for the trace.
    """
    document_links: List[ClassifiedLink] = []
    other_links: List[CandidateLink] = []
    reason: Optional[str] = None
    method: Literal["ai", "heuristic"] = "heuristic"

    def of_type(self, link_type: LinkType) -> List[ClassifiedLink]:
        return [link for link in self.document_links if link.link_type == link_type]


# ---------------------------------------------------------------------------
# Decision matrix
# ---------------------------------------------------------------------------

class LaneDecision(BaseModel):
    lane: Lane
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    # Links relevant to the chosen lane
    links: List[ClassifiedLink] = []
    # Full classifier output, kept so the orchestrator can pick an escalation target
    classification: Optional[LinkClassification] = None


# ---------------------------------------------------------------------------
# Interaction detection / PIN extraction
# ---------------------------------------------------------------------------

class InteractionSelectors(BaseModel):
    pin_input: List[str] = []
    submit_button: List[str] = []


class InteractionSignal(BaseModel):
    """Advisory only: informs escalation, never blocks."""
    requires_interaction: bool
    interaction_kind: Optional[InteractionKind] = None
    confidence: float = Field(ge=0.0, le=1.0)
    selectors: InteractionSelectors = InteractionSelectors()


class PinExtractionResult(BaseModel):
    pin: str
    method: Literal["ai", "regex"]
    confidence: float = Field(ge=0.0, le=1.0)
    reason: Optional[str] = None

    @property
    def masked(self) -> str:
        """PIN with everything after the first two characters hidden."""
        return self.pin[:2] + "****"


# ---------------------------------------------------------------------------
# Trace and results
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TraceEntry(BaseModel):
    step: str
    timestamp: datetime = Field(default_factory=_utcnow)
    data: Optional[dict[str, Any]] = None


class ExtractedDocument(BaseModel):
    name: str
    content: bytes
    source_url: Optional[str] = None


class PipelineResult(BaseModel):
    """
    Uniform pipeline output.

    Success and failure share this shape so callers never special-case an
    error channel; the trace is always populated.
    """
    success: bool
    documents: List[ExtractedDocument] = []
    lane: Lane
    requires_escalation: bool = False
    escalation_reason: Optional[str] = None
    error: Optional[str] = None
    trace: List[TraceEntry] = []
