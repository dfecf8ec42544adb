"""
Pydantic response models for the email intake endpoints.

Models:
  InboundAcceptedResponse  — 202 body returned by the webhook
  DocumentResponse         — one acquired document, content base64-encoded
  AcquisitionResponse      — PipelineResult as JSON (operator endpoint)
"""

import base64
from typing import List, Optional
from pydantic import BaseModel

from app.models.extraction import Lane, PipelineResult, TraceEntry


class InboundAcceptedResponse(BaseModel):
    status: str = "accepted"
    message_id: Optional[str] = None
    sender_email: str
    policy_lane: str


class DocumentResponse(BaseModel):
    name: str
    source_url: Optional[str] = None
    size: int
    content_base64: str


class AcquisitionResponse(BaseModel):
    """
    JSON form of a PipelineResult.

    Document bytes are base64-encoded so the whole result survives a JSON
    round trip; everything else maps one to one.
    """
    success: bool
    lane: Lane
    documents: List[DocumentResponse] = []
    requires_escalation: bool = False
    escalation_reason: Optional[str] = None
    error: Optional[str] = None
    trace: List[TraceEntry] = []

    @classmethod
    def from_result(cls, result: PipelineResult) -> "AcquisitionResponse":
        return cls(
            success=result.success,
            lane=result.lane,
            documents=[
                DocumentResponse(
                    name=doc.name,
                    source_url=doc.source_url,
                    size=len(doc.content),
                    content_base64=base64.b64encode(doc.content).decode(),
                )
                for doc in result.documents
            ],
            requires_escalation=result.requires_escalation,
            escalation_reason=result.escalation_reason,
            error=result.error,
            trace=result.trace,
        )
