"""
Lane 1: PDF attachments.

The cheapest lane. Keeps the attachments that are PDFs (by content type or
filename) and whose bytes carry the %PDF signature. This lane never
escalates: the decision matrix only picks it when a PDF attachment exists,
so finding none is a plain failure.
"""

import logging

from app.models.extraction import ExtractedDocument
from app.models.inbound_email import InboundEmail
from app.services.lanes.results import LaneFailure, LaneOutcome, LaneSuccess, is_pdf_bytes
from app.services.trace import Trace

logger = logging.getLogger(__name__)

# Filename keywords -> document type hint recorded in the trace
_DOC_TYPE_KEYWORDS = [
    ("invoice", ("invoice", "inv_", "inv-", "tax")),
    ("statement", ("statement", "stmt", "account", "bill")),
]


def classify_document_name(filename: str) -> tuple[str, float]:
    """Guess a document type from its filename. Returns (type, confidence)."""
    lower = (filename or "").lower()
    for doc_type, keywords in _DOC_TYPE_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return doc_type, 0.7
    return "other", 0.3


def process_attachments(email: InboundEmail) -> LaneOutcome:
    """Return every valid PDF attachment as a document."""
    trace = Trace()
    trace.add("lane1_start")

    if not email.attachments:
        return LaneFailure(error="No attachments found in email", trace=trace.entries)

    trace.add("attachments_found", count=len(email.attachments))

    documents: list[ExtractedDocument] = []
    for attachment in email.attachments:
        if not attachment.is_pdf:
            logger.info(f"Skipping non-PDF attachment: {attachment.filename}")
            continue

        if not attachment.content:
            logger.warning(f"Attachment {attachment.filename} has no content")
            trace.add("attachment_skipped", filename=attachment.filename, reason="empty")
            continue

        if not is_pdf_bytes(attachment.content):
            logger.warning(f"Attachment {attachment.filename} is not a valid PDF")
            trace.add("attachment_skipped", filename=attachment.filename, reason="invalid_pdf")
            continue

        doc_type, confidence = classify_document_name(attachment.filename)
        trace.add(
            "document_classified",
            filename=attachment.filename,
            type=doc_type,
            confidence=confidence,
        )
        documents.append(ExtractedDocument(name=attachment.filename, content=attachment.content))

    if not documents:
        return LaneFailure(error="No valid PDF attachments found", trace=trace.entries)

    trace.add("lane1_complete", pdf_count=len(documents))
    logger.info(f"Lane 1 collected {len(documents)} PDF attachment(s)")
    return LaneSuccess(documents=documents, trace=trace.entries)
