"""
Provider-agnostic inbound email model.

These models represent a normalized inbound email after provider-specific
fields have been stripped away. The acquisition pipeline works exclusively
with these models; only the adapter layer knows about Postmark/Resend formats.

Both models are frozen: an inbound email is immutable for the lifetime of
one pipeline invocation.
"""

from typing import Optional
from pydantic import BaseModel, model_validator


class InboundAttachment(BaseModel):
    """A single file attachment, already decoded to raw bytes."""

    model_config = {"frozen": True}

    filename: str
    content: bytes          # raw bytes; the adapter base64-decodes
    content_type: str
    content_length: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _default_content_length(cls, data):
        if isinstance(data, dict) and data.get("content_length") is None:
            data = {**data, "content_length": len(data.get("content") or b"")}
        return data

    @property
    def is_pdf(self) -> bool:
        """True when the content type or filename marks this as a PDF."""
        return (
            self.content_type.lower() == "application/pdf"
            or self.filename.lower().endswith(".pdf")
        )


class InboundEmail(BaseModel):
    """
    Normalized inbound email, provider-agnostic.

    All provider-specific field names (e.g. Postmark's PascalCase, Resend's
    snake_case) are mapped to these canonical names by the adapter layer before
    the pipeline ever sees the data.
    """

    model_config = {"frozen": True}

    message_id: str = ""
    sender_email: str
    recipient_email: str
    subject: Optional[str] = None
    html_body: Optional[str] = None
    text_body: Optional[str] = None
    attachments: tuple[InboundAttachment, ...] = ()

    @property
    def body(self) -> str:
        """HTML body when present, else the plain-text body."""
        return self.html_body or self.text_body or ""
