"""
Inbound email adapter service.

Normalizes provider-specific inbound webhook payloads into a single
provider-agnostic InboundEmail model.

Supported providers:
  - postmark
  - resend    (default; set EMAIL_PROVIDER=resend or pass provider="resend")

Adding a new provider:
  1. Write a normalize_<provider>(payload: dict) -> InboundEmail function.
  2. Register it in _NORMALIZERS.
  3. Set EMAIL_PROVIDER=<provider> in the environment.

Resend inbound webhook field assumptions
----------------------------------------
  message_id    str   — provider message id (falls back to "id")
  from          str   — sender address, e.g. "Billing <billing@example.com>"
  to            str   — recipient address (or a list of addresses)
  subject       str   — email subject line
  html          str   — HTML body
  text          str   — plain-text body
  attachments   list  — each item has:
                          filename     str   — original filename
                          content      str   — base64-encoded file bytes
                          content_type str   — MIME type

If Resend changes their schema, only this file needs updating.
"""

import base64
import binascii
import logging
import os
from typing import Callable, Optional

from app.models.inbound_email import InboundAttachment, InboundEmail

logger = logging.getLogger(__name__)


def _decode_content(raw: Optional[str], filename: str) -> bytes:
    """Base64-decode attachment content; undecodable content becomes empty bytes."""
    if not raw:
        return b""
    try:
        return base64.b64decode(raw)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Could not decode attachment {filename!r}: {e}")
        return b""


def _first_address(value) -> str:
    if isinstance(value, list):
        return str(value[0]) if value else ""
    return value or ""


# ---------------------------------------------------------------------------
# Postmark normalizer
# ---------------------------------------------------------------------------

def normalize_postmark(payload: dict) -> InboundEmail:
    """
    Convert a Postmark inbound webhook payload to InboundEmail.

    Postmark uses PascalCase keys:
      MessageID, From, To, Subject, HtmlBody, TextBody,
      Attachments[].{Name, Content, ContentType, ContentLength}

    Content is base64-encoded in Postmark payloads.
    """
    attachments: list[InboundAttachment] = []
    for att in payload.get("Attachments") or []:
        name = att.get("Name") or "attachment"
        attachments.append(
            InboundAttachment(
                filename=name,
                content=_decode_content(att.get("Content"), name),
                content_type=att.get("ContentType") or "application/octet-stream",
                content_length=att.get("ContentLength"),
            )
        )

    return InboundEmail(
        message_id=payload.get("MessageID") or "",
        sender_email=payload.get("From", ""),
        recipient_email=payload.get("To", ""),
        subject=payload.get("Subject"),
        html_body=payload.get("HtmlBody") or None,
        text_body=payload.get("TextBody") or None,
        attachments=tuple(attachments),
    )


# ---------------------------------------------------------------------------
# Resend normalizer
# ---------------------------------------------------------------------------

def normalize_resend(payload: dict) -> InboundEmail:
    """
    Convert a Resend inbound webhook payload to InboundEmail.

    Resend uses snake_case keys:
      message_id, from, to, subject, html, text,
      attachments[].{filename, content, content_type}

    content is base64-encoded in Resend payloads.
    """
    attachments: list[InboundAttachment] = []
    for att in payload.get("attachments") or []:
        name = att.get("filename") or "attachment"
        attachments.append(
            InboundAttachment(
                filename=name,
                content=_decode_content(att.get("content"), name),
                content_type=att.get("content_type") or "application/octet-stream",
            )
        )

    return InboundEmail(
        message_id=payload.get("message_id") or payload.get("id") or "",
        sender_email=payload.get("from", ""),
        recipient_email=_first_address(payload.get("to")),
        subject=payload.get("subject"),
        html_body=payload.get("html") or None,
        text_body=payload.get("text") or None,
        attachments=tuple(attachments),
    )


# ---------------------------------------------------------------------------
# Registry and dispatcher
# ---------------------------------------------------------------------------

_NORMALIZERS: dict[str, Callable[[dict], InboundEmail]] = {
    "postmark": normalize_postmark,
    "resend": normalize_resend,
}


def normalize_webhook(payload: dict, provider: str | None = None) -> InboundEmail:
    """
    Route to the correct normalizer based on the provider argument or the
    EMAIL_PROVIDER environment variable.

    Priority:
      1. provider argument (explicit, used in tests and the webhook endpoint)
      2. EMAIL_PROVIDER env var
      3. Default: "resend"

    Raises ValueError for unknown provider names.
    """
    resolved = provider or os.getenv("EMAIL_PROVIDER", "resend")
    resolved = resolved.lower().strip()

    normalizer = _NORMALIZERS.get(resolved)
    if normalizer is None:
        raise ValueError(
            f"Unknown email provider {resolved!r}. "
            f"Supported providers: {sorted(_NORMALIZERS)}"
        )

    return normalizer(payload)
