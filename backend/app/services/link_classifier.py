"""
Link classification service.

Labels each candidate link in an email as a document link (direct_pdf or
interactive_portal) or an irrelevant link (ads, unsubscribe, social).

Two implementations behind one interface:

  ClaudeLinkClassifier     — advisory Claude call, raises on any failure
  HeuristicLinkClassifier  — deterministic: every link is a document link,
                             direct_pdf when the URL path ends in .pdf

FallbackLinkClassifier wraps the two so that callers never observe an
advisory failure.
"""

import json
import logging
from typing import Optional
from urllib.parse import urlparse

from app.models.extraction import CandidateLink, ClassifiedLink, LinkClassification, LinkType
from app.models.inbound_email import InboundEmail
from app.services.claude_json import ask_claude_for_json

logger = logging.getLogger(__name__)

# Max characters of each email body sent to Claude
_MAX_BODY_CHARS = 2000

CLASSIFY_PROMPT = """\
You are analyzing a utility/billing notification email to find the links that lead to the actual bill, invoice or statement document.

For every link decide:
- "direct_pdf": the link downloads a PDF document directly (possibly through a redirect or tracking URL)
- "interactive_portal": the link opens a web page where the document can be obtained after entering a PIN, logging in or clicking a button
- "other": anything else (unsubscribe, social media, marketing, help pages, logos)
{instruction_block}
Respond with ONLY valid JSON matching this schema:
{
  "links": [{"url": string, "type": "direct_pdf" | "interactive_portal" | "other"}],
  "reason": string
}

EMAIL:
Subject: {subject}
From: {sender}

Text body:
{text_body}

HTML body:
{html_body}

LINKS:
{links}
"""


def _path_is_pdf(url: str) -> bool:
    return urlparse(url).path.lower().endswith(".pdf")


class LinkClassifier:
    """Interface for link classifiers."""

    def classify(
        self,
        email: InboundEmail,
        links: list[CandidateLink],
        instruction: Optional[str] = None,
    ) -> LinkClassification:
        raise NotImplementedError


class HeuristicLinkClassifier(LinkClassifier):
    """Extension sniffing: .pdf paths are direct PDFs, everything else a portal."""

    def classify(self, email, links, instruction=None):
        document_links = [
            ClassifiedLink(
                url=link.url,
                label=link.label,
                link_type=LinkType.DIRECT_PDF if _path_is_pdf(link.url) else LinkType.INTERACTIVE_PORTAL,
            )
            for link in links
        ]
        return LinkClassification(
            document_links=document_links,
            other_links=[],
            reason="Classified by URL extension",
            method="heuristic",
        )


class ClaudeLinkClassifier(LinkClassifier):
    """Claude-backed classifier. Raises on timeout, API error or a malformed reply."""

    def classify(self, email, links, instruction=None):
        if not links:
            return LinkClassification(method="ai", reason="No links to classify")

        instruction_block = f"\nAdditional instructions for this sender: {instruction}\n" if instruction else ""
        prompt = (
            CLASSIFY_PROMPT
            .replace("{instruction_block}", instruction_block)
            .replace("{subject}", email.subject or "(no subject)")
            .replace("{sender}", email.sender_email or "(unknown)")
            .replace("{text_body}", (email.text_body or "")[:_MAX_BODY_CHARS])
            .replace("{html_body}", (email.html_body or "")[:_MAX_BODY_CHARS])
            .replace("{links}", json.dumps([link.model_dump() for link in links], indent=2))
        )

        reply = ask_claude_for_json(prompt, max_tokens=1024)
        entries = reply.get("links")
        if not isinstance(entries, list):
            raise ValueError("Claude reply has no 'links' list")

        by_url = {link.url: link for link in links}
        types: dict[str, str] = {}
        for entry in entries:
            if isinstance(entry, dict) and entry.get("url") in by_url:
                types[entry["url"]] = str(entry.get("type", "other"))

        document_links: list[ClassifiedLink] = []
        other_links: list[CandidateLink] = []
        # Keep the extractor's order; links Claude skipped count as "other"
        for link in links:
            link_type = types.get(link.url, "other")
            if link_type in (LinkType.DIRECT_PDF.value, LinkType.INTERACTIVE_PORTAL.value):
                document_links.append(
                    ClassifiedLink(url=link.url, label=link.label, link_type=LinkType(link_type))
                )
            else:
                other_links.append(link)

        return LinkClassification(
            document_links=document_links,
            other_links=other_links,
            reason=reply.get("reason"),
            method="ai",
        )


class FallbackLinkClassifier(LinkClassifier):
    """Use the primary classifier; on any exception return the fallback's result."""

    def __init__(self, primary: LinkClassifier, fallback: LinkClassifier):
        self.primary = primary
        self.fallback = fallback

    def classify(self, email, links, instruction=None):
        try:
            return self.primary.classify(email, links, instruction)
        except Exception as e:
            logger.warning(
                f"Link classification via {type(self.primary).__name__} failed, "
                f"using {type(self.fallback).__name__}: {e}"
            )
            logger.debug("Link classification fallback", exc_info=True)
            return self.fallback.classify(email, links, instruction)


def default_link_classifier() -> LinkClassifier:
    """Claude first, extension sniffing as fallback."""
    return FallbackLinkClassifier(ClaudeLinkClassifier(), HeuristicLinkClassifier())
