"""
Link extraction service.

Parses an email body (HTML or plain text) into candidate hyperlinks.

Public API:
  extract_links(body, is_html, pdf_only=False)   -> list[CandidateLink]
  extract_email_links(email, pdf_only=False)     -> list[CandidateLink]
  looks_like_pdf_link(url, label=None)           -> bool

All results are deduplicated by exact URL; the first occurrence wins and
keeps its label. No network access.
"""

import logging
import re
from typing import Iterable, Optional

from bs4 import BeautifulSoup

from app.models.extraction import CandidateLink
from app.models.inbound_email import InboundEmail

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_URL_RE = re.compile(r"https?://[^\s<>\"'()]+", re.IGNORECASE)

# Trailing punctuation that is almost always sentence text, not URL
_TRAILING_PUNCTUATION = ".,;:!?"

# "Download PDF: https://..." / "View statement https://..."
_DOWNLOAD_PHRASE_RE = re.compile(
    r"(?:download|view|get|access)[\s:]+(?:pdf|document|statement|invoice)[\s:]*\s*(https?://[^\s<>\"']+)",
    re.IGNORECASE,
)

_PDF_PATH_HINTS = ("/pdf/", "/document/", "/download/")
_PDF_QUERY_HINTS = ("type=pdf", "format=pdf")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_http_url(url: str) -> bool:
    lower = url.lower()
    return lower.startswith("http://") or lower.startswith("https://")


def _clean_url(url: str) -> str:
    return url.strip().rstrip(_TRAILING_PUNCTUATION)


def looks_like_pdf_link(url: str, label: Optional[str] = None) -> bool:
    """
    Guess whether a link points at a PDF without fetching it.

    Tracking and redirect links often hide the filename in a query parameter
    or only mention it in the anchor text, so both are checked.
    """
    if not url or not _is_http_url(url):
        return False

    lower = url.lower()
    # Covers both a .pdf path and a filename buried in a query string
    if ".pdf" in lower:
        return True
    if any(hint in lower for hint in _PDF_PATH_HINTS):
        return True
    if "?" in lower and any(hint in lower for hint in _PDF_QUERY_HINTS):
        return True
    if label and ".pdf" in label.lower():
        return True
    return False


def _dedupe(links: Iterable[CandidateLink]) -> list[CandidateLink]:
    seen: set[str] = set()
    unique: list[CandidateLink] = []
    for link in links:
        if link.url in seen:
            continue
        seen.add(link.url)
        unique.append(link)
    return unique


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

def _links_from_html(html: str) -> list[CandidateLink]:
    soup = BeautifulSoup(html, "html.parser")
    links: list[CandidateLink] = []

    for anchor in soup.find_all("a", href=True):
        url = _clean_url(anchor["href"])
        if not _is_http_url(url):
            continue
        label = anchor.get_text(" ", strip=True) or None
        links.append(CandidateLink(url=url, label=label))

    # Bare URLs that appear in the markup but not inside an anchor
    for match in _URL_RE.finditer(soup.get_text(" ")):
        links.append(CandidateLink(url=_clean_url(match.group(0))))

    return links


def _links_from_text(text: str) -> list[CandidateLink]:
    links = [CandidateLink(url=_clean_url(m.group(0))) for m in _URL_RE.finditer(text)]
    return links


def _pdf_links_from_text(text: str) -> list[CandidateLink]:
    links = [link for link in _links_from_text(text) if looks_like_pdf_link(link.url)]
    # "Download statement: <url>" marks a document link even without a .pdf path
    for match in _DOWNLOAD_PHRASE_RE.finditer(text):
        links.append(CandidateLink(url=_clean_url(match.group(1))))
    return links


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_links(body: Optional[str], is_html: bool, pdf_only: bool = False) -> list[CandidateLink]:
    """
    Extract candidate links from one email body.

    Args:
        body:     The HTML or plain-text body.
        is_html:  Which parser to use.
        pdf_only: Keep only links that look like PDFs (see looks_like_pdf_link).

    Returns:
        Deduplicated links in document order. An empty body yields [].
    """
    if not body or not body.strip():
        return []

    if is_html:
        links = _links_from_html(body)
        if pdf_only:
            links = [link for link in links if looks_like_pdf_link(link.url, link.label)]
    else:
        links = _pdf_links_from_text(body) if pdf_only else _links_from_text(body)

    return _dedupe(links)


def extract_email_links(email: InboundEmail, pdf_only: bool = False) -> list[CandidateLink]:
    """
    Extract links from both bodies of an email (HTML first, then text),
    deduplicated by URL across the two sources.
    """
    html_links = extract_links(email.html_body, is_html=True, pdf_only=pdf_only)
    text_links = extract_links(email.text_body, is_html=False, pdf_only=pdf_only)
    links = _dedupe(html_links + text_links)
    logger.debug(
        "Extracted %d link(s) from email %s (pdf_only=%s)",
        len(links), email.message_id, pdf_only,
    )
    return links
