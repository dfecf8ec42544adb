"""
Lane 2: direct download links.

Links are processed one at a time, in order:

  1. probe status and content type (no body download)
  2. inaccessible           -> skip
  3. HTML                   -> fetch and run the interaction detector; a page
                               that needs interaction ends the lane with an
                               escalation, remaining links are not tried
  4. anything else          -> download; keep it if it is a PDF

The loop is sequential on purpose: one gated page means the sender's flow
is interactive, and probing the remaining links would only add load on the
sender's servers.
"""

import logging
from typing import Callable, Optional

from app.models.extraction import CandidateLink, ExtractedDocument, LinkType
from app.models.extraction_policy import ExtractionPolicy
from app.models.inbound_email import InboundEmail
from app.services.interaction_detector import detect_html_interaction
from app.services.lanes.results import LaneEscalation, LaneFailure, LaneOutcome, LaneSuccess
from app.services.link_extractor import extract_email_links
from app.services.trace import Trace
from app.services.url_downloader import (
    DownloadError,
    UrlProbe,
    check_url_accessibility,
    download_pdf_from_url,
    fetch_html as fetch_html_page,
)

logger = logging.getLogger(__name__)

ProbeFn = Callable[..., UrlProbe]
FetchHtmlFn = Callable[..., Optional[str]]
DownloadFn = Callable[..., bytes]


def _links_to_try(email: InboundEmail, links: Optional[list[CandidateLink]]) -> list[CandidateLink]:
    if links:
        direct = [
            link for link in links
            if getattr(link, "link_type", LinkType.DIRECT_PDF) == LinkType.DIRECT_PDF
        ]
        if direct:
            return direct
    # Nothing usable supplied: fall back to the email's PDF-looking links
    return extract_email_links(email, pdf_only=True)


def _document_name(link: CandidateLink, index: int) -> str:
    if link.label and link.label.strip().lower().endswith(".pdf"):
        return link.label.strip()
    return f"downloaded-{index}.pdf"


def process_direct_links(
    email: InboundEmail,
    policy: ExtractionPolicy,
    links: Optional[list[CandidateLink]] = None,
    probe: ProbeFn = check_url_accessibility,
    fetch_html: FetchHtmlFn = fetch_html_page,
    download: DownloadFn = download_pdf_from_url,
) -> LaneOutcome:
    """
    Download PDFs from the given links (or the email's own links).

    Args:
        email:      The inbound email; its links are used when none are given.
        policy:     Sender policy (redirect settings).
        links:      Links chosen by the decision matrix. Only direct_pdf links are used.
        probe:      URL accessibility probe.
        fetch_html: HTML fetcher used for interaction detection.
        download:   PDF download primitive; raises DownloadError on failure.
    """
    trace = Trace()
    trace.add("lane2_start")

    candidates = _links_to_try(email, links)
    trace.add("links_extracted", link_count=len(candidates))

    if not candidates:
        return LaneFailure(error="No links found in email", trace=trace.entries)

    http_options = {
        "follow_redirects": policy.lane2.follow_redirects,
        "max_redirects": policy.lane2.max_redirects,
    }

    documents: list[ExtractedDocument] = []
    for link in candidates:
        url = link.url
        accessibility = probe(url, **http_options)
        trace.add(
            "url_checked",
            url=url,
            accessible=accessibility.accessible,
            content_type=accessibility.content_type,
        )

        if not accessibility.accessible:
            logger.warning(f"URL not accessible, skipping: {url}")
            continue

        if accessibility.is_html:
            html = fetch_html(url, **http_options)
            if html is not None:
                signal = detect_html_interaction(html)
                trace.add(
                    "interaction_detected",
                    url=url,
                    requires_interaction=signal.requires_interaction,
                    interaction_kind=signal.interaction_kind.value if signal.interaction_kind else None,
                    confidence=signal.confidence,
                )
                if signal.requires_interaction:
                    kind = signal.interaction_kind.value if signal.interaction_kind else "unknown"
                    reason = f"HTML requires {kind} interaction"
                    logger.info(f"{url} requires {kind} interaction, escalating")
                    return LaneEscalation(reason=reason, next_hint=url, trace=trace.entries)

        try:
            content = download(url, **http_options)
        except DownloadError as e:
            logger.warning(f"Failed to download PDF from {url}: {e}")
            trace.add("download_failed", url=url, error=str(e))
            continue

        name = _document_name(link, len(documents) + 1)
        documents.append(ExtractedDocument(name=name, content=content, source_url=url))
        trace.add("pdf_downloaded", url=url, filename=name, size=len(content))

    if not documents:
        return LaneFailure(error="No PDFs could be downloaded from links", trace=trace.entries)

    trace.add("lane2_complete", pdf_count=len(documents))
    logger.info(f"Lane 2 downloaded {len(documents)} PDF(s)")
    return LaneSuccess(documents=documents, trace=trace.entries)
