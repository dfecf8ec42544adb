"""
Lane 3 (deterministic): PIN-gated portal driven by fixed selectors.

States: start -> pin_extraction -> browser_launch -> navigate ->
[pin_entry -> submit] -> wait_for_content -> pdf_acquisition -> complete,
with an error exit from every state. Every failure escalates, so the
orchestrator can hand the same URL to the agentic backend.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from app.models.extraction import ExtractedDocument
from app.models.extraction_policy import ExtractionPolicy, PortalSelectors
from app.models.inbound_email import InboundEmail
from app.services.browser_automation import BrowserAutomationResult, automate_browser_interaction
from app.services.lanes.results import LaneEscalation, LaneOutcome, LaneSuccess, is_pdf_bytes
from app.services.pin_extractor import PinExtractor, default_pin_extractor
from app.services.trace import Trace

logger = logging.getLogger(__name__)

AutomateFn = Callable[[str, Optional[str], PortalSelectors], BrowserAutomationResult]


def statement_name() -> str:
    """Deterministic portal document name: statement-<UTC timestamp>.pdf"""
    return f"statement-{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S%fZ')}.pdf"


def process_interactive_portal(
    url: str,
    email: InboundEmail,
    policy: ExtractionPolicy,
    pin_extractor: Optional[PinExtractor] = None,
    automate: AutomateFn = automate_browser_interaction,
) -> LaneOutcome:
    """Extract the PIN from the email and drive the portal with Playwright."""
    trace = Trace()
    trace.add("lane3_start", url=url, backend="playwright")
    pin_extractor = pin_extractor or default_pin_extractor()

    trace.add("pin_extraction_start")
    pin_result = pin_extractor.extract(email.body, email.subject, policy.pin_pattern)

    if pin_result is None and policy.lane3.pin_required:
        logger.warning(f"No PIN found in email for portal {url}")
        return LaneEscalation(
            reason="PIN not found in email",
            next_hint=url,
            error="Could not extract PIN from email",
            trace=trace.entries,
        )

    if pin_result is not None:
        trace.add(
            "pin_extracted",
            pin=pin_result.masked,
            method=pin_result.method,
            confidence=pin_result.confidence,
        )
        logger.info(f"Extracted PIN {pin_result.masked} via {pin_result.method}")

    trace.add("browser_automation_start", url=url)
    try:
        result = automate(url, pin_result.pin if pin_result else None, policy.lane3.selectors)
    except Exception as e:
        # Resource failures end this lane but never the pipeline
        logger.error(f"Browser automation crashed for {url}: {e}")
        trace.add("error", error=str(e))
        return LaneEscalation(reason=str(e), next_hint=url, error=str(e), trace=trace.entries)

    trace.extend(result.trace)

    if not result.success or not is_pdf_bytes(result.pdf_bytes):
        reason = result.error or "Browser automation did not return a valid PDF"
        return LaneEscalation(reason=reason, next_hint=url, error=result.error, trace=trace.entries)

    trace.add("lane3_complete", pdf_size=len(result.pdf_bytes))
    document = ExtractedDocument(name=statement_name(), content=result.pdf_bytes, source_url=url)
    return LaneSuccess(documents=[document], trace=trace.entries)
