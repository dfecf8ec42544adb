"""
Lane 3 (agentic): hand the portal to a browser agent with a written goal.

This is the final fallback: failures here are terminal and carry no further
escalation target.
"""

import logging
from typing import Callable, Optional
from urllib.parse import urlparse

from app.models.extraction import ExtractedDocument
from app.models.extraction_policy import AgenticConfig, ExtractionPolicy
from app.models.inbound_email import InboundEmail
from app.services.agentic_browser import run_agentic_browser
from app.services.browser_automation import BrowserAutomationResult
from app.services.claude_json import ask_claude
from app.services.lanes.interactive_portal import statement_name
from app.services.lanes.results import LaneFailure, LaneOutcome, LaneSuccess, is_pdf_bytes
from app.services.pin_extractor import PinExtractor, RegexPinExtractor, default_pin_extractor, email_text_for_matching
from app.services.trace import Trace

logger = logging.getLogger(__name__)

RunAgentFn = Callable[[str, str, AgenticConfig], BrowserAutomationResult]

# Max characters of email text included in a goal
_MAX_EMAIL_CHARS = 3000

GOAL_PROMPT = """\
Write step-by-step instructions for a browser automation agent that must download a PDF statement or invoice from a web portal.

Portal URL: {url}
{pin_line}
{context_line}
{instruction_line}
The instructions must tell the agent to open the URL, enter any required code, and download the document as a PDF file. Keep them under 150 words. Respond with the instructions only.

EMAIL THE PORTAL LINK CAME FROM:
Subject: {subject}
{email_text}
"""


def is_url_allowed(url: str, allowed_domains: list[str]) -> bool:
    """
    Domain guardrail. An empty list allows every domain; otherwise the host
    must equal an allowed domain or be a subdomain of one.
    """
    if not allowed_domains:
        return True
    host = (urlparse(url).hostname or "").lower()
    for domain in allowed_domains:
        domain = domain.lower().lstrip(".")
        if host == domain or host.endswith("." + domain):
            return True
    return False


def _resolve_pin(email: InboundEmail, policy: ExtractionPolicy, pin_extractor: PinExtractor) -> Optional[str]:
    # A PIN written into the operator's portal notes beats one read from the email
    context = policy.lane3.agentic.portal_context
    if context:
        context_pin = RegexPinExtractor().extract(context)
        if context_pin:
            return context_pin.pin
    result = pin_extractor.extract(email.body, email.subject, policy.pin_pattern)
    return result.pin if result else None


def fallback_goal(url: str, pin: Optional[str], policy: ExtractionPolicy) -> str:
    """Deterministic goal used when Claude is unavailable."""
    steps = [f"Open {url}."]
    if pin:
        steps.append(f"If the page asks for a PIN, access code or password, enter {pin} and submit the form.")
    steps.append(
        "Find the statement, bill or invoice and download it as a PDF file. "
        "If there is no download button, use the print or save-as-PDF option."
    )
    if policy.lane3.agentic.portal_context:
        steps.append(f"Notes about this portal: {policy.lane3.agentic.portal_context}")
    if policy.instruction:
        steps.append(f"Sender-specific instructions: {policy.instruction}")
    steps.append("Stop once the PDF has been downloaded.")
    return " ".join(steps)


def generate_agentic_goal(url: str, email: InboundEmail, policy: ExtractionPolicy, pin: Optional[str]) -> str:
    """Ask Claude to write the agent's goal; fall back to the fixed template on any error."""
    prompt = (
        GOAL_PROMPT
        .replace("{url}", url)
        .replace("{pin_line}", f"Access code / PIN: {pin}" if pin else "No access code was found.")
        .replace("{context_line}", f"Portal notes: {policy.lane3.agentic.portal_context}" if policy.lane3.agentic.portal_context else "")
        .replace("{instruction_line}", f"Sender instructions: {policy.instruction}" if policy.instruction else "")
        .replace("{subject}", email.subject or "(no subject)")
        .replace("{email_text}", email_text_for_matching(email.body)[:_MAX_EMAIL_CHARS])
    )
    try:
        goal = ask_claude(prompt, max_tokens=512).strip()
    except Exception as e:
        logger.warning(f"Goal generation via Claude failed, using template goal: {e}")
        return fallback_goal(url, pin, policy)

    if not goal:
        return fallback_goal(url, pin, policy)
    # The agent cannot proceed without the code, so make sure it is in the goal
    if pin and pin not in goal:
        goal = f"{goal}\nThe access code / PIN is {pin}."
    return goal


def process_agentic_portal(
    url: str,
    email: InboundEmail,
    policy: ExtractionPolicy,
    pin_extractor: Optional[PinExtractor] = None,
    run_agent: RunAgentFn = run_agentic_browser,
) -> LaneOutcome:
    """Acquire a PDF from a portal with the browser agent."""
    trace = Trace()
    trace.add("lane3_start", url=url, backend="agentic")
    guardrails = policy.lane3.agentic

    if not is_url_allowed(url, guardrails.allowed_domains):
        logger.warning(f"URL {url} is outside the allowed domains")
        return LaneFailure(error=f"URL {url} is not in allowed domains list", trace=trace.entries)

    trace.add(
        "guardrails_checked",
        max_steps=guardrails.max_steps,
        max_time=guardrails.max_time,
        allowed_domains=guardrails.allowed_domains,
    )

    pin = _resolve_pin(email, policy, pin_extractor or default_pin_extractor())
    goal = generate_agentic_goal(url, email, policy, pin)
    # The goal may contain the PIN, so only its length goes in the trace
    trace.add("goal_generated", goal_length=len(goal), pin_found=pin is not None)

    try:
        result = run_agent(url, goal, guardrails)
    except Exception as e:
        logger.error(f"Agentic backend crashed for {url}: {e}")
        trace.add("error", error=str(e))
        return LaneFailure(error=str(e), trace=trace.entries)

    trace.extend(result.trace)

    if not result.success or not is_pdf_bytes(result.pdf_bytes):
        return LaneFailure(
            error=result.error or "Agentic browser did not return a valid PDF",
            trace=trace.entries,
        )

    trace.add("lane3_complete", pdf_size=len(result.pdf_bytes))
    document = ExtractedDocument(name=statement_name(), content=result.pdf_bytes, source_url=url)
    return LaneSuccess(documents=[document], trace=trace.entries)
