"""
Lane orchestrator: the pipeline's single entry point.

  process_email_with_lanes(email, policy) -> PipelineResult

1. decide the first lane (decision matrix)
2. run it
3. on LaneSuccess return the documents
4. on LaneEscalation move to the next lane:
     lane2_direct                -> lane3_interactive (first portal link,
                                    else the gated URL Lane 2 found,
                                    else the first link in the email)
     lane3 deterministic         -> lane3 agentic (when agentic_fallback)
5. with nowhere left to go, return a failure carrying the last escalation
   reason verbatim

Every lane's trace entries are appended in order, so the returned trace
explains the whole chain, including on success.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from app.models.extraction import Lane, LaneDecision, LinkType, PipelineResult
from app.models.extraction_policy import ExtractionPolicy
from app.models.inbound_email import InboundEmail
from app.services.agentic_browser import run_agentic_browser
from app.services.browser_automation import automate_browser_interaction
from app.services.decision_matrix import decide_lane
from app.services.lanes.agentic_portal import process_agentic_portal
from app.services.lanes.attachments import process_attachments
from app.services.lanes.direct_download import process_direct_links
from app.services.lanes.interactive_portal import process_interactive_portal
from app.services.lanes.results import LaneEscalation, LaneFailure, LaneOutcome, LaneSuccess
from app.services.link_classifier import LinkClassifier
from app.services.link_extractor import extract_email_links
from app.services.pin_extractor import PinExtractor, default_pin_extractor
from app.services.trace import Trace
from app.services.url_downloader import check_url_accessibility, download_pdf_from_url
from app.services.url_downloader import fetch_html as fetch_html_page

logger = logging.getLogger(__name__)

NO_PORTAL_LINKS_ERROR = "No links found for interactive portal"


@dataclass
class _Collaborators:
    """External primitives the lanes call."""
    pin_extractor: PinExtractor
    probe: Callable
    fetch_html: Callable
    download: Callable
    automate: Callable
    run_agent: Callable


def _portal_target(email: InboundEmail, decision: LaneDecision) -> Optional[str]:
    """First link to try in Lane 3 when it is the first lane."""
    portal_links = [link for link in decision.links if link.link_type == LinkType.INTERACTIVE_PORTAL]
    if portal_links:
        return portal_links[0].url
    all_links = extract_email_links(email)
    return all_links[0].url if all_links else None


def _escalation_target(email: InboundEmail, decision: LaneDecision, escalation: LaneEscalation) -> Optional[str]:
    """Lane 3 target after Lane 2 escalates."""
    if decision.classification:
        portal_links = decision.classification.of_type(LinkType.INTERACTIVE_PORTAL)
        if portal_links:
            return portal_links[0].url
    if escalation.next_hint:
        return escalation.next_hint
    for links in (extract_email_links(email, pdf_only=True), extract_email_links(email)):
        if links:
            return links[0].url
    return None


def _run_lane3(
    url: str,
    email: InboundEmail,
    policy: ExtractionPolicy,
    trace: Trace,
    deps: _Collaborators,
) -> tuple[LaneOutcome, Optional[LaneEscalation]]:
    """
    Run Lane 3 on one URL. Returns the final outcome plus the last escalation
    raised inside Lane 3 (deterministic -> agentic), if any.
    """
    if policy.lane3.backend == "agentic":
        logger.info(f"Lane 3 (agentic) on {url}")
        outcome = process_agentic_portal(url, email, policy, deps.pin_extractor, run_agent=deps.run_agent)
        trace.extend(outcome.trace)
        return outcome, None

    logger.info(f"Lane 3 (playwright) on {url}")
    outcome = process_interactive_portal(url, email, policy, deps.pin_extractor, automate=deps.automate)
    trace.extend(outcome.trace)
    if not isinstance(outcome, LaneEscalation):
        return outcome, None

    if not policy.lane3.agentic_fallback:
        return outcome, outcome

    logger.info(f"Playwright flow escalated ({outcome.reason}), trying agentic backend")
    trace.add("escalated_to_lane3_agentic", url=outcome.next_hint or url, reason=outcome.reason)
    agentic = process_agentic_portal(
        outcome.next_hint or url, email, policy, deps.pin_extractor, run_agent=deps.run_agent
    )
    trace.extend(agentic.trace)
    return agentic, outcome


def _to_result(
    lane: Lane,
    outcome: LaneOutcome,
    last_escalation: Optional[LaneEscalation],
    trace: Trace,
) -> PipelineResult:
    """
    Map a lane outcome to the uniform result.

    A failed Lane 3 run always requires escalation: it is the last automated
    step, so a human has to take over. Its escalation_reason is the first
    Lane 3 escalation when there was one, otherwise the failure's error.
    """
    if isinstance(outcome, LaneSuccess):
        logger.info(f"Pipeline succeeded in {lane.value} with {len(outcome.documents)} document(s)")
        return PipelineResult(success=True, documents=outcome.documents, lane=lane, trace=trace.entries)

    if isinstance(outcome, LaneEscalation):
        last_escalation = outcome
        error = outcome.error or outcome.reason
    elif isinstance(outcome, LaneFailure):
        error = outcome.error
    else:
        raise TypeError(f"Unexpected lane outcome: {type(outcome).__name__}")

    if last_escalation is not None:
        escalation_reason = last_escalation.reason
    elif lane == Lane.LANE3_INTERACTIVE:
        escalation_reason = error
    else:
        escalation_reason = None

    logger.error(f"Pipeline failed in {lane.value}: {error}")
    return PipelineResult(
        success=False,
        lane=lane,
        requires_escalation=escalation_reason is not None,
        escalation_reason=escalation_reason,
        error=error,
        trace=trace.entries,
    )


def process_email_with_lanes(
    email: InboundEmail,
    policy: Optional[ExtractionPolicy] = None,
    classifier: Optional[LinkClassifier] = None,
    pin_extractor: Optional[PinExtractor] = None,
    probe: Callable = check_url_accessibility,
    fetch_html: Callable = fetch_html_page,
    download: Callable = download_pdf_from_url,
    automate: Callable = automate_browser_interaction,
    run_agent: Callable = run_agentic_browser,
) -> PipelineResult:
    """
    Acquire the source document(s) for one inbound email.

    Args:
        email:          The normalized inbound email.
        policy:         Sender policy (defaults to auto lane selection).
        classifier:     Link classifier (defaults to Claude with heuristic fallback).
        pin_extractor:  PIN extractor (defaults to Claude with regex fallback).
        probe, fetch_html, download:  HTTP primitives for Lane 2.
        automate:       Playwright primitive for Lane 3.
        run_agent:      Agentic primitive for Lane 3.

    Returns:
        PipelineResult. Never raises for lane-level failures.
    """
    policy = policy or ExtractionPolicy()
    deps = _Collaborators(
        pin_extractor=pin_extractor or default_pin_extractor(),
        probe=probe,
        fetch_html=fetch_html,
        download=download,
        automate=automate,
        run_agent=run_agent,
    )
    trace = Trace()

    decision = decide_lane(email, policy, classifier)
    logger.info(f"Selected lane {decision.lane.value}: {decision.reason}")
    trace.add(
        "lane_decision",
        lane=decision.lane.value,
        reason=decision.reason,
        confidence=decision.confidence,
        links=[link.url for link in decision.links],
        classification_method=decision.classification.method if decision.classification else None,
    )

    if decision.lane == Lane.LANE1_ATTACHMENTS:
        outcome = process_attachments(email)
        trace.extend(outcome.trace)
        return _to_result(Lane.LANE1_ATTACHMENTS, outcome, None, trace)

    if decision.lane == Lane.LANE2_DIRECT:
        outcome = process_direct_links(
            email,
            policy,
            decision.links,
            probe=deps.probe,
            fetch_html=deps.fetch_html,
            download=deps.download,
        )
        trace.extend(outcome.trace)
        if not isinstance(outcome, LaneEscalation):
            return _to_result(Lane.LANE2_DIRECT, outcome, None, trace)

        target = _escalation_target(email, decision, outcome)
        if target is None:
            return _to_result(Lane.LANE2_DIRECT, outcome, None, trace)

        logger.info(f"Lane 2 escalated ({outcome.reason}), moving to lane3_interactive: {target}")
        trace.add("escalated_to_lane3_interactive", url=target, reason=outcome.reason)
        lane3_outcome, lane3_escalation = _run_lane3(target, email, policy, trace, deps)
        return _to_result(Lane.LANE3_INTERACTIVE, lane3_outcome, lane3_escalation or outcome, trace)

    if decision.lane == Lane.LANE3_INTERACTIVE:
        target = _portal_target(email, decision)
        if target is None:
            logger.error(NO_PORTAL_LINKS_ERROR)
            return PipelineResult(
                success=False,
                lane=Lane.LANE3_INTERACTIVE,
                error=NO_PORTAL_LINKS_ERROR,
                trace=trace.entries,
            )
        outcome, escalation = _run_lane3(target, email, policy, trace, deps)
        return _to_result(Lane.LANE3_INTERACTIVE, outcome, escalation, trace)

    logger.error(f"No acquisition lane applies: {decision.reason}")
    return PipelineResult(
        success=False,
        lane=Lane.UNKNOWN,
        error=decision.reason,
        trace=trace.entries,
    )
