"""
Decision matrix: choose the first acquisition lane for an email.

Rules are evaluated in order and the first match wins:

  1. Explicit (non-auto) policy lane      -> that lane, confidence 1.0
  2. Any PDF attachment                   -> lane1_attachments, 0.9
  3. Classifier found direct PDF links    -> lane2_direct, 0.9
  4. Classifier found portal links        -> lane3_interactive, 0.9
  5. Links exist, none classified         -> lane3_interactive with every
                                             link relabelled as a portal, 0.5
  6. Nothing at all                       -> unknown, 0.5

Rules 1 and 2 never call the classifier.
"""

import logging
from typing import Optional

from app.models.extraction import ClassifiedLink, Lane, LaneDecision, LinkType
from app.models.extraction_policy import ExtractionPolicy, PreferredLane
from app.models.inbound_email import InboundEmail
from app.services.link_classifier import LinkClassifier, default_link_classifier
from app.services.link_extractor import extract_email_links

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.9

# Confidence for rule 5. Unclassified links are assumed to be portals more
# often than noise; this is a tunable guess, not a measured rate.
UNCLASSIFIED_LINK_FALLBACK_CONFIDENCE = 0.5

NO_DOCUMENT_SOURCE_REASON = "No attachments or links found in email"

_PREFERRED_TO_LANE = {
    PreferredLane.LANE1_ATTACHMENTS: Lane.LANE1_ATTACHMENTS,
    PreferredLane.LANE2_DIRECT: Lane.LANE2_DIRECT,
    PreferredLane.LANE3_INTERACTIVE: Lane.LANE3_INTERACTIVE,
}


def decide_lane(
    email: InboundEmail,
    policy: ExtractionPolicy,
    classifier: Optional[LinkClassifier] = None,
) -> LaneDecision:
    """
    Produce the LaneDecision for one email.

    Args:
        email:      The inbound email.
        policy:     The sender's extraction policy.
        classifier: Link classifier to use (defaults to Claude with heuristic fallback).
    """
    # 1. Policy override short-circuits everything, including classification
    if policy.preferred_lane != PreferredLane.AUTO:
        lane = _PREFERRED_TO_LANE[policy.preferred_lane]
        logger.info(f"Using preferred lane from policy: {lane.value}")
        return LaneDecision(
            lane=lane,
            reason=f"Policy specifies preferred lane: {lane.value}",
            confidence=1.0,
        )

    # 2. PDF attachments are the cheapest source
    pdf_attachments = [att for att in email.attachments if att.is_pdf]
    if pdf_attachments:
        logger.info(f"Selected lane1_attachments ({len(pdf_attachments)} PDF attachment(s))")
        return LaneDecision(
            lane=Lane.LANE1_ATTACHMENTS,
            reason="Email contains PDF attachments",
            confidence=DEFAULT_CONFIDENCE,
        )

    all_links = extract_email_links(email)
    if not all_links:
        logger.info("Selected unknown lane: no attachments or links")
        return LaneDecision(
            lane=Lane.UNKNOWN,
            reason=NO_DOCUMENT_SOURCE_REASON,
            confidence=0.5,
        )

    classifier = classifier or default_link_classifier()
    classification = classifier.classify(email, all_links, policy.instruction)
    direct_links = classification.of_type(LinkType.DIRECT_PDF)
    portal_links = classification.of_type(LinkType.INTERACTIVE_PORTAL)

    logger.info(
        f"Classified {len(all_links)} link(s) via {classification.method}: "
        f"{len(direct_links)} direct PDF, {len(portal_links)} portal, "
        f"{len(classification.other_links)} ignored"
    )

    # 3. Direct PDF links
    if direct_links:
        return LaneDecision(
            lane=Lane.LANE2_DIRECT,
            reason=f"Identified {len(direct_links)} direct PDF link(s)",
            confidence=DEFAULT_CONFIDENCE,
            links=direct_links,
            classification=classification,
        )

    # 4. Interactive portal links
    if portal_links:
        return LaneDecision(
            lane=Lane.LANE3_INTERACTIVE,
            reason=f"Identified {len(portal_links)} interactive portal link(s) requiring authentication",
            confidence=DEFAULT_CONFIDENCE,
            links=portal_links,
            classification=classification,
        )

    # 5. Links exist but none were recognised as documents
    fallback_links = [
        ClassifiedLink(url=link.url, label=link.label, link_type=LinkType.INTERACTIVE_PORTAL)
        for link in all_links
    ]
    logger.warning("Links found but none classified as documents; falling back to lane3_interactive")
    return LaneDecision(
        lane=Lane.LANE3_INTERACTIVE,
        reason="Links found but not identified as documents, attempting interactive portal",
        confidence=UNCLASSIFIED_LINK_FALLBACK_CONFIDENCE,
        links=fallback_links,
        classification=classification,
    )
