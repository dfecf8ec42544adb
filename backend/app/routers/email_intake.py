"""
Email intake router.

Receives inbound email webhooks and runs the document-acquisition pipeline.

The webhook endpoint is provider-agnostic: it normalises the raw payload
via the inbound_email_adapter service, so swapping from Postmark to Resend
(or any future provider) only requires changing the EMAIL_PROVIDER env var.

The webhook acknowledges with 202 as soon as the payload is normalised and
the sender's policy is loaded; acquisition runs afterwards as a background
task, so provider delivery never waits on a browser session.

Environment variables
---------------------
EMAIL_PROVIDER            Which normaliser to use (default: "resend").
                          Supported values: "resend", "postmark".
INBOUND_WEBHOOK_SECRET    Shared secret checked in X-Webhook-Secret header.
POSTMARK_WEBHOOK_SECRET   Legacy alias — checked as a fallback when
                          INBOUND_WEBHOOK_SECRET is not set.

Endpoints:
  POST /inbound   — provider webhook, pipeline runs in the background (202)
  POST /acquire   — same payload, pipeline runs inline, returns the result
"""

import logging
import os
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException

from app.models.email_intake import AcquisitionResponse, InboundAcceptedResponse
from app.models.extraction import PipelineResult
from app.models.extraction_policy import ExtractionPolicy
from app.models.inbound_email import InboundEmail
from app.services.inbound_email_adapter import normalize_webhook
from app.services.lane_orchestrator import process_email_with_lanes
from app.services.policy_store import get_policy_for_sender, record_extraction_job

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Webhook authentication dependency
# ---------------------------------------------------------------------------

def _get_webhook_secret() -> str:
    """
    Return the configured webhook secret.

    Checks INBOUND_WEBHOOK_SECRET first, then falls back to the legacy
    POSTMARK_WEBHOOK_SECRET for backward compatibility.
    """
    return (
        os.getenv("INBOUND_WEBHOOK_SECRET")
        or os.getenv("POSTMARK_WEBHOOK_SECRET")
        or ""
    )


def _verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(None),
    x_postmark_secret: Optional[str] = Header(None),
) -> None:
    """
    Verify that the inbound webhook request carries the correct shared secret.

    Accepts the secret in either:
      X-Webhook-Secret   — provider-agnostic header
      X-Postmark-Secret  — legacy Postmark header

    Raises 401 if the secret is missing, unconfigured, or does not match.
    """
    expected = _get_webhook_secret()
    if not expected:
        logger.warning(
            "No webhook secret configured (INBOUND_WEBHOOK_SECRET / "
            "POSTMARK_WEBHOOK_SECRET) — all inbound webhook requests will be rejected"
        )
        raise HTTPException(status_code=401, detail="Webhook secret not configured")

    provided = x_webhook_secret or x_postmark_secret
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _normalize_payload(payload: dict) -> InboundEmail:
    """Normalize the webhook payload; 422 for unknown providers or bad payloads."""
    provider = os.getenv("EMAIL_PROVIDER", "resend")
    try:
        return normalize_webhook(payload, provider=provider)
    except ValueError as exc:
        logger.error(f"Webhook normalization failed: {exc}")
        raise HTTPException(status_code=422, detail=str(exc))


def _run_pipeline(email: InboundEmail, policy: ExtractionPolicy) -> PipelineResult:
    """Run acquisition for one email and record the job."""
    logger.info(
        f"Acquiring documents for message {email.message_id or '(no id)'} "
        f"from {email.sender_email} (policy lane: {policy.preferred_lane.value})"
    )
    result = process_email_with_lanes(email, policy)
    record_extraction_job(email, result)
    return result


def _acquire_in_background(email: InboundEmail, policy: ExtractionPolicy) -> None:
    """Background-task wrapper: nobody is waiting on the response, so log instead of raising."""
    try:
        _run_pipeline(email, policy)
    except Exception:
        logger.exception(f"Acquisition crashed for message {email.message_id or '(no id)'}")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/inbound", status_code=202)
async def receive_inbound_email(
    payload: dict,
    background_tasks: BackgroundTasks,
    _: None = Depends(_verify_webhook_secret),
) -> InboundAcceptedResponse:
    """
    Provider-agnostic inbound email webhook receiver.

    Normalizes the payload, loads the sender's policy and schedules the
    acquisition pipeline. Returns 202 before the pipeline runs.
    """
    email = _normalize_payload(payload)
    policy = get_policy_for_sender(email.sender_email)

    background_tasks.add_task(_acquire_in_background, email, policy)

    return InboundAcceptedResponse(
        message_id=email.message_id or None,
        sender_email=email.sender_email,
        policy_lane=policy.preferred_lane.value,
    )


@router.post("/acquire")
def acquire_documents(
    payload: dict,
    _: None = Depends(_verify_webhook_secret),
) -> AcquisitionResponse:
    """
    Run the pipeline inline and return its result.

    Operator / debugging endpoint: accepts the same payload as /inbound.
    Declared sync so FastAPI runs it in the threadpool.
    """
    email = _normalize_payload(payload)
    policy = get_policy_for_sender(email.sender_email)
    result = _run_pipeline(email, policy)
    return AcquisitionResponse.from_result(result)
