"""
Thin Supabase adapter for extraction policies and job records.

  get_policy_for_sender(sender)        -> ExtractionPolicy
  record_extraction_job(email, result) -> Optional[str]

Tables:
  extraction_rules   one row per sender address (sender_email, preferred_lane,
                     lane2_config, lane3_config, email_processing_instruction,
                     pin_pattern, is_active)
  extraction_jobs    one row per pipeline run

Neither call may break the pipeline: lookups fall back to the default
policy and job writes are logged and dropped on failure.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from app.db import supabase_admin
from app.models.extraction import PipelineResult
from app.models.extraction_policy import ExtractionPolicy
from app.models.inbound_email import InboundEmail

logger = logging.getLogger(__name__)


def sender_address(sender: str) -> str:
    """Extract the bare, lower-cased address from 'Name <addr@host>'."""
    match = re.search(r"<([^>]+)>", sender or "")
    addr = match.group(1) if match else (sender or "")
    return addr.strip().lower()


def get_policy_for_sender(sender: str) -> ExtractionPolicy:
    """Return the sender's active policy, or the default auto policy."""
    address = sender_address(sender)
    if not address or supabase_admin is None:
        return ExtractionPolicy()

    try:
        result = (
            supabase_admin.table("extraction_rules")
            .select("*")
            .eq("sender_email", address)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.warning(f"Failed to load extraction rule for {address}: {e}")
        return ExtractionPolicy()

    if not result.data:
        return ExtractionPolicy()

    try:
        return ExtractionPolicy.from_rule(result.data[0])
    except ValidationError as e:
        logger.warning(f"Invalid extraction rule for {address}, using default policy: {e}")
        return ExtractionPolicy()


def record_extraction_job(email: InboundEmail, result: PipelineResult) -> Optional[str]:
    """
    Insert an extraction_jobs row for a finished pipeline run.

    Returns the new row id, or None when the write failed or no admin client
    is configured.
    """
    if supabase_admin is None:
        logger.warning("SUPABASE_SERVICE_KEY not configured; extraction job not recorded")
        return None

    row = {
        "message_id": email.message_id or None,
        "sender_email": sender_address(email.sender_email),
        "subject": email.subject,
        "lane": result.lane.value,
        "status": "completed" if result.success else "failed",
        "document_count": len(result.documents),
        "document_names": [doc.name for doc in result.documents],
        "requires_escalation": result.requires_escalation,
        "escalation_reason": result.escalation_reason,
        "error": result.error,
        "trace": [entry.model_dump(mode="json") for entry in result.trace],
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }

    try:
        insert = supabase_admin.table("extraction_jobs").insert(row).execute()
    except Exception as e:
        logger.error(f"Failed to record extraction job for {row['sender_email']}: {e}")
        return None

    if not insert.data:
        return None
    return insert.data[0].get("id")
