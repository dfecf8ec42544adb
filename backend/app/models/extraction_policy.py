"""
Pydantic models for per-sender extraction policies.

A policy is owned by whoever configures the sender (an extraction rule row)
and is read-only to the acquisition pipeline. Loosely-typed rule data is
validated here, at construction time, so the pipeline only ever sees a
closed set of lane values.
"""

from enum import Enum
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator


class PreferredLane(str, Enum):
    AUTO = "auto"
    LANE1_ATTACHMENTS = "lane1_attachments"
    LANE2_DIRECT = "lane2_direct"
    LANE3_INTERACTIVE = "lane3_interactive"


class Lane2Config(BaseModel):
    """Direct-download settings."""
    follow_redirects: bool = True
    max_redirects: int = Field(default=5, ge=0, le=20)


class PortalSelectors(BaseModel):
    """
    CSS selectors for the deterministic portal flow.

    Any selector left empty is filled in at run time from the interaction
    detector's guesses and then from common patterns.
    """
    pin_input: Optional[str] = None
    submit_button: Optional[str] = None
    pdf_download: Optional[str] = None
    wait_for: Optional[str] = None


class AgenticConfig(BaseModel):
    """Guardrails for the agentic browser backend."""
    max_steps: int = Field(default=25, ge=1)
    max_time: int = Field(default=180, ge=1)        # seconds
    allowed_domains: List[str] = []                 # empty = any domain
    portal_context: Optional[str] = None            # operator notes about the portal


class Lane3Config(BaseModel):
    """Interactive-portal settings."""
    backend: Literal["playwright", "agentic"] = "playwright"
    agentic_fallback: bool = True
    pin_required: bool = True
    selectors: PortalSelectors = PortalSelectors()
    agentic: AgenticConfig = AgenticConfig()


class ExtractionPolicy(BaseModel):
    """
    Per-sender acquisition policy.

    preferred_lane   — explicit lane override, or "auto" for the decision matrix
    instruction      — free-text hint that steers the AI classifier and goal writer
    pin_pattern      — optional regex (one capture group) tried before the
                       built-in PIN patterns
    """
    preferred_lane: PreferredLane = PreferredLane.AUTO
    lane2: Lane2Config = Lane2Config()
    lane3: Lane3Config = Lane3Config()
    instruction: Optional[str] = None
    pin_pattern: Optional[str] = None

    @field_validator("preferred_lane", mode="before")
    @classmethod
    def _normalize_lane(cls, value):
        # Rule rows store NULL or mixed-case strings for "auto"
        if value is None or value == "":
            return PreferredLane.AUTO
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("instruction", "pin_pattern", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_rule(cls, rule: dict) -> "ExtractionPolicy":
        """
        Build a policy from an extraction_rules row.

        Row keys: preferred_lane, lane2_config, lane3_config,
        email_processing_instruction, pin_pattern. Missing keys use defaults.
        """
        return cls(
            preferred_lane=rule.get("preferred_lane"),
            lane2=rule.get("lane2_config") or {},
            lane3=rule.get("lane3_config") or {},
            instruction=rule.get("email_processing_instruction"),
            pin_pattern=rule.get("pin_pattern"),
        )
