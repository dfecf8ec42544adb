"""
PIN / access-code extraction.

Two implementations behind one interface:

  ClaudePinExtractor  — asks Claude to read the email and pick the code
  RegexPinExtractor   — deterministic patterns (policy pattern first)

FallbackPinExtractor runs the primary and, when it raises or finds nothing,
returns the fallback's answer. Finding no PIN at all is a valid outcome
(None), not an error.
"""

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup

from app.models.extraction import PinExtractionResult
from app.services.claude_json import ask_claude_for_json

logger = logging.getLogger(__name__)


class PinExtractionError(Exception):
    """Raised when the PIN service replies with something that is not a PIN."""


# Accepted PIN shape (digits only, 4-8 long)
_PIN_RE = re.compile(r"^\d{4,8}$")

# Max characters of email text sent to Claude
_MAX_PROMPT_CHARS = 4000

# Tried in order after the policy pattern; first capture group is the PIN
COMMON_PIN_PATTERNS = [
    re.compile(r"(?:PIN)[\s:]*[:\-]?\s*(\d{4,8})", re.IGNORECASE),
    re.compile(r"(?:6[\s-]?digit[\s-]?PIN|PIN[\s-]?is)[\s:]*[:\-]?\s*(\d{4,8})", re.IGNORECASE),
    re.compile(r"(?:enter|use|your)\s+PIN[\s:]*[:\-]?\s*(\d{4,8})", re.IGNORECASE),
    re.compile(r"(?:code|password)[\s:]*[:\-]?\s*(\d{4,8})", re.IGNORECASE),
]

PIN_PROMPT = """\
You are extracting a PIN or access code from an email that contains instructions for accessing a secure statement or invoice portal.
The email may contain explicit instructions about which PIN to use. Pay attention to context clues like "use PIN", "enter PIN", "your PIN is".
The PIN is typically 4-8 digits.

Respond with ONLY valid JSON:
{"pin": string | null, "reason": string}

"pin" must contain digits only. Use null if the email contains no PIN.

EMAIL:
{email_text}
"""


def email_text_for_matching(body: str) -> str:
    """Flatten an HTML or markdown-ish body to whitespace-normalized text."""
    text = body or ""
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ")
    text = re.sub(r"[*_]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


class PinExtractor:
    """Interface: return a PinExtractionResult, or None when no PIN is present."""

    def extract(
        self,
        email_body: str,
        subject: Optional[str] = None,
        pattern: Optional[str] = None,
    ) -> Optional[PinExtractionResult]:
        raise NotImplementedError


class ClaudePinExtractor(PinExtractor):
    """Claude-backed extractor. Raises on any service problem."""

    def extract(self, email_body, subject=None, pattern=None):
        text = email_text_for_matching(email_body)
        if subject:
            text = f"Subject: {subject}\n\n{text}"

        prompt = PIN_PROMPT.replace("{email_text}", text[:_MAX_PROMPT_CHARS])
        reply = ask_claude_for_json(prompt, max_tokens=256)

        if reply.get("pin") is None:
            return None
        pin = str(reply["pin"]).strip()
        if not _PIN_RE.match(pin):
            raise PinExtractionError(f"Claude returned a malformed PIN ({len(pin)} chars)")
        return PinExtractionResult(
            pin=pin,
            method="ai",
            confidence=0.9,
            reason=reply.get("reason"),
        )


class RegexPinExtractor(PinExtractor):
    """Deterministic extractor: policy pattern (0.8) then common patterns (0.6)."""

    def extract(self, email_body, subject=None, pattern=None):
        text = email_text_for_matching(email_body)

        if pattern:
            try:
                match = re.search(pattern, text, re.IGNORECASE)
            except re.error as e:
                logger.warning(f"Invalid PIN pattern {pattern!r}: {e}")
                match = None
            if match and match.groups() and match.group(1):
                return PinExtractionResult(pin=match.group(1), method="regex", confidence=0.8)

        for candidate in COMMON_PIN_PATTERNS:
            match = candidate.search(text)
            if match:
                return PinExtractionResult(
                    pin=match.group(1),
                    method="regex",
                    confidence=0.6,
                    reason="Matched a common PIN phrase",
                )
        return None


class FallbackPinExtractor(PinExtractor):
    """Try the primary extractor; use the fallback on error or when it finds nothing."""

    def __init__(self, primary: PinExtractor, fallback: PinExtractor):
        self.primary = primary
        self.fallback = fallback

    def extract(self, email_body, subject=None, pattern=None):
        try:
            result = self.primary.extract(email_body, subject, pattern)
            if result is not None:
                return result
        except Exception as e:
            logger.warning(f"PIN extraction via {type(self.primary).__name__} failed, using fallback: {e}")
            logger.debug("PIN extraction fallback", exc_info=True)

        return self.fallback.extract(email_body, subject, pattern)


def default_pin_extractor() -> PinExtractor:
    """Claude first, regex patterns as fallback."""
    return FallbackPinExtractor(ClaudePinExtractor(), RegexPinExtractor())
