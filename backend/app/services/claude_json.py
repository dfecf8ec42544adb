"""
Shared helper for the advisory Claude calls (link classification, PIN
extraction, agentic goal writing).

Callers treat every call as best-effort: this helper raises on any problem
(missing key, timeout, API error, non-JSON reply) and the caller's fallback
adapter decides what happens next.
"""

import json
import os

import anthropic

# Small, fast model for advisory calls
ADVISORY_MODEL = "claude-haiku-4-5"

# Timeout in seconds for one advisory call
ADVISORY_TIMEOUT = 15


class ClaudeResponseError(Exception):
    """Raised when Claude is unreachable or replies with something unusable."""


def strip_code_fences(raw_text: str) -> str:
    """Remove markdown code fences Claude sometimes wraps JSON in."""
    text = raw_text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = [ln for ln in lines if not ln.strip().startswith("```")]
        text = "\n".join(lines).strip()
    return text


def ask_claude(prompt: str, max_tokens: int = 512, timeout: float = ADVISORY_TIMEOUT) -> str:
    """Send a single-turn prompt and return the raw text reply."""
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise ClaudeResponseError("ANTHROPIC_API_KEY is not set")

    client = anthropic.Anthropic(api_key=api_key)
    response = client.messages.create(
        model=ADVISORY_MODEL,
        max_tokens=max_tokens,
        timeout=timeout,
        messages=[{"role": "user", "content": prompt}],
    )
    if not response.content:
        raise ClaudeResponseError("Empty response from Claude")
    return response.content[0].text


def ask_claude_for_json(prompt: str, max_tokens: int = 512, timeout: float = ADVISORY_TIMEOUT) -> dict:
    """Send a prompt that asks for a JSON object and parse the reply."""
    raw_text = ask_claude(prompt, max_tokens=max_tokens, timeout=timeout)
    try:
        parsed = json.loads(strip_code_fences(raw_text))
    except json.JSONDecodeError as e:
        raise ClaudeResponseError(f"Claude returned invalid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ClaudeResponseError("Claude returned JSON that is not an object")
    return parsed
