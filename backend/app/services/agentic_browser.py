"""
Agentic browser backend (browser-use Agent driven by Claude).

Used as the last resort for portals whose layout defeats fixed selectors.
The agent plans its own navigation toward a written goal; we only bound it
(steps, wall-clock time, domains) and collect the first PDF it downloads.

Environment:
  ANTHROPIC_API_KEY        required
  AGENTIC_BROWSER_MODEL    Claude model for the agent (default claude-sonnet-4-5)
  BROWSER_HEADLESS         "false" to show the browser
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from app.models.extraction_policy import AgenticConfig
from app.services.browser_automation import BrowserAutomationResult
from app.services.lanes.results import is_pdf_bytes
from app.services.trace import Trace

logger = logging.getLogger(__name__)

DEFAULT_AGENT_MODEL = "claude-sonnet-4-5"


class AgenticBrowserError(Exception):
    """Raised when the agent cannot be started or produces no PDF."""


def find_downloaded_pdf(downloads_dir: Path) -> Optional[Path]:
    """Return the first file under downloads_dir whose bytes start with %PDF."""
    for path in sorted(p for p in downloads_dir.rglob("*") if p.is_file()):
        with path.open("rb") as f:
            if is_pdf_bytes(f.read(4)):
                return path
    return None


async def _run_agent(goal: str, guardrails: AgenticConfig, downloads_dir: Path):
    # Lazy import: browser-use pulls in a large dependency tree
    from browser_use import Agent, BrowserProfile, BrowserSession
    from browser_use.llm import ChatAnthropic

    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise AgenticBrowserError("ANTHROPIC_API_KEY environment variable is not set")

    profile = BrowserProfile(
        headless=os.getenv("BROWSER_HEADLESS", "true").lower() != "false",
        downloads_path=str(downloads_dir),
        allowed_domains=guardrails.allowed_domains or None,
    )
    agent = Agent(
        task=goal,
        llm=ChatAnthropic(model=os.getenv("AGENTIC_BROWSER_MODEL", DEFAULT_AGENT_MODEL), api_key=api_key),
        browser_session=BrowserSession(browser_profile=profile),
    )
    try:
        return await asyncio.wait_for(agent.run(max_steps=guardrails.max_steps), timeout=guardrails.max_time)
    finally:
        await agent.close()


def run_agentic_browser(url: str, goal: str, guardrails: AgenticConfig) -> BrowserAutomationResult:
    """
    Run the agent toward `goal` and return the first PDF it downloaded.

    Never raises; failures (missing key, timeout, no PDF) come back as
    success=False with the error in the trace.
    """
    trace = Trace()
    trace.add(
        "agentic_start",
        url=url,
        max_steps=guardrails.max_steps,
        max_time=guardrails.max_time,
    )

    with tempfile.TemporaryDirectory(prefix="agentic-downloads-") as tmp:
        downloads_dir = Path(tmp)
        try:
            history = asyncio.run(_run_agent(goal, guardrails, downloads_dir))
            trace.add("agentic_task_completed", steps=len(getattr(history, "history", []) or []))

            pdf_path = find_downloaded_pdf(downloads_dir)
            if pdf_path is None:
                files = [p.name for p in downloads_dir.rglob("*") if p.is_file()]
                trace.add("no_pdf_found", total_files=len(files), files=files)
                raise AgenticBrowserError(f"No PDF files found in agent downloads. Found {len(files)} file(s)")

            pdf_bytes = pdf_path.read_bytes()
        except asyncio.TimeoutError:
            error = f"Agent timed out after {guardrails.max_time}s"
            logger.error(f"Agentic browser failed for {url}: {error}")
            trace.add("error", error=error)
            return BrowserAutomationResult(success=False, error=error, trace=trace.entries)
        except Exception as e:
            logger.error(f"Agentic browser failed for {url}: {e}")
            logger.debug("Agentic browser failure", exc_info=True)
            trace.add("error", error=str(e), error_type=type(e).__name__)
            return BrowserAutomationResult(success=False, error=str(e), trace=trace.entries)

    trace.add("pdf_downloaded", filename=pdf_path.name, size=len(pdf_bytes))
    logger.info(f"Agentic browser downloaded {pdf_path.name} ({len(pdf_bytes)} bytes)")
    return BrowserAutomationResult(success=True, pdf_bytes=pdf_bytes, trace=trace.entries)
