"""
Deterministic browser automation for PIN-gated portals (Playwright, sync API).

  automate_browser_interaction(url, pin, selectors) -> BrowserAutomationResult

Flow: launch -> navigate -> [enter PIN -> submit] -> wait for content ->
acquire PDF. The PDF is acquired with three strategies, strictly in order:

  (a) a download intercepted during navigation or submit
  (b) clicking the download control and capturing the download
  (c) printing the current page to PDF

The first buffer that starts with %PDF wins; later strategies are not tried.

Environment:
  BROWSER_HEADLESS              "false" to show the browser (default headless)
  BROWSER_TIMEOUT               browser launch timeout in ms (default 30000)
  BROWSER_SCREENSHOT_ON_ERROR   "true" to capture a screenshot when a step fails
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, ContextManager, Iterator, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page, sync_playwright

from app.models.extraction import TraceEntry
from app.models.extraction_policy import PortalSelectors
from app.services.interaction_detector import detect_html_interaction
from app.services.lanes.results import is_pdf_bytes
from app.services.trace import Trace

logger = logging.getLogger(__name__)

# Per-step timeouts (ms)
SELECTOR_TIMEOUT_MS = 10_000
NAVIGATION_TIMEOUT_MS = 30_000
DOWNLOAD_TIMEOUT_MS = 30_000

DEFAULT_PIN_INPUT_SELECTOR = (
    'input[type="text"][name*="pin" i], input[type="text"][id*="pin" i], '
    'input[type="password"][name*="pin" i], input[name*="code" i]'
)
DEFAULT_SUBMIT_SELECTOR = (
    'button[type="submit"], input[type="submit"], button:has-text("Submit"), '
    'button:has-text("View"), button:has-text("Continue")'
)
DEFAULT_DOWNLOAD_SELECTOR = (
    'a:has-text("Download"), a:has-text("PDF"), button:has-text("Download"), '
    'button:has-text("Print")'
)


class BrowserAutomationError(Exception):
    """Raised when the portal flow cannot produce a PDF."""


@dataclass
class BrowserAutomationResult:
    success: bool
    pdf_bytes: Optional[bytes] = None
    error: Optional[str] = None
    trace: list[TraceEntry] = field(default_factory=list)


def _headless() -> bool:
    return os.getenv("BROWSER_HEADLESS", "true").lower() != "false"


def _launch_timeout_ms() -> int:
    try:
        return int(os.getenv("BROWSER_TIMEOUT", "30000"))
    except ValueError:
        return 30_000


@contextmanager
def browser_page() -> Iterator[Page]:
    """
    Launch Chromium and yield a fresh page.

    The page, its context and the browser are closed on every exit path,
    including exceptions raised inside the with block.
    """
    with sync_playwright() as playwright:
        browser = playwright.chromium.launch(headless=_headless(), timeout=_launch_timeout_ms())
        try:
            context = browser.new_context(accept_downloads=True)
            try:
                page = context.new_page()
                page.set_default_timeout(SELECTOR_TIMEOUT_MS)
                yield page
            finally:
                context.close()
        finally:
            browser.close()


def resolve_selectors(configured: PortalSelectors, html: Optional[str] = None) -> PortalSelectors:
    """
    Fill selectors the policy left empty.

    Order: configured value, then the interaction detector's guesses for the
    loaded page, then common patterns.
    """
    guesses = detect_html_interaction(html).selectors if html else None
    pin_input = configured.pin_input
    submit_button = configured.submit_button

    if not pin_input:
        pin_input = ", ".join(guesses.pin_input) if guesses and guesses.pin_input else DEFAULT_PIN_INPUT_SELECTOR
    if not submit_button:
        submit_button = (
            ", ".join(guesses.submit_button) if guesses and guesses.submit_button else DEFAULT_SUBMIT_SELECTOR
        )

    return PortalSelectors(
        pin_input=pin_input,
        submit_button=submit_button,
        pdf_download=configured.pdf_download or DEFAULT_DOWNLOAD_SELECTOR,
        wait_for=configured.wait_for,
    )


def _read_download(download) -> bytes:
    return Path(download.path()).read_bytes()


def acquire_pdf(page, intercepted_downloads: list, download_selector: Optional[str], trace: Trace) -> bytes:
    """
    Run the three acquisition strategies in order and return the first PDF.

    Raises:
        BrowserAutomationError: no strategy produced a buffer starting with %PDF.
    """
    # (a) download already triggered by navigation or submit
    for download in intercepted_downloads:
        try:
            content = _read_download(download)
        except PlaywrightError as e:
            logger.warning(f"Intercepted download failed: {e}")
            trace.add("download_failed", error=str(e))
            continue
        trace.add("pdf_from_download", size=len(content))
        if is_pdf_bytes(content):
            return content
        logger.warning("Intercepted download is not a PDF")

    # (b) click the download control
    if download_selector:
        try:
            trace.add("download_button_wait", selector=download_selector)
            page.wait_for_selector(download_selector, timeout=SELECTOR_TIMEOUT_MS)
            trace.add("download_button_click")
            with page.expect_download(timeout=DOWNLOAD_TIMEOUT_MS) as download_info:
                page.click(download_selector)
            content = _read_download(download_info.value)
            if is_pdf_bytes(content):
                return content
            trace.add("download_button_failed", error="Downloaded file is not a PDF")
        except PlaywrightError as e:
            logger.info(f"Download button strategy failed: {e}")
            trace.add("download_button_failed", error=str(e))

    # (c) print the page
    trace.add("print_to_pdf")
    content = page.pdf(format="A4", print_background=True)
    if is_pdf_bytes(content):
        return content

    raise BrowserAutomationError("Failed to obtain PDF from page")


def _capture_error_screenshot(page, trace: Trace) -> None:
    if os.getenv("BROWSER_SCREENSHOT_ON_ERROR", "").lower() != "true":
        return
    try:
        screenshot = page.screenshot(full_page=True)
        trace.add("error_screenshot", screenshot_size=len(screenshot))
    except PlaywrightError as e:
        logger.debug(f"Error screenshot failed: {e}")


def _run_flow(page, url: str, pin: Optional[str], configured: PortalSelectors, trace: Trace) -> bytes:
    downloads: list = []

    def on_download(download):
        downloads.append(download)
        trace.add("download_detected", suggested_filename=download.suggested_filename)

    page.on("download", on_download)

    trace.add("navigate", url=url)
    try:
        page.goto(url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS)
    except PlaywrightError:
        # goto raises when the URL itself starts a download
        if not downloads:
            raise

    selectors = resolve_selectors(configured, page.content() if not downloads else None)

    if pin and not downloads:
        trace.add("pin_input_wait", selector=selectors.pin_input)
        page.wait_for_selector(selectors.pin_input, timeout=SELECTOR_TIMEOUT_MS)
        trace.add("pin_enter")
        page.fill(selectors.pin_input, pin)

        try:
            page.wait_for_selector(selectors.submit_button, timeout=SELECTOR_TIMEOUT_MS)
            trace.add("submit_click", selector=selectors.submit_button)
            page.click(selectors.submit_button)
        except PlaywrightError:
            trace.add("submit_enter")
            page.press(selectors.pin_input, "Enter")
        page.wait_for_load_state("networkidle", timeout=NAVIGATION_TIMEOUT_MS)

    if selectors.wait_for and not downloads:
        trace.add("wait_for_selector", selector=selectors.wait_for)
        page.wait_for_selector(selectors.wait_for, timeout=NAVIGATION_TIMEOUT_MS)

    return acquire_pdf(page, downloads, selectors.pdf_download, trace)


def automate_browser_interaction(
    url: str,
    pin: Optional[str],
    selectors: Optional[PortalSelectors] = None,
    open_page: Callable[[], ContextManager] = browser_page,
) -> BrowserAutomationResult:
    """
    Open the portal, enter the PIN and return the PDF.

    Never raises: every failure, including a browser that will not launch,
    comes back as success=False with the error step in the trace.
    """
    selectors = selectors or PortalSelectors()
    trace = Trace()
    trace.add("browser_launch")

    try:
        with open_page() as page:
            try:
                pdf_bytes = _run_flow(page, url, pin, selectors, trace)
            except (PlaywrightError, BrowserAutomationError, OSError) as e:
                logger.error(f"Browser automation failed for {url}: {e}")
                trace.add("error", error=str(e))
                _capture_error_screenshot(page, trace)
                return BrowserAutomationResult(success=False, error=str(e), trace=trace.entries)
    except PlaywrightError as e:
        logger.error(f"Browser could not be started: {e}")
        trace.add("error", error=str(e))
        return BrowserAutomationResult(success=False, error=str(e), trace=trace.entries)

    trace.add("browser_complete", pdf_size=len(pdf_bytes))
    logger.info(f"Browser automation acquired PDF from {url} ({len(pdf_bytes)} bytes)")
    return BrowserAutomationResult(success=True, pdf_bytes=pdf_bytes, trace=trace.entries)
