"""
End-to-end pipeline tests for process_email_with_lanes.

Every external primitive (HTTP probe/fetch/download, Playwright flow,
browser agent, Claude) is injected or patched. The scenarios cover each lane,
the lane2 -> lane3 -> agentic escalation chain, and the uniform failure
shape.
"""

from unittest.mock import MagicMock, patch

import anthropic
import httpx

from app.models.extraction import ClassifiedLink, Lane, LinkClassification, LinkType, TraceEntry
from app.models.extraction_policy import ExtractionPolicy
from app.models.inbound_email import InboundAttachment, InboundEmail
from app.services.browser_automation import BrowserAutomationResult
from app.services.decision_matrix import NO_DOCUMENT_SOURCE_REASON
from app.services.lane_orchestrator import NO_PORTAL_LINKS_ERROR, process_email_with_lanes
from app.services.link_classifier import ClaudeLinkClassifier, FallbackLinkClassifier, HeuristicLinkClassifier
from app.services.pin_extractor import RegexPinExtractor
from app.services.url_downloader import UrlProbe


PDF_BYTES = b"%PDF-1.4\n%statement\n"
PORTAL_URL = "https://x.test/portal"
PIN_PAGE = (
    "<html><body><p>Enter the 6-digit PIN from your email</p>"
    '<form action="/unlock"><input type="password" name="pin"><button type="submit">View</button></form>'
    "</body></html>"
)


def _email(text_body=None, attachments=()) -> InboundEmail:
    return InboundEmail(
        message_id="msg-42",
        sender_email="Billing <billing@utility.example.com>",
        recipient_email="bills@inbound.example.com",
        subject="Your statement is ready",
        text_body=text_body,
        attachments=attachments,
    )


def _steps(result):
    return [entry.step for entry in result.trace]


def _run(email, policy=None, **overrides):
    """Run the pipeline with offline defaults; overrides replace any collaborator."""
    kwargs = dict(
        classifier=HeuristicLinkClassifier(),
        pin_extractor=RegexPinExtractor(),
        probe=MagicMock(return_value=UrlProbe(accessible=True, content_type="application/pdf")),
        fetch_html=MagicMock(return_value=None),
        download=MagicMock(return_value=PDF_BYTES),
        automate=MagicMock(return_value=BrowserAutomationResult(success=True, pdf_bytes=PDF_BYTES)),
        run_agent=MagicMock(return_value=BrowserAutomationResult(success=True, pdf_bytes=PDF_BYTES)),
    )
    kwargs.update(overrides)
    return process_email_with_lanes(email, policy or ExtractionPolicy(), **kwargs), kwargs


# ---------------------------------------------------------------------------
# Acceptance scenarios
# ---------------------------------------------------------------------------

class TestScenarios:

    def test_a_pdf_attachment(self):
        email = _email(attachments=(
            InboundAttachment(filename="bill.pdf", content=PDF_BYTES, content_type="application/pdf"),
        ))

        result, deps = _run(email)

        assert result.success is True
        assert result.lane == Lane.LANE1_ATTACHMENTS
        assert [doc.name for doc in result.documents] == ["bill.pdf"]
        assert _steps(result)[:2] == ["lane_decision", "lane1_start"]
        deps["probe"].assert_not_called()

    def test_b_direct_pdf_link(self):
        email = _email(text_body="Download: https://x.test/statement.pdf")

        result, deps = _run(email)

        assert result.success is True
        assert result.lane == Lane.LANE2_DIRECT
        assert len(result.documents) == 1
        assert result.documents[0].source_url == "https://x.test/statement.pdf"
        deps["download"].assert_called_once_with(
            "https://x.test/statement.pdf", follow_redirects=True, max_redirects=5
        )

    def test_c_portal_escalates_from_lane2_to_lane3(self):
        email = _email(text_body=f"View your statement at {PORTAL_URL}\nYour PIN is 482913.")
        classifier = MagicMock()
        classifier.classify.return_value = LinkClassification(
            document_links=[ClassifiedLink(url=PORTAL_URL, link_type=LinkType.DIRECT_PDF)],
            method="ai",
        )
        automate = MagicMock(return_value=BrowserAutomationResult(
            success=True, pdf_bytes=PDF_BYTES, trace=[TraceEntry(step="browser_launch")],
        ))

        result, deps = _run(
            email,
            classifier=classifier,
            probe=MagicMock(return_value=UrlProbe(accessible=True, content_type="text/html")),
            fetch_html=MagicMock(return_value=PIN_PAGE),
            automate=automate,
        )

        assert result.success is True
        assert result.lane == Lane.LANE3_INTERACTIVE
        assert len(result.documents) == 1
        assert result.documents[0].source_url == PORTAL_URL
        automate.assert_called_once()
        assert automate.call_args[0][:2] == (PORTAL_URL, "482913")
        deps["download"].assert_not_called()

        steps = _steps(result)
        for step in ("lane2_start", "interaction_detected", "escalated_to_lane3_interactive", "lane3_start", "lane3_complete"):
            assert step in steps
        assert steps.index("lane2_start") < steps.index("escalated_to_lane3_interactive") < steps.index("lane3_start")

    @patch("app.services.link_classifier.ask_claude_for_json")
    def test_d_classifier_timeout_falls_back_silently(self, mock_ask):
        mock_ask.side_effect = anthropic.APITimeoutError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )
        email = _email(text_body="Your bill: https://x.test/statement.pdf")
        classifier = FallbackLinkClassifier(ClaudeLinkClassifier(), HeuristicLinkClassifier())

        result, _ = _run(email, classifier=classifier)

        assert result.success is True
        assert result.lane == Lane.LANE2_DIRECT
        assert result.error is None
        assert result.trace[0].data["classification_method"] == "heuristic"

    def test_e_no_attachments_no_links(self):
        result, deps = _run(_email(text_body="Thanks for your payment."))

        assert result.success is False
        assert result.lane == Lane.UNKNOWN
        assert result.error == NO_DOCUMENT_SOURCE_REASON
        assert result.requires_escalation is False
        assert _steps(result) == ["lane_decision"]


# ---------------------------------------------------------------------------
# Lane 3 backends and escalation bookkeeping
# ---------------------------------------------------------------------------

class TestLane3Chain:

    def _portal_email(self):
        return _email(text_body=f"Log in at {PORTAL_URL} with PIN 482913")

    @patch("app.services.lanes.agentic_portal.ask_claude")
    def test_deterministic_failure_falls_back_to_agentic(self, mock_ask):
        mock_ask.return_value = "Open the portal, enter PIN 482913 and download the PDF."
        automate = MagicMock(return_value=BrowserAutomationResult(success=False, error="Timeout waiting for PIN input"))

        result, deps = _run(self._portal_email(), automate=automate)

        assert result.success is True
        assert result.lane == Lane.LANE3_INTERACTIVE
        deps["run_agent"].assert_called_once()
        steps = _steps(result)
        assert "escalated_to_lane3_agentic" in steps
        backends = [e.data["backend"] for e in result.trace if e.step == "lane3_start"]
        assert backends == ["playwright", "agentic"]

    @patch("app.services.lanes.agentic_portal.ask_claude")
    def test_both_backends_fail_keeps_escalation_reason(self, mock_ask):
        mock_ask.return_value = "Download the PDF with PIN 482913."
        automate = MagicMock(return_value=BrowserAutomationResult(success=False, error="Timeout waiting for PIN input"))
        run_agent = MagicMock(return_value=BrowserAutomationResult(success=False, error="Agent timed out after 180s"))

        result, _ = _run(self._portal_email(), automate=automate, run_agent=run_agent)

        assert result.success is False
        assert result.lane == Lane.LANE3_INTERACTIVE
        assert result.requires_escalation is True
        assert result.escalation_reason == "Timeout waiting for PIN input"
        assert result.error == "Agent timed out after 180s"
        assert result.documents == []

    def test_escalation_without_agentic_fallback(self):
        policy = ExtractionPolicy(lane3={"agentic_fallback": False})
        email = _email(text_body=f"Open {PORTAL_URL} to see your bill")

        result, deps = _run(email, policy)

        assert result.success is False
        assert result.requires_escalation is True
        assert result.escalation_reason == "PIN not found in email"
        assert result.error == "Could not extract PIN from email"
        deps["automate"].assert_not_called()
        deps["run_agent"].assert_not_called()

    @patch("app.services.lanes.agentic_portal.ask_claude")
    def test_agentic_backend_skips_playwright(self, mock_ask):
        mock_ask.return_value = "Enter 482913 and download the statement."
        policy = ExtractionPolicy(lane3={"backend": "agentic"})

        result, deps = _run(self._portal_email(), policy)

        assert result.success is True
        deps["automate"].assert_not_called()
        deps["run_agent"].assert_called_once()

    @patch("app.services.lanes.agentic_portal.ask_claude")
    def test_agentic_backend_failure_requires_escalation(self, mock_ask):
        mock_ask.return_value = "Enter 482913 and download the statement."
        policy = ExtractionPolicy(lane3={"backend": "agentic"})
        run_agent = MagicMock(return_value=BrowserAutomationResult(success=False, error="Agent timed out after 180s"))

        result, deps = _run(self._portal_email(), policy, run_agent=run_agent)

        assert result.success is False
        assert result.lane == Lane.LANE3_INTERACTIVE
        assert result.requires_escalation is True
        assert result.escalation_reason == "Agent timed out after 180s"
        assert result.error == "Agent timed out after 180s"
        deps["automate"].assert_not_called()

    def test_lane2_failure_does_not_require_escalation(self):
        email = _email(text_body="Bill: https://x.test/statement.pdf")

        result, _ = _run(email, probe=MagicMock(return_value=UrlProbe(accessible=False, error="HTTP 404")))

        assert result.success is False
        assert result.lane == Lane.LANE2_DIRECT
        assert result.requires_escalation is False
        assert result.error == "No PDFs could be downloaded from links"

    def test_lane3_override_without_links(self):
        policy = ExtractionPolicy(preferred_lane="lane3_interactive")

        result, _ = _run(_email(text_body="Your statement is ready."), policy)

        assert result.success is False
        assert result.lane == Lane.LANE3_INTERACTIVE
        assert result.error == NO_PORTAL_LINKS_ERROR
        assert result.requires_escalation is False

    def test_trace_is_chronological_across_lanes(self):
        email = _email(text_body="View your statement at https://x.test/statement.pdf\nPIN: 482913")

        result, _ = _run(
            email,
            policy=ExtractionPolicy(preferred_lane="lane2_direct"),
            probe=MagicMock(return_value=UrlProbe(accessible=True, content_type="text/html")),
            fetch_html=MagicMock(return_value=PIN_PAGE),
        )

        assert result.success is True
        timestamps = [entry.timestamp for entry in result.trace]
        assert timestamps == sorted(timestamps)
        assert _steps(result)[0] == "lane_decision"
