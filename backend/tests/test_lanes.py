"""
Tests for the three acquisition lanes.

Network, browser and Claude collaborators are injected or patched, so every
test runs offline.
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from app.models.extraction import CandidateLink, ClassifiedLink, LinkType, TraceEntry
from app.models.extraction_policy import ExtractionPolicy
from app.models.inbound_email import InboundAttachment, InboundEmail
from app.services.browser_automation import BrowserAutomationResult
from app.services.lanes.agentic_portal import (
    fallback_goal,
    generate_agentic_goal,
    is_url_allowed,
    process_agentic_portal,
)
from app.services.lanes.attachments import classify_document_name, process_attachments
from app.services.lanes.direct_download import process_direct_links
from app.services.lanes.interactive_portal import process_interactive_portal
from app.services.lanes.results import LaneEscalation, LaneFailure, LaneSuccess
from app.services.pin_extractor import RegexPinExtractor
from app.services.url_downloader import DownloadError, UrlProbe


PDF_BYTES = b"%PDF-1.4\n%test document\n"
PIN_FORM = '<form action="/unlock"><p>Enter your PIN</p><input type="password" id="pin"><button type="submit">View</button></form>'
LOGIN_FORM = '<form action="/session"><input type="email" name="username"><input type="password" name="secret"><button>Sign in</button></form>'


def _email(text_body=None, html_body=None, attachments=(), subject="Your statement") -> InboundEmail:
    return InboundEmail(
        message_id="msg-1",
        sender_email="billing@utility.example.com",
        recipient_email="bills@inbound.example.com",
        subject=subject,
        text_body=text_body,
        html_body=html_body,
        attachments=attachments,
    )


def _steps(outcome):
    return [entry.step for entry in outcome.trace]


# ---------------------------------------------------------------------------
# Lane 1
# ---------------------------------------------------------------------------

class TestAttachmentsLane:

    def test_collects_valid_pdfs_only(self):
        email = _email(attachments=(
            InboundAttachment(filename="invoice_0425.pdf", content=PDF_BYTES, content_type="application/pdf"),
            InboundAttachment(filename="logo.png", content=b"\x89PNG", content_type="image/png"),
            InboundAttachment(filename="broken.pdf", content=b"<html>", content_type="application/pdf"),
            InboundAttachment(filename="empty.pdf", content=b"", content_type="application/pdf"),
        ))

        outcome = process_attachments(email)

        assert isinstance(outcome, LaneSuccess)
        assert [doc.name for doc in outcome.documents] == ["invoice_0425.pdf"]
        assert outcome.documents[0].source_url is None
        skipped = [e.data for e in outcome.trace if e.step == "attachment_skipped"]
        assert skipped == [
            {"filename": "broken.pdf", "reason": "invalid_pdf"},
            {"filename": "empty.pdf", "reason": "empty"},
        ]
        assert _steps(outcome)[0] == "lane1_start"
        assert _steps(outcome)[-1] == "lane1_complete"

    def test_no_attachments_fails(self):
        outcome = process_attachments(_email(text_body="hello"))
        assert isinstance(outcome, LaneFailure)
        assert outcome.error == "No attachments found in email"

    def test_only_invalid_pdfs_fails(self):
        email = _email(attachments=(
            InboundAttachment(filename="fake.pdf", content=b"not a pdf", content_type="application/pdf"),
        ))
        outcome = process_attachments(email)
        assert isinstance(outcome, LaneFailure)
        assert outcome.error == "No valid PDF attachments found"

    @pytest.mark.parametrize("filename,doc_type", [
        ("INV-2025-03.pdf", "invoice"),
        ("Tax_Invoice.pdf", "invoice"),
        ("stmt_march.pdf", "statement"),
        ("electricity-bill.pdf", "statement"),
        ("scan001.pdf", "other"),
    ])
    def test_classify_document_name(self, filename, doc_type):
        assert classify_document_name(filename)[0] == doc_type


# ---------------------------------------------------------------------------
# Lane 2
# ---------------------------------------------------------------------------

def _probe(content_type="application/pdf", accessible=True):
    return UrlProbe(accessible=accessible, content_type=content_type)


class TestDirectDownloadLane:

    def test_downloads_direct_links(self):
        links = [
            ClassifiedLink(url="https://example.com/march.pdf", label="march.pdf", link_type=LinkType.DIRECT_PDF),
            ClassifiedLink(url="https://example.com/get?id=2", label="Download", link_type=LinkType.DIRECT_PDF),
        ]
        probe = MagicMock(return_value=_probe())
        download = MagicMock(return_value=PDF_BYTES)
        policy = ExtractionPolicy(lane2={"follow_redirects": False, "max_redirects": 1})

        outcome = process_direct_links(_email(), policy, links, probe=probe, fetch_html=MagicMock(), download=download)

        assert isinstance(outcome, LaneSuccess)
        assert [doc.name for doc in outcome.documents] == ["march.pdf", "downloaded-2.pdf"]
        assert outcome.documents[1].source_url == "https://example.com/get?id=2"
        download.assert_any_call("https://example.com/march.pdf", follow_redirects=False, max_redirects=1)
        assert _steps(outcome)[-1] == "lane2_complete"

    def test_falls_back_to_pdf_links_in_email(self):
        email = _email(text_body="Get it here: https://example.com/a.pdf\nManage preferences: https://example.com/prefs")
        probe = MagicMock(return_value=_probe())
        download = MagicMock(return_value=PDF_BYTES)

        outcome = process_direct_links(
            email, ExtractionPolicy(), None,
            probe=probe, fetch_html=MagicMock(), download=download,
        )

        assert isinstance(outcome, LaneSuccess)
        assert outcome.documents[0].source_url == "https://example.com/a.pdf"
        probe.assert_called_once()

    def test_fallback_ignores_non_pdf_links_behind_login(self):
        """A sign-in page on a social link must not end the lane before the bill is tried."""
        email = _email(text_body="Follow us https://social.test/utility\nYour bill https://x.test/bill.pdf")

        def probe(url, **kwargs):
            if "social.test" in url:
                return _probe(content_type="text/html")
            return _probe()

        fetch_html = MagicMock(return_value=LOGIN_FORM)
        download = MagicMock(return_value=PDF_BYTES)

        outcome = process_direct_links(
            email, ExtractionPolicy(preferred_lane="lane2_direct"), None,
            probe=probe, fetch_html=fetch_html, download=download,
        )

        assert isinstance(outcome, LaneSuccess)
        assert [doc.source_url for doc in outcome.documents] == ["https://x.test/bill.pdf"]
        fetch_html.assert_not_called()

    def test_fallback_without_pdf_links_fails(self):
        outcome = process_direct_links(
            _email(text_body="Sign in at https://portal.example.com/view"), ExtractionPolicy(), None,
            probe=MagicMock(), fetch_html=MagicMock(), download=MagicMock(),
        )
        assert isinstance(outcome, LaneFailure)
        assert outcome.error == "No links found in email"

    def test_html_page_requiring_pin_escalates_and_stops(self):
        links = [
            CandidateLink(url="https://portal.example.com/view"),
            CandidateLink(url="https://example.com/never-tried.pdf"),
        ]
        probe = MagicMock(return_value=_probe(content_type="text/html; charset=utf-8"))
        download = MagicMock()

        outcome = process_direct_links(
            _email(), ExtractionPolicy(), links,
            probe=probe, fetch_html=MagicMock(return_value=PIN_FORM), download=download,
        )

        assert isinstance(outcome, LaneEscalation)
        assert outcome.reason == "HTML requires pin interaction"
        assert outcome.next_hint == "https://portal.example.com/view"
        assert probe.call_count == 1
        download.assert_not_called()
        detected = [e.data for e in outcome.trace if e.step == "interaction_detected"][0]
        assert detected["interaction_kind"] == "pin"

    def test_escalates_even_after_earlier_link_was_probed(self):
        links = [
            CandidateLink(url="https://example.com/first.pdf"),
            CandidateLink(url="https://portal.example.com/view"),
        ]
        probe = MagicMock(side_effect=[_probe(), _probe(content_type="text/html")])

        outcome = process_direct_links(
            _email(), ExtractionPolicy(), links,
            probe=probe, fetch_html=MagicMock(return_value=PIN_FORM), download=MagicMock(return_value=PDF_BYTES),
        )

        assert isinstance(outcome, LaneEscalation)
        assert outcome.next_hint == "https://portal.example.com/view"
        assert _steps(outcome).count("url_checked") == 2

    def test_plain_html_page_is_still_downloaded(self):
        links = [CandidateLink(url="https://example.com/landing")]
        download = MagicMock(side_effect=DownloadError("File is not a valid PDF"))

        outcome = process_direct_links(
            _email(), ExtractionPolicy(), links,
            probe=MagicMock(return_value=_probe(content_type="text/html")),
            fetch_html=MagicMock(return_value="<p>Nothing to see</p>"),
            download=download,
        )

        assert isinstance(outcome, LaneFailure)
        assert outcome.error == "No PDFs could be downloaded from links"
        assert "download_failed" in _steps(outcome)

    def test_inaccessible_links_are_skipped(self):
        links = [CandidateLink(url="https://example.com/a.pdf"), CandidateLink(url="https://example.com/b.pdf")]
        probe = MagicMock(side_effect=[_probe(accessible=False), _probe()])
        download = MagicMock(return_value=PDF_BYTES)

        outcome = process_direct_links(_email(), ExtractionPolicy(), links, probe=probe, fetch_html=MagicMock(), download=download)

        assert isinstance(outcome, LaneSuccess)
        download.assert_called_once()
        assert outcome.documents[0].source_url == "https://example.com/b.pdf"

    def test_no_links_fails(self):
        outcome = process_direct_links(
            _email(text_body="No links here"), ExtractionPolicy(), None,
            probe=MagicMock(), fetch_html=MagicMock(), download=MagicMock(),
        )
        assert isinstance(outcome, LaneFailure)
        assert outcome.error == "No links found in email"


# ---------------------------------------------------------------------------
# Lane 3, deterministic backend
# ---------------------------------------------------------------------------

class TestInteractivePortalLane:

    def test_success_with_masked_pin(self):
        email = _email(text_body="Open https://portal.example.com/view and use PIN 482913")
        automate = MagicMock(return_value=BrowserAutomationResult(
            success=True, pdf_bytes=PDF_BYTES, trace=[TraceEntry(step="browser_launch")],
        ))

        outcome = process_interactive_portal(
            "https://portal.example.com/view", email, ExtractionPolicy(),
            pin_extractor=RegexPinExtractor(), automate=automate,
        )

        assert isinstance(outcome, LaneSuccess)
        doc = outcome.documents[0]
        assert doc.name.startswith("statement-") and doc.name.endswith(".pdf")
        assert doc.source_url == "https://portal.example.com/view"
        automate.assert_called_once_with("https://portal.example.com/view", "482913", ExtractionPolicy().lane3.selectors)
        assert _steps(outcome) == [
            "lane3_start", "pin_extraction_start", "pin_extracted",
            "browser_automation_start", "browser_launch", "lane3_complete",
        ]
        serialized = json.dumps([e.model_dump(mode="json") for e in outcome.trace])
        assert "482913" not in serialized
        assert "48****" in serialized

    def test_missing_pin_escalates_without_launching_browser(self):
        automate = MagicMock()

        outcome = process_interactive_portal(
            "https://portal.example.com/view", _email(text_body="Click the link"), ExtractionPolicy(),
            pin_extractor=RegexPinExtractor(), automate=automate,
        )

        assert isinstance(outcome, LaneEscalation)
        assert outcome.reason == "PIN not found in email"
        assert outcome.next_hint == "https://portal.example.com/view"
        automate.assert_not_called()

    def test_pin_optional_portal_runs_without_pin(self):
        automate = MagicMock(return_value=BrowserAutomationResult(success=True, pdf_bytes=PDF_BYTES))
        policy = ExtractionPolicy(lane3={"pin_required": False})

        outcome = process_interactive_portal(
            "https://portal.example.com/view", _email(text_body="Click the link"), policy,
            pin_extractor=RegexPinExtractor(), automate=automate,
        )

        assert isinstance(outcome, LaneSuccess)
        assert automate.call_args[0][1] is None

    def test_automation_failure_escalates(self):
        automate = MagicMock(return_value=BrowserAutomationResult(success=False, error="Timeout waiting for #pin"))

        outcome = process_interactive_portal(
            "https://portal.example.com/view", _email(text_body="PIN: 1234"), ExtractionPolicy(),
            pin_extractor=RegexPinExtractor(), automate=automate,
        )

        assert isinstance(outcome, LaneEscalation)
        assert outcome.reason == "Timeout waiting for #pin"

    def test_non_pdf_result_escalates(self):
        automate = MagicMock(return_value=BrowserAutomationResult(success=True, pdf_bytes=b"<html>"))

        outcome = process_interactive_portal(
            "https://portal.example.com/view", _email(text_body="PIN: 1234"), ExtractionPolicy(),
            pin_extractor=RegexPinExtractor(), automate=automate,
        )

        assert isinstance(outcome, LaneEscalation)
        assert outcome.reason == "Browser automation did not return a valid PDF"

    def test_browser_crash_escalates(self):
        automate = MagicMock(side_effect=OSError("chromium executable not found"))

        outcome = process_interactive_portal(
            "https://portal.example.com/view", _email(text_body="PIN: 1234"), ExtractionPolicy(),
            pin_extractor=RegexPinExtractor(), automate=automate,
        )

        assert isinstance(outcome, LaneEscalation)
        assert "chromium" in outcome.reason
        assert _steps(outcome)[-1] == "error"


# ---------------------------------------------------------------------------
# Lane 3, agentic backend
# ---------------------------------------------------------------------------

class TestAgenticPortalLane:

    @pytest.mark.parametrize("url,allowed,expected", [
        ("https://portal.example.com/x", [], True),
        ("https://portal.example.com/x", ["example.com"], True),
        ("https://example.com/x", ["example.com"], True),
        ("https://evil-example.com/x", ["example.com"], False),
        ("https://other.test/x", ["example.com", "portal.test"], False),
    ])
    def test_is_url_allowed(self, url, allowed, expected):
        assert is_url_allowed(url, allowed) is expected

    def test_disallowed_domain_fails_without_running_agent(self):
        run_agent = MagicMock()
        policy = ExtractionPolicy(lane3={"agentic": {"allowed_domains": ["billing.example.com"]}})

        outcome = process_agentic_portal(
            "https://phish.test/login", _email(text_body="PIN: 1234"), policy,
            pin_extractor=RegexPinExtractor(), run_agent=run_agent,
        )

        assert isinstance(outcome, LaneFailure)
        assert outcome.error == "URL https://phish.test/login is not in allowed domains list"
        run_agent.assert_not_called()

    @patch("app.services.lanes.agentic_portal.ask_claude")
    def test_success_traces_goal_length_only(self, mock_ask):
        mock_ask.return_value = "Open the portal, type 482913 into the PIN box, download the statement."
        run_agent = MagicMock(return_value=BrowserAutomationResult(success=True, pdf_bytes=PDF_BYTES))

        outcome = process_agentic_portal(
            "https://portal.example.com/view", _email(text_body="Your PIN is 482913"), ExtractionPolicy(),
            pin_extractor=RegexPinExtractor(), run_agent=run_agent,
        )

        assert isinstance(outcome, LaneSuccess)
        url, goal, guardrails = run_agent.call_args[0]
        assert "482913" in goal
        assert guardrails.max_steps == 25
        goal_entry = [e for e in outcome.trace if e.step == "goal_generated"][0]
        assert goal_entry.data == {"goal_length": len(goal), "pin_found": True}
        serialized = json.dumps([e.model_dump(mode="json") for e in outcome.trace])
        assert "482913" not in serialized

    @patch("app.services.lanes.agentic_portal.ask_claude")
    def test_agent_failure_is_terminal(self, mock_ask):
        mock_ask.return_value = "Download the statement."
        run_agent = MagicMock(return_value=BrowserAutomationResult(success=False, error="Agent timed out after 180s"))

        outcome = process_agentic_portal(
            "https://portal.example.com/view", _email(text_body="No code"), ExtractionPolicy(),
            pin_extractor=RegexPinExtractor(), run_agent=run_agent,
        )

        assert isinstance(outcome, LaneFailure)
        assert outcome.error == "Agent timed out after 180s"

    @patch("app.services.lanes.agentic_portal.ask_claude")
    def test_goal_falls_back_to_template_when_claude_fails(self, mock_ask):
        mock_ask.side_effect = RuntimeError("overloaded")
        policy = ExtractionPolicy(instruction="Use the 'Bills' tab")

        goal = generate_agentic_goal("https://portal.example.com/view", _email(text_body="hi"), policy, "1234")

        assert goal == fallback_goal("https://portal.example.com/view", "1234", policy)
        assert "enter 1234" in goal
        assert "Use the 'Bills' tab" in goal

    @patch("app.services.lanes.agentic_portal.ask_claude")
    def test_goal_missing_pin_gets_it_appended(self, mock_ask):
        mock_ask.return_value = "Open the portal and download the bill."
        goal = generate_agentic_goal("https://portal.example.com/view", _email(text_body="hi"), ExtractionPolicy(), "5678")
        assert goal.endswith("The access code / PIN is 5678.")

    @patch("app.services.lanes.agentic_portal.ask_claude")
    def test_portal_context_pin_beats_email_pin(self, mock_ask):
        mock_ask.side_effect = RuntimeError("no key")
        policy = ExtractionPolicy(lane3={"agentic": {"portal_context": "Account PIN: 777777"}})
        run_agent = MagicMock(return_value=BrowserAutomationResult(success=True, pdf_bytes=PDF_BYTES))

        process_agentic_portal(
            "https://portal.example.com/view", _email(text_body="PIN: 1111"), policy,
            pin_extractor=RegexPinExtractor(), run_agent=run_agent,
        )

        goal = run_agent.call_args[0][1]
        assert "777777" in goal
        assert "1111" not in goal
