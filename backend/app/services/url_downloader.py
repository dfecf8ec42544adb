"""
HTTP primitives used by the direct-download lane.

  check_url_accessibility(url, ...)  -> UrlProbe      (no full body download)
  fetch_html(url, ...)               -> str | None
  download_pdf_from_url(url, ...)    -> bytes         (raises DownloadError)

Every request is bounded by HTTP_TIMEOUT_SECONDS; a timeout is reported the
same way as any other failure.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx

from app.services.lanes.results import PDF_MAGIC, is_pdf_bytes

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 20.0
USER_AGENT = "Mozilla/5.0 (compatible; DocFetch/1.0)"


class DownloadError(Exception):
    """Raised when a URL cannot be downloaded as a PDF."""


@dataclass
class UrlProbe:
    accessible: bool
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    final_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_html(self) -> bool:
        return "text/html" in (self.content_type or "").lower()


def _client(follow_redirects: bool, max_redirects: int) -> httpx.Client:
    return httpx.Client(
        timeout=HTTP_TIMEOUT_SECONDS,
        follow_redirects=follow_redirects,
        max_redirects=max_redirects,
        headers={"User-Agent": USER_AGENT},
    )


def _validate_url(url: str) -> None:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise DownloadError(f"Unsupported URL: {url!r}. Only HTTP/HTTPS are supported.")


def _probe_from_response(response: httpx.Response) -> UrlProbe:
    length = response.headers.get("content-length")
    return UrlProbe(
        accessible=response.is_success,
        content_type=response.headers.get("content-type"),
        content_length=int(length) if length and length.isdigit() else None,
        final_url=str(response.url),
    )


def check_url_accessibility(
    url: str,
    follow_redirects: bool = True,
    max_redirects: int = 5,
) -> UrlProbe:
    """
    Probe a URL's status and content type without downloading the body.

    Uses HEAD; servers that refuse HEAD (405/501) get a streamed GET that is
    closed before the body is read. Never raises.
    """
    try:
        _validate_url(url)
        with _client(follow_redirects, max_redirects) as client:
            response = client.head(url)
            if response.status_code in (405, 501):
                with client.stream("GET", url) as streamed:
                    return _probe_from_response(streamed)
            return _probe_from_response(response)
    except (httpx.HTTPError, DownloadError) as e:
        logger.warning(f"URL probe failed for {url}: {e}")
        return UrlProbe(accessible=False, error=str(e))


def fetch_html(
    url: str,
    follow_redirects: bool = True,
    max_redirects: int = 5,
) -> Optional[str]:
    """Fetch a page's HTML. Returns None on any HTTP or network failure."""
    try:
        with _client(follow_redirects, max_redirects) as client:
            response = client.get(url, headers={"Accept": "text/html"})
    except httpx.HTTPError as e:
        logger.warning(f"HTML fetch failed for {url}: {e}")
        return None

    if not response.is_success:
        logger.warning(f"HTML fetch for {url} returned HTTP {response.status_code}")
        return None
    return response.text


def download_pdf_from_url(
    url: str,
    follow_redirects: bool = True,
    max_redirects: int = 5,
) -> bytes:
    """
    Download a URL and verify the body is a PDF.

    Raises:
        DownloadError: bad URL, HTTP/network failure, empty body, or a body
        that does not start with the %PDF signature.
    """
    _validate_url(url)

    try:
        with _client(follow_redirects, max_redirects) as client:
            response = client.get(url, headers={"Accept": "application/pdf,application/octet-stream,*/*"})
    except httpx.HTTPError as e:
        raise DownloadError(f"Failed to download PDF from {url}: {e}") from e

    if not response.is_success:
        raise DownloadError(f"Failed to download PDF from {url}: HTTP {response.status_code}")

    content = response.content
    if not content:
        raise DownloadError(f"Downloaded file from {url} is empty")
    if not is_pdf_bytes(content):
        raise DownloadError(
            f"File from {url} is not a valid PDF. Expected {PDF_MAGIC!r}, got {content[:4]!r}"
        )

    logger.info(f"Downloaded PDF from {url} ({len(content)} bytes)")
    return content
