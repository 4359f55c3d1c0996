"""Retrieval of tender documents from buyer platforms for batch analysis.

Given the document URL of a notice, yields candidate PDFs in preference order:

1. the URL itself when it serves a PDF (by content type, ``direct_pdf``, or by
   ``%PDF`` magic bytes, ``direct_magic``);
2. otherwise, when it serves an HTML page, up to three PDF/download links found
   in the page (``html_extract``).

Every URL, including each redirect hop, goes through an SSRF guard before it is
requested. Each step is recorded in a ``FetchLog`` for diagnostics.
"""

import ipaddress
import re
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Literal
from urllib.parse import urljoin, urlsplit, urlunsplit

import httpx

from tender_engine.core.config import get_settings
from tender_engine.core.document_processing import looks_like_pdf
from tender_engine.core.errors import DocumentFetchError
from tender_engine.core.logging import get_logger

logger = get_logger(__name__)

FETCH_TIMEOUT_SECONDS = 15.0
MAX_REDIRECTS = 5
MAX_HTML_LINKS = 3

REQUEST_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": "application/pdf, text/html, */*",
}

GENERIC_DOCUMENT_PATTERN = re.compile(
    r"depot-pli|aide-en-ligne|mode-?emploi|guide-utilisat|faq|charte-graphique|cgu|cgv|mentions-legales",
    re.IGNORECASE,
)
_PDF_HREF = re.compile(r"""href=["']([^"']*\.pdf(?:\?[^"']*)?)["']""", re.IGNORECASE)
_DOWNLOAD_HREF = re.compile(
    r"""href=["']([^"']*(?:download|telecharger|document|dce|piece|fichier|getFile|attachment)[^"']*)["']""",
    re.IGNORECASE,
)
_BLOCKED_IPV6_PREFIXES = ("::1", "::ffff:", "fe80:", "fc00:", "fd00:")


# =============================================================================
# URL guards
# =============================================================================


def is_allowed_url(url: str) -> bool:
    """
    SSRF guard for outbound document requests.

    Allows http(s) only and rejects loopback, private, link-local and
    unspecified addresses as well as numeric host spellings commonly used to
    smuggle them (hex, bare integers, zero-padded octets).
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme not in ("http", "https"):
        return False

    host = (parts.hostname or "").strip("[]").lower()
    if not host or host in ("localhost", "0.0.0.0") or host.endswith(".localhost"):
        return False
    if host.startswith(_BLOCKED_IPV6_PREFIXES) or re.match(r"^0{1,4}:", host):
        return False
    if re.fullmatch(r"0x[0-9a-f]+", host) or re.fullmatch(r"\d{8,}", host):
        return False
    if re.match(r"^0\d+\.", host):
        return False

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return True

    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
    )


def normalize_url(url: str) -> str:
    """Upgrade ``http`` to ``https``; leave anything else untouched."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if parts.scheme == "http":
        return urlunsplit(("https",) + tuple(parts)[1:])
    return url


def extract_pdf_links(html: str, base_url: str | None = None) -> list[str]:
    """
    Find document links in an HTML page, PDFs first then download-like links.

    Generic platform documents (user guides, terms, FAQ) are skipped.
    """
    links: list[str] = []
    for pattern in (_PDF_HREF, _DOWNLOAD_HREF):
        for match in pattern.finditer(html):
            href = match.group(1).strip()
            if base_url:
                href = urljoin(base_url, href)
            if not href.lower().startswith(("http://", "https://")):
                continue
            if GENERIC_DOCUMENT_PATTERN.search(href) or href in links:
                continue
            links.append(href)
    return links


# =============================================================================
# Step log
# =============================================================================


StepStatus = Literal["success", "skip", "fail"]


@dataclass
class FetchStep:
    step: str
    status: StepStatus
    detail: str | None = None
    duration_ms: int | None = None
    url: str | None = None


@dataclass
class FetchLog:
    """Ordered record of the steps taken to find a document."""

    notice_id: str | None = None
    steps: list[FetchStep] = field(default_factory=list)

    def add(
        self,
        step: str,
        status: StepStatus,
        detail: str | None = None,
        duration_ms: int | None = None,
        url: str | None = None,
    ) -> None:
        self.steps.append(FetchStep(step, status, detail, duration_ms, url))
        logger.debug(
            f"Fetch step {step}: {status} {detail or ''}".rstrip(),
            extra={"notice_id": self.notice_id},
        )

    def summary(self) -> str:
        return "; ".join(f"{s.step}={s.status}" for s in self.steps)


# =============================================================================
# Fetching
# =============================================================================


@dataclass
class FetchResponse:
    url: str
    status_code: int
    content_type: str
    content: bytes
    encoding: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")


@dataclass
class FetchedDocument:
    """A candidate document ready for analysis."""

    content: bytes
    fetch_method: str
    url: str

    @property
    def size_bytes(self) -> int:
        return len(self.content)


class DocumentFetcher:
    """Fetches tender documents over HTTP with redirect validation and a size cap."""

    def __init__(
        self,
        max_bytes: int | None = None,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        max_redirects: int = MAX_REDIRECTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.max_bytes = max_bytes or get_settings().MAX_DOCUMENT_BYTES
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=False,
            headers=REQUEST_HEADERS,
            transport=self._transport,
        )

    async def get(self, client: httpx.AsyncClient, url: str) -> FetchResponse:
        """
        GET ``url`` following redirects manually, validating every hop.

        Raises:
            DocumentFetchError: On a disallowed redirect, too many redirects or
                an oversized body
            httpx.HTTPError: On transport failure
        """
        current = url
        for _ in range(self.max_redirects + 1):
            async with client.stream("GET", current) as response:
                if 300 <= response.status_code < 400:
                    location = response.headers.get("location")
                    if not location:
                        raise DocumentFetchError("Redirect without a location")
                    resolved = urljoin(current, location)
                    if not is_allowed_url(resolved):
                        raise DocumentFetchError("Redirect to a disallowed URL")
                    current = resolved
                    continue

                content_type = response.headers.get("content-type", "").lower()
                if not response.is_success:
                    return FetchResponse(current, response.status_code, content_type, b"")

                declared = int(response.headers.get("content-length") or 0)
                if declared > self.max_bytes:
                    raise DocumentFetchError(f"Document too large: {declared} bytes")

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        raise DocumentFetchError(f"Document exceeds {self.max_bytes} bytes")

                return FetchResponse(
                    current, response.status_code, content_type, bytes(body), response.encoding
                )

        raise DocumentFetchError("Too many redirects")

    async def iter_candidates(self, url: str, log: FetchLog) -> AsyncIterator[FetchedDocument]:
        """
        Yield candidate documents for ``url`` in preference order.

        The caller stops iterating as soon as one candidate is analysed
        successfully.

        Raises:
            DocumentFetchError: If the URL itself is not allowed
        """
        target = normalize_url(url)
        if not is_allowed_url(target):
            log.add("url_validation", "fail", "URL not allowed (private network)", url=target)
            raise DocumentFetchError("URL not allowed (private network)")
        log.add("url_resolved", "success", target, url=target)

        async with self._client() as client:
            start = time.perf_counter()
            try:
                response = await self.get(client, target)
            except (DocumentFetchError, httpx.HTTPError) as e:
                log.add("direct", "fail", str(e) or e.__class__.__name__, _elapsed_ms(start), target)
                return
            duration = _elapsed_ms(start)

            if not response.ok:
                log.add("direct", "fail", f"HTTP {response.status_code}", duration, target)
                return

            content_type = response.content_type
            if "application/pdf" in content_type:
                log.add("direct", "success", f"PDF, {len(response.content)} bytes", duration, target)
                yield FetchedDocument(response.content, "direct_pdf", response.url)
                return

            if "text/html" not in content_type:
                if looks_like_pdf(response.content):
                    log.add(
                        "direct", "success",
                        f"PDF by magic bytes (ct={content_type}), {len(response.content)} bytes",
                        duration, target,
                    )
                    yield FetchedDocument(response.content, "direct_magic", response.url)
                else:
                    log.add("direct", "fail", f"Not a PDF, ct={content_type}", duration, target)
                return

            html = response.text
            log.add("direct", "skip", f"HTML {len(html)} chars", duration, target)

            links = extract_pdf_links(html, base_url=response.url)
            log.add("html_extract", "success" if links else "skip", f"{len(links)} links found")

            for link in links[:MAX_HTML_LINKS]:
                if not is_allowed_url(link):
                    log.add("html_fetch", "skip", "URL not allowed", url=link)
                    continue
                start = time.perf_counter()
                try:
                    linked = await self.get(client, normalize_url(link))
                except (DocumentFetchError, httpx.HTTPError) as e:
                    log.add("html_fetch", "fail", str(e) or e.__class__.__name__, _elapsed_ms(start), link)
                    continue
                duration = _elapsed_ms(start)

                if not linked.ok:
                    log.add("html_fetch", "fail", f"HTTP {linked.status_code}", duration, link)
                    continue
                if looks_like_pdf(linked.content) or "application/pdf" in linked.content_type:
                    log.add("html_fetch", "success", f"PDF {len(linked.content)} bytes", duration, link)
                    yield FetchedDocument(linked.content, "html_extract", linked.url)
                    continue
                log.add("html_fetch", "fail", "Not a PDF", duration, link)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
