"""Fetchers that re-download externally refreshable sources.

WebFetcher only talks to public addresses: the hostname of the URL, and of
every redirect target, must resolve outside private, loopback, link-local
and reserved ranges. Bodies are read up to 5 MB and reduced to at most
``max_chars`` characters of plain text.

TranscriptFetcher pulls the caption track of a YouTube video and joins its
segments into one text.
"""

from __future__ import annotations

import ipaddress
import re
import socket
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Protocol

import html2text
from bs4 import BeautifulSoup
from youtube_transcript_api import YouTubeTranscriptApi

_USER_AGENT = "notebookqa/0.1 (source refresh)"
_MAX_BYTES = 5 * 1024 * 1024
_MAX_REDIRECTS = 3
_STRIPPED_TAGS = ["script", "style", "nav", "footer", "header", "aside"]
_VIDEO_ID_RE = re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/)([^&\s?/]+)")


class SsrfError(ValueError):
    """Raised when a URL resolves to a private or reserved address."""


@dataclass(frozen=True)
class FetchedContent:
    name: str
    content: str


class SourceFetcher(Protocol):
    def fetch(self, url: str) -> FetchedContent:
        """Download *url* and return its display name and plain-text content.

        An empty name keeps the source's current name.
        """


def _collapse(text: str, max_chars: int) -> str:
    return " ".join(text.split())[:max_chars]


def ensure_public_url(url: str) -> str:
    """Return the hostname of *url* after checking it is safe to fetch.

    Raises:
        ValueError: Unsupported scheme, no hostname, or DNS failure.
        SsrfError: The hostname resolves to a non-public address.
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Unsupported URL scheme '{parsed.scheme}'; use http:// or https://")
    if not parsed.hostname:
        raise ValueError(f"URL has no hostname: {url}")

    try:
        resolved = {info[4][0] for info in socket.getaddrinfo(parsed.hostname, None)}
    except socket.gaierror as exc:
        raise ValueError(f"Cannot resolve '{parsed.hostname}': {exc}") from exc

    for address in resolved:
        ip = ipaddress.ip_address(address.split("%")[0])
        if not ip.is_global or ip.is_multicast:
            raise SsrfError(f"{parsed.hostname} resolves to private address {ip}; refusing to fetch")
    return parsed.hostname


class _PublicRedirects(urllib.request.HTTPRedirectHandler):
    """Follow at most ``_MAX_REDIRECTS`` redirects, each to a public address."""

    def __init__(self) -> None:
        self._followed = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._followed += 1
        if self._followed > _MAX_REDIRECTS:
            raise ValueError(f"More than {_MAX_REDIRECTS} redirects from {req.full_url}")
        ensure_public_url(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)


class WebFetcher:
    """Fetch a web page and reduce it to plain text.

    The page title becomes the source name; the hostname is used when the
    page has no title.
    """

    def __init__(self, timeout: float = 15.0, max_chars: int = 50_000) -> None:
        self._timeout = timeout
        self._max_chars = max_chars
        self._h2t = html2text.HTML2Text()
        self._h2t.ignore_links = True
        self._h2t.ignore_images = True
        self._h2t.body_width = 0

    def fetch(self, url: str) -> FetchedContent:
        hostname = ensure_public_url(url)
        title, text = self.to_text(self._download(url))
        return FetchedContent(name=title or hostname, content=_collapse(text, self._max_chars))

    def to_text(self, body: bytes) -> tuple[str, str]:
        """Return (title, text) for an HTML *body*; chrome such as nav and footer is dropped."""
        soup = BeautifulSoup(body.decode("utf-8", errors="replace"), "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""
        for tag in soup.find_all(_STRIPPED_TAGS):
            tag.decompose()
        return title, self._h2t.handle(str(soup.body or soup))

    def _download(self, url: str) -> bytes:
        opener = urllib.request.build_opener(_PublicRedirects())
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        with opener.open(request, timeout=self._timeout) as response:
            body = response.read(_MAX_BYTES + 1)
        if len(body) > _MAX_BYTES:
            raise ValueError(f"{url} is larger than {_MAX_BYTES // (1024 * 1024)} MB")
        return body


class TranscriptFetcher:
    """Fetch the caption track of a YouTube video as plain text."""

    def __init__(self, max_chars: int = 50_000, languages: tuple[str, ...] = ("en",)) -> None:
        self._max_chars = max_chars
        self._languages = languages

    def fetch(self, url: str) -> FetchedContent:
        match = _VIDEO_ID_RE.search(url)
        if match is None:
            raise ValueError(f"Invalid YouTube URL: {url}")
        transcript = YouTubeTranscriptApi().fetch(match.group(1), languages=list(self._languages))
        text = " ".join(snippet.text for snippet in transcript)
        return FetchedContent(name="", content=_collapse(text, self._max_chars))


def default_fetchers(timeout: float = 15.0, max_chars: int = 50_000) -> dict[str, SourceFetcher]:
    """Fetchers for every refreshable source type."""
    return {
        "website": WebFetcher(timeout=timeout, max_chars=max_chars),
        "video-transcript": TranscriptFetcher(max_chars=max_chars),
    }
