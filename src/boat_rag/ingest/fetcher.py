"""Page fetching and text extraction for web evidence."""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import PyPdfError

logger = logging.getLogger(__name__)

_NOISE_TAGS = ["script", "style", "noscript", "template", "iframe", "svg", "nav", "header", "footer", "aside", "form"]


@dataclass(slots=True)
class FetchedPage:
    url: str
    text: str
    source_tag: str


class Extractor(ABC):
    """Turns a response body of one content family into plain text."""

    content_types: tuple[str, ...] = ()
    suffixes: tuple[str, ...] = ()
    source_tag: str = "web"

    def matches_type(self, content_type: str) -> bool:
        return any(kind in content_type for kind in self.content_types)

    def matches_suffix(self, url: str) -> bool:
        path = url.lower().split("?", 1)[0]
        return bool(self.suffixes) and path.endswith(self.suffixes)

    @abstractmethod
    def extract(self, body: bytes, *, encoding: str | None = None) -> str:
        """Return the readable text of ``body``."""


class HtmlExtractor(Extractor):
    content_types = ("text/html", "application/xhtml")
    suffixes = (".html", ".htm")
    source_tag = "web:html"

    def extract(self, body: bytes, *, encoding: str | None = None) -> str:
        soup = BeautifulSoup(body.decode(encoding or "utf-8", errors="replace"), "html.parser")
        for element in soup(_NOISE_TAGS):
            element.decompose()
        root = soup.find("main") or soup.find("article") or soup.body or soup
        blocks = [
            node.get_text(" ", strip=True)
            for node in root.find_all(["h1", "h2", "h3", "h4", "p", "li", "td", "pre"])
        ]
        text = "\n\n".join(block for block in blocks if block)
        return text or root.get_text("\n", strip=True)


class PdfExtractor(Extractor):
    content_types = ("application/pdf",)
    suffixes = (".pdf",)
    source_tag = "web:pdf"

    def extract(self, body: bytes, *, encoding: str | None = None) -> str:
        try:
            reader = PdfReader(io.BytesIO(body))
            pages = [(page.extract_text() or "").strip() for page in reader.pages]
        except PyPdfError as exc:
            raise ValueError(f"Unreadable PDF: {exc}") from exc
        return "\n\n".join(page for page in pages if page)


class PlainTextExtractor(Extractor):
    content_types = ("text/plain",)
    suffixes = (".txt",)
    source_tag = "web:text"

    def extract(self, body: bytes, *, encoding: str | None = None) -> str:
        return body.decode(encoding or "utf-8", errors="replace")


class PageFetcher:
    """Downloads a URL and routes the body to the matching extractor."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 20.0,
        extractors: list[Extractor] | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._extractors = extractors or [PdfExtractor(), HtmlExtractor(), PlainTextExtractor()]

    async def fetch(self, url: str) -> FetchedPage:
        """Fetch ``url``; raises ``httpx.HTTPError`` or ``ValueError`` on failure."""
        if self._client is not None:
            response = await self._client.get(url, follow_redirects=True, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(follow_redirects=True, timeout=self._timeout) as client:
                response = await client.get(url)
        response.raise_for_status()

        content_type = response.headers.get("content-type", "").lower()
        extractor = self._resolve(content_type, url)
        text = extractor.extract(response.content, encoding=response.encoding)
        logger.debug("Fetched %s (%s, %d chars)", url, extractor.source_tag, len(text))
        return FetchedPage(url=str(response.url), text=text, source_tag=extractor.source_tag)

    def _resolve(self, content_type: str, url: str) -> Extractor:
        for extractor in self._extractors:
            if content_type and extractor.matches_type(content_type):
                return extractor
        for extractor in self._extractors:
            if extractor.matches_suffix(url):
                return extractor
        raise ValueError(f"Unsupported content type '{content_type or 'unknown'}' for {url}")
