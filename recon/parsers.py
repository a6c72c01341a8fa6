"""OCR and page parsing utilities.

Covers sitemap URL discovery, article metadata extraction from HTML,
timestamp parsing, and OCR of remote images via Tesseract.
"""
from __future__ import annotations

import asyncio
import io
import logging
import re
from datetime import datetime, timezone
from urllib.parse import urljoin, urlparse

import httpx
import pytesseract
from bs4 import BeautifulSoup, FeatureNotFound
from PIL import Image

from .config import OCRSettings
from .store import ArticleRecord

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Uncategorized"


class ParseError(Exception):
    """Raised when a document cannot be parsed."""
    pass


class OCRError(Exception):
    """Raised when text cannot be extracted from an image."""
    pass


def _path_segments(url: str) -> list[str]:
    return [segment for segment in urlparse(url).path.split("/") if segment]


def _on_domain(url: str, domain: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    domain = domain.lower()
    return host == domain or host.endswith("." + domain)


def is_article_url(url: str, domain: str) -> bool:
    """Decide whether a sitemap URL points at an article.

    Single-segment paths (``/technology/``) are category index pages, and
    anything under a ``tag`` segment is a tag listing.
    """
    if not _on_domain(url, domain):
        return False
    segments = _path_segments(url)
    if "tag" in segments:
        return False
    return len(segments) > 1


def parse_sitemap(xml_text: str, domain: str) -> list[str]:
    """Extract unique article URLs from a sitemap document, in document order."""
    if not xml_text:
        return []
    try:
        soup = BeautifulSoup(xml_text, "xml")
    except FeatureNotFound:
        soup = BeautifulSoup(xml_text, "html.parser")

    urls: dict[str, None] = {}
    for url_tag in soup.find_all("url"):
        loc = url_tag.find("loc")
        if not loc:
            continue
        url = loc.get_text(strip=True)
        if url and is_article_url(url, domain):
            urls.setdefault(url)
    return list(urls)


def category_from_url(url: str) -> str:
    """First path segment with its first letter upper-cased."""
    segments = _path_segments(url)
    if not segments:
        return DEFAULT_CATEGORY
    category = segments[0]
    return category[:1].upper() + category[1:]


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str | None:
    tag = soup.find("meta", attrs=attrs)
    if tag and tag.get("content"):
        return tag["content"].strip()
    return None


def extract_article(html: str, url: str) -> ArticleRecord:
    """Pull title, image, category and description out of an article page.

    Args:
        html: Page markup
        url: Page URL (source of the category, base for relative images)

    Returns:
        ArticleRecord; ``title`` may be empty if the page has none
    """
    soup = BeautifulSoup(html, "html.parser")

    title = ""
    h1 = soup.find("h1")
    if h1:
        title = h1.get_text(strip=True)
    if not title and soup.title:
        title = soup.title.get_text(strip=True)

    image = _meta_content(soup, property="og:image")
    if not image:
        img = soup.find("img", src=True)
        image = img["src"] if img else None
    if image:
        image = urljoin(url, image)

    description = (
        _meta_content(soup, name="description")
        or _meta_content(soup, property="og:description")
        or ""
    )

    return ArticleRecord(
        title=title,
        url=url,
        image=image,
        category=category_from_url(url),
        description=description,
    )


_UTC_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts the ``Z`` suffix and ``+0000`` style offsets used by the graph
    API and by ``<time datetime=...>`` attributes. Naive values are taken
    as UTC.

    Raises:
        ParseError: If the value is not a timestamp
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _UTC_OFFSET.sub(r"\1:\2", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ParseError(f"Invalid timestamp: {value!r}") from e

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class OCRExtractor:
    """Downloads an image and runs Tesseract over it.

    Tesseract is blocking, so it runs in a worker thread; the whole
    download + recognition is bounded by ``config.timeout``.
    """

    def __init__(self, client: httpx.AsyncClient, config: OCRSettings) -> None:
        self.client = client
        self.config = config

    async def recognize(self, image_url: str) -> str:
        """Return the text recognized in the image at ``image_url``.

        Raises:
            OCRError: On download failure, unreadable image, OCR failure
                or timeout
        """
        try:
            return await asyncio.wait_for(self._recognize(image_url), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise OCRError(f"OCR timed out after {self.config.timeout}s: {image_url}") from e
        except OCRError:
            raise
        except Exception as e:
            raise OCRError(f"OCR failed for {image_url}: {e}") from e

    async def _recognize(self, image_url: str) -> str:
        response = await self.client.get(image_url)
        response.raise_for_status()

        image = Image.open(io.BytesIO(response.content))
        text = await asyncio.to_thread(
            pytesseract.image_to_string,
            image,
            lang=self.config.tesseract_lang,
        )
        logger.debug(f"OCR extracted {len(text)} chars from {image_url}")
        return text
