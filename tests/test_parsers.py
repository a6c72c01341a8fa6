"""
Tests for sitemap/page parsing, timestamp parsing and OCR error handling.
"""

from datetime import datetime, timezone

import httpx
import pytest

from recon.config import OCRSettings
from recon.parsers import (
    DEFAULT_CATEGORY,
    OCRError,
    OCRExtractor,
    ParseError,
    category_from_url,
    extract_article,
    is_article_url,
    parse_sitemap,
    parse_timestamp,
)

SITEMAP = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://nibsnetwork.com/</loc></url>
  <url><loc>https://nibsnetwork.com/technology/</loc></url>
  <url><loc>https://nibsnetwork.com/technology/best-laptops-2024/</loc></url>
  <url><loc>https://nibsnetwork.com/tag/laptops/</loc></url>
  <url><loc>https://nibsnetwork.com/tag/laptops/page/2/</loc></url>
  <url><loc>https://othersite.com/technology/best-laptops-2024/</loc></url>
  <url><loc>https://www.nibsnetwork.com/health/sleep-better/</loc></url>
  <url><loc>https://nibsnetwork.com/technology/best-laptops-2024/</loc></url>
</urlset>
"""

ARTICLE_HTML = """
<html>
  <head>
    <title>Best Laptops 2024 | Nibs Network</title>
    <meta property="og:image" content="https://cdn.nibsnetwork.com/laptops.jpg">
    <meta name="description" content="Our picks for the year.">
  </head>
  <body>
    <h1> Best Laptops of 2024 </h1>
    <img src="/wp-content/inline.jpg">
  </body>
</html>
"""

FALLBACK_HTML = """
<html>
  <head>
    <title>Sleep Better Tonight</title>
    <meta property="og:description" content="Seven habits.">
  </head>
  <body><img src="/images/sleep.jpg"></body>
</html>
"""


class TestSitemap:
    """Tests for sitemap URL filtering."""

    def test_keeps_only_article_urls(self):
        assert parse_sitemap(SITEMAP, "nibsnetwork.com") == [
            "https://nibsnetwork.com/technology/best-laptops-2024/",
            "https://www.nibsnetwork.com/health/sleep-better/",
        ]

    def test_empty_document(self):
        assert parse_sitemap("", "nibsnetwork.com") == []

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://nibsnetwork.com/technology/", False),
            ("https://nibsnetwork.com/technology/post/", True),
            ("https://nibsnetwork.com/tag/post/", False),
            ("https://nibsnetwork.com.evil.io/a/b/", False),
        ],
    )
    def test_is_article_url(self, url, expected):
        assert is_article_url(url, "nibsnetwork.com") is expected


class TestExtractArticle:
    """Tests for article metadata extraction."""

    def test_primary_sources(self):
        article = extract_article(ARTICLE_HTML, "https://nibsnetwork.com/technology/best-laptops-2024/")

        assert article.title == "Best Laptops of 2024"
        assert article.image == "https://cdn.nibsnetwork.com/laptops.jpg"
        assert article.category == "Technology"
        assert article.description == "Our picks for the year."
        assert article.url == "https://nibsnetwork.com/technology/best-laptops-2024/"

    def test_fallback_sources(self):
        article = extract_article(FALLBACK_HTML, "https://nibsnetwork.com/health/sleep-better/")

        assert article.title == "Sleep Better Tonight"
        assert article.image == "https://nibsnetwork.com/images/sleep.jpg"
        assert article.description == "Seven habits."

    def test_page_without_metadata(self):
        article = extract_article("<html><body><p>hi</p></body></html>", "https://nibsnetwork.com/a/b/")

        assert article.title == ""
        assert article.image is None
        assert article.description == ""

    def test_category_from_url(self):
        assert category_from_url("https://nibsnetwork.com/health-tips/x/") == "Health-tips"
        assert category_from_url("https://nibsnetwork.com/") == DEFAULT_CATEGORY


class TestParseTimestamp:
    """Tests for timestamp parsing."""

    @pytest.mark.parametrize(
        "value",
        [
            "2024-03-01T10:00:00+0000",
            "2024-03-01T10:00:00.000Z",
            "2024-03-01T12:00:00+02:00",
            "2024-03-01T10:00:00",
        ],
    )
    def test_formats(self, value):
        assert parse_timestamp(value) == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_invalid(self):
        with pytest.raises(ParseError):
            parse_timestamp("yesterday")


class TestOCRExtractor:
    """Tests for OCR failure handling (no Tesseract needed)."""

    @pytest.mark.asyncio
    async def test_download_failure_raises_ocr_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        async with httpx.AsyncClient(transport=transport) as client:
            extractor = OCRExtractor(client, OCRSettings())
            with pytest.raises(OCRError):
                await extractor.recognize("https://cdn.example.com/missing.jpg")

    @pytest.mark.asyncio
    async def test_unreadable_image_raises_ocr_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"not an image"))
        async with httpx.AsyncClient(transport=transport) as client:
            extractor = OCRExtractor(client, OCRSettings())
            with pytest.raises(OCRError):
                await extractor.recognize("https://cdn.example.com/garbage.jpg")
