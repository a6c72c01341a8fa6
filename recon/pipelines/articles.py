"""Article ingestion: sitemap discovery and page scraping.

Workflow:
1. Fetch the sitemap and keep article URLs on the target domain
2. In micro-batches, skip URLs already stored and scrape the rest concurrently
3. Insert each batch's scraped articles in one statement
"""
from __future__ import annotations

import asyncio
import logging

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from recon.config import ArticleSourceSettings
from recon.parsers import extract_article, parse_sitemap
from recon.pipelines.ingest import IngestionError, IngestReport, chunked
from recon.store import ArticleRecord, ReconciliationStore

logger = logging.getLogger(__name__)


class ArticleIngestor:
    """Crawls the blog sitemap into the article catalog."""

    def __init__(
        self,
        store: ReconciliationStore,
        client: httpx.AsyncClient,
        config: ArticleSourceSettings,
    ) -> None:
        self.store = store
        self.client = client
        self.config = config

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _get_sitemap(self) -> httpx.Response:
        return await self.client.get(self.config.sitemap_url)

    async def fetch_sitemap(self) -> list[str]:
        """Return candidate article URLs from the sitemap.

        Raises:
            IngestionError: If the sitemap cannot be fetched
        """
        logger.info(f"Fetching sitemap: {self.config.sitemap_url}")
        try:
            response = await self._get_sitemap()
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise IngestionError(f"Could not fetch sitemap {self.config.sitemap_url}: {e}") from e
        return parse_sitemap(response.text, self.config.domain)

    async def scrape(self, url: str) -> ArticleRecord:
        response = await self.client.get(url)
        response.raise_for_status()
        return extract_article(response.text, url)

    async def _scrape_safely(self, url: str) -> ArticleRecord | None:
        try:
            return await self.scrape(url)
        except Exception as e:
            logger.error(f"Error processing {url}: {e}")
            return None

    async def run(self) -> IngestReport:
        urls = await self.fetch_sitemap()
        report = IngestReport(found=len(urls))
        logger.info(f"Found {len(urls)} potential articles in sitemap")

        for batch in chunked(urls, self.config.batch_size):
            existing = await self.store.existing_article_urls(batch)
            pending = [url for url in batch if url not in existing]
            report.skipped += len(batch) - len(pending)

            results = await asyncio.gather(*(self._scrape_safely(url) for url in pending))

            articles = []
            for url, article in zip(pending, results):
                if article is None:
                    report.failed += 1
                elif not article.title:
                    logger.warning(f"No title found on {url}, skipping")
                    report.failed += 1
                else:
                    articles.append(article)

            await self.store.upsert_articles(articles)
            report.added += len(articles)

        logger.info(f"Article sync complete. {report}")
        return report
