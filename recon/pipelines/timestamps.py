"""Timestamp sync: read authoritative publish times from post permalinks.

Graph timestamps for freshly ingested posts can be provisional, so posts
without a timestamp or with one inside the recent window are re-checked
against the ``<time datetime=...>`` element on their public page. A single
browser context is shared, so posts are visited one after another.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from playwright.async_api import BrowserContext, Page, async_playwright

from recon.config import TimestampSettings
from recon.parsers import ParseError, parse_timestamp
from recon.store import ReconciliationStore

logger = logging.getLogger(__name__)


class PageInspector(Protocol):
    async def read_datetime(self, url: str) -> str | None: ...


@dataclass
class TimestampReport:
    """Outcome counts for one timestamp sync."""
    checked: int = 0
    updated: int = 0
    missing: int = 0
    failed: int = 0

    def __str__(self) -> str:
        return (
            f"Checked: {self.checked}, Updated: {self.updated}, "
            f"Missing: {self.missing}, Failed: {self.failed}"
        )


class PlaywrightInspector:
    """Persistent headless Chromium session for reading post pages.

    Usage:
        async with PlaywrightInspector(settings.timestamps) as inspector:
            value = await inspector.read_datetime(url)
    """

    def __init__(self, config: TimestampSettings) -> None:
        self.config = config
        self._playwright = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    async def __aenter__(self) -> PlaywrightInspector:
        logger.info("Launching browser...")
        self._playwright = await async_playwright().start()
        try:
            self._context = await self._playwright.chromium.launch_persistent_context(
                str(Path(self.config.session_dir).resolve()),
                headless=self.config.headless,
                viewport={"width": 1280, "height": 720},
            )
            self._page = await self._context.new_page()
        except Exception:
            await self._playwright.stop()
            raise
        return self

    async def __aexit__(self, *exc_info) -> None:
        try:
            if self._context is not None:
                await self._context.close()
        finally:
            await self._playwright.stop()

    async def read_datetime(self, url: str) -> str | None:
        """Load ``url`` and return the first ``<time>`` element's datetime."""
        page = self._page
        await page.goto(url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms)
        await page.wait_for_timeout(self.config.settle_ms)

        element = await page.query_selector("time")
        if element is None:
            return None
        return await element.get_attribute("datetime")


class TimestampReconciler:
    """Overwrites stored post timestamps with the ones shown on the post page."""

    def __init__(
        self,
        store: ReconciliationStore,
        inspector: PageInspector,
        config: TimestampSettings,
    ) -> None:
        self.store = store
        self.inspector = inspector
        self.config = config

    async def run(self) -> TimestampReport:
        report = TimestampReport()

        posts = await self.store.list_posts_for_timestamp_sync(self.config.window_days)
        if not posts:
            valid = await self.store.count_posts_with_timestamp()
            logger.info(f"All {valid} posts have settled timestamps; nothing to verify")
            return report

        logger.info(f"Found {len(posts)} posts to sync")
        for post in posts:
            report.checked += 1
            if not post.url:
                logger.warning(f"Post {post.id} has no permalink, skipping")
                report.missing += 1
                continue

            try:
                value = await self.inspector.read_datetime(post.url)
            except Exception as e:
                logger.error(f"Error syncing {post.id}: {e}")
                report.failed += 1
                continue

            if not value:
                logger.info(f"Timestamp not found on page for {post.id}")
                report.missing += 1
                continue

            try:
                timestamp = parse_timestamp(value)
            except ParseError as e:
                logger.warning(f"Post {post.id}: {e}")
                report.missing += 1
                continue

            await self.store.update_post_timestamp(post.id, timestamp)
            logger.info(f"Post {post.id}: saved {timestamp.isoformat()}")
            report.updated += 1

        logger.info(f"Timestamp sync complete. {report}")
        return report
