"""Post ingestion: Graph API media → object storage → posts table.

Workflow:
1. Resolve the business account id (config, or linked pages)
2. Fetch the most recent media items
3. Per item: pick the displayable image, copy it to object storage and
   build the canonical post record
4. Upsert all built posts in one statement
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Protocol

from recon.config import InstagramSettings
from recon.graph import GraphClient
from recon.parsers import parse_timestamp
from recon.pipelines.ingest import ConfigurationError, IngestReport, chunked
from recon.store import PostRecord, ReconciliationStore

logger = logging.getLogger(__name__)

POST_ID_PREFIX = "ig-"
DEFAULT_CAPTION = "Instagram Post"
TITLE_MAX_LENGTH = 60

_QUOTES = re.compile(r"['\"]")


class ObjectStorage(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> str: ...


def build_title(caption: str | None) -> str:
    """Caption cut to 60 characters (plus ellipsis) with quotes removed."""
    caption = caption or DEFAULT_CAPTION
    if len(caption) > TITLE_MAX_LENGTH:
        caption = caption[:TITLE_MAX_LENGTH] + "..."
    return _QUOTES.sub("", caption)


def select_image_url(item: dict[str, Any]) -> str | None:
    """Thumbnail for videos, the media itself otherwise."""
    if item.get("media_type") == "VIDEO":
        return item.get("thumbnail_url") or item.get("media_url")
    return item.get("media_url")


def image_key(media_id: str) -> str:
    return f"posts/{POST_ID_PREFIX}{media_id}.jpg"


def build_post_record(item: dict[str, Any], image_url: str) -> PostRecord:
    """Map a Graph API media item onto a post row."""
    media_id = item["id"]
    timestamp = item.get("timestamp")
    return PostRecord(
        id=f"{POST_ID_PREFIX}{media_id}",
        title=build_title(item.get("caption")),
        url=item.get("permalink") or f"https://www.instagram.com/p/{media_id}/",
        image=image_url,
        type=(item.get("media_type") or "").lower() or None,
        timestamp=parse_timestamp(timestamp) if timestamp else None,
    )


class PostIngestor:
    """Copies recent Instagram media into the posts table."""

    def __init__(
        self,
        store: ReconciliationStore,
        graph: GraphClient,
        storage: ObjectStorage,
        config: InstagramSettings,
    ) -> None:
        self.store = store
        self.graph = graph
        self.storage = storage
        self.config = config

    async def resolve_account_id(self) -> str:
        """Business account id from config, or from the token's linked pages.

        Raises:
            ConfigurationError: If no linked business account exists
        """
        if self.config.business_account_id:
            return self.config.business_account_id.strip()

        logger.info("Fetching connected Instagram ID from Pages...")
        account_id = None
        for page in await self.graph.list_linked_accounts():
            account = page.get("instagram_business_account")
            if not account:
                continue
            account_id = account["id"]
            username = account.get("username") or ""
            logger.info(f"Found Instagram ID: {account_id} (Username: @{username})")
            if username.lower() == self.config.username.lower():
                break

        if not account_id:
            raise ConfigurationError(
                "INSTAGRAM_BUSINESS_ACCOUNT_ID not set and no linked account found via API"
            )
        return account_id

    async def process_item(self, item: dict[str, Any]) -> PostRecord | None:
        """Upload one media item's image and build its record.

        Returns:
            The record, or None if the item has no image
        """
        image_url = select_image_url(item)
        if not image_url:
            return None

        data = await self.graph.download(image_url)
        public_url = await self.storage.put(image_key(item["id"]), data, "image/jpeg")
        logger.info(f"Uploaded {POST_ID_PREFIX}{item['id']} to storage")
        return build_post_record(item, public_url)

    async def _process_safely(self, item: dict[str, Any]) -> PostRecord | None | Exception:
        try:
            return await self.process_item(item)
        except Exception as e:
            logger.error(f"Failed to process {item.get('id')}: {e}")
            return e

    async def run(self) -> IngestReport:
        if not self.config.access_token:
            raise ConfigurationError("INSTAGRAM_ACCESS_TOKEN is not set")

        account_id = await self.resolve_account_id()
        logger.info(f"Using Instagram Business ID: {account_id}")

        items = await self.graph.list_media(account_id, limit=self.config.media_limit)
        report = IngestReport(found=len(items))
        logger.info(f"Found {len(items)} posts. Uploading to storage...")

        posts: dict[str, PostRecord] = {}
        for batch in chunked(items, self.config.batch_size):
            results = await asyncio.gather(*(self._process_safely(item) for item in batch))
            for result in results:
                if isinstance(result, Exception):
                    report.failed += 1
                elif result is None:
                    report.skipped += 1
                else:
                    posts[result.id] = result

        if posts:
            logger.info(f"Saving {len(posts)} posts...")
            await self.store.upsert_posts(list(posts.values()))
        report.added = len(posts)

        logger.info(f"Post sync complete. {report}")
        return report
