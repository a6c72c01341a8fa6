"""
Tests for the post ingestion pipeline.
"""

from datetime import datetime, timezone

import pytest

from recon.config import InstagramSettings
from recon.pipelines.ingest import ConfigurationError
from recon.pipelines.posts import (
    PostIngestor,
    build_post_record,
    build_title,
    image_key,
    select_image_url,
)

MEDIA = [
    {
        "id": "100",
        "caption": "Our \"Complete Guide To Urban Gardening\" is live",
        "media_type": "IMAGE",
        "media_url": "https://scontent.cdn/100.jpg",
        "permalink": "https://www.instagram.com/p/AAA/",
        "timestamp": "2024-03-01T10:00:00+0000",
    },
    {
        "id": "200",
        "caption": "Packing tips",
        "media_type": "VIDEO",
        "media_url": "https://scontent.cdn/200.mp4",
        "thumbnail_url": "https://scontent.cdn/200-thumb.jpg",
        "permalink": "https://www.instagram.com/p/BBB/",
        "timestamp": "2024-03-02T10:00:00+0000",
    },
    {
        "id": "300",
        "caption": "Video without a thumbnail",
        "media_type": "VIDEO",
        "permalink": "https://www.instagram.com/p/CCC/",
    },
    {
        "id": "400",
        "caption": "Upload fails",
        "media_type": "IMAGE",
        "media_url": "https://scontent.cdn/broken.jpg",
        "permalink": "https://www.instagram.com/p/DDD/",
    },
]


class FakeGraph:
    """In-memory stand-in for GraphClient."""

    def __init__(self, media=None, pages=None):
        self.media = media if media is not None else MEDIA
        self.pages = pages or []
        self.calls: list[str] = []

    async def list_linked_accounts(self):
        self.calls.append("accounts")
        return self.pages

    async def list_media(self, account_id, limit=50):
        self.calls.append(f"media:{account_id}")
        return self.media[:limit]

    async def download(self, url):
        self.calls.append(f"download:{url}")
        return f"bytes of {url}".encode()


class FakeStorage:
    """Records uploads; URLs listed in ``failing`` raise."""

    def __init__(self, failing=("https://scontent.cdn/broken.jpg",)):
        self.failing = set(failing)
        self.objects: dict[str, bytes] = {}

    async def put(self, key, data, content_type):
        if any(url.encode() in data for url in self.failing):
            raise RuntimeError("AccessDenied")
        self.objects[key] = data
        return f"https://bucket.s3.amazonaws.com/{key}"


def settings(**overrides) -> InstagramSettings:
    values = {"access_token": "token", "business_account_id": "17841400000000000"}
    values.update(overrides)
    return InstagramSettings(**values)


class TestPostRecord:
    """Tests for media item → post row mapping."""

    def test_build_title_truncates_and_strips_quotes(self):
        caption = "It's " + "x" * 70
        title = build_title(caption)
        assert title == "Its " + "x" * 55 + "..."

    def test_build_title_default(self):
        assert build_title(None) == "Instagram Post"
        assert build_title("") == "Instagram Post"

    def test_select_image_url(self):
        assert select_image_url(MEDIA[0]) == "https://scontent.cdn/100.jpg"
        assert select_image_url(MEDIA[1]) == "https://scontent.cdn/200-thumb.jpg"
        assert select_image_url(MEDIA[2]) is None

    def test_build_post_record(self):
        record = build_post_record(MEDIA[0], "https://bucket/posts/ig-100.jpg")

        assert record.id == "ig-100"
        assert record.title == "Our Complete Guide To Urban Gardening is live"
        assert record.url == "https://www.instagram.com/p/AAA/"
        assert record.type == "image"
        assert record.timestamp == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert record.blog_url is None

    def test_image_key(self):
        assert image_key("100") == "posts/ig-100.jpg"


class TestPostIngestor:
    """Tests for PostIngestor.run()."""

    @pytest.mark.asyncio
    async def test_run_stores_posts_and_isolates_failures(self, store):
        graph, storage = FakeGraph(), FakeStorage()

        report = await PostIngestor(store, graph, storage, settings()).run()

        assert report.found == 4
        assert report.added == 2
        assert report.skipped == 1
        assert report.failed == 1
        assert set(storage.objects) == {"posts/ig-100.jpg", "posts/ig-200.jpg"}
        assert "download:https://scontent.cdn/200-thumb.jpg" in graph.calls

        posts = {p.id: p for p in await store.list_posts()}
        assert set(posts) == {"ig-100", "ig-200"}
        assert posts["ig-200"].type == "video"
        assert posts["ig-200"].image == "https://bucket.s3.amazonaws.com/posts/ig-200.jpg"
        assert posts["ig-100"].blog_url is None
        assert posts["ig-100"].manual_edit is False

    @pytest.mark.asyncio
    async def test_reingest_is_idempotent_and_keeps_mapping(self, store):
        ingestor = PostIngestor(store, FakeGraph(), FakeStorage(), settings())
        await ingestor.run()
        await store.update_post_mapping("ig-100", "https://nibsnetwork.com/home/urban/", "Edited")

        await ingestor.run()

        posts = await store.list_posts()
        assert len(posts) == 2
        mapped = await store.get_post("ig-100")
        assert mapped.blog_url == "https://nibsnetwork.com/home/urban/"
        assert mapped.title == "Edited"

    @pytest.mark.asyncio
    async def test_missing_token_aborts_before_any_call(self, store):
        graph = FakeGraph()

        with pytest.raises(ConfigurationError):
            await PostIngestor(store, graph, FakeStorage(), settings(access_token=None)).run()

        assert graph.calls == []
        assert await store.list_posts() == []

    @pytest.mark.asyncio
    async def test_empty_media_list(self, store):
        report = await PostIngestor(store, FakeGraph(media=[]), FakeStorage(), settings()).run()

        assert report.found == 0
        assert report.added == 0


class TestResolveAccount:
    """Tests for business account discovery."""

    @pytest.mark.asyncio
    async def test_configured_id_wins(self, store):
        graph = FakeGraph()
        ingestor = PostIngestor(store, graph, FakeStorage(), settings(business_account_id=" 123 "))

        assert await ingestor.resolve_account_id() == "123"
        assert graph.calls == []

    @pytest.mark.asyncio
    async def test_prefers_configured_username(self, store):
        pages = [
            {"id": "p1", "instagram_business_account": {"id": "111", "username": "othershop"}},
            {"id": "p2"},
            {"id": "p3", "instagram_business_account": {"id": "333", "username": "NibsNetwork"}},
            {"id": "p4", "instagram_business_account": {"id": "444", "username": "lastpage"}},
        ]
        ingestor = PostIngestor(store, FakeGraph(pages=pages), FakeStorage(), settings(business_account_id=None))

        assert await ingestor.resolve_account_id() == "333"

    @pytest.mark.asyncio
    async def test_falls_back_to_last_linked_account(self, store):
        pages = [
            {"id": "p1", "instagram_business_account": {"id": "111", "username": "first"}},
            {"id": "p2", "instagram_business_account": {"id": "222", "username": "second"}},
        ]
        ingestor = PostIngestor(store, FakeGraph(pages=pages), FakeStorage(), settings(business_account_id=None))

        assert await ingestor.resolve_account_id() == "222"

    @pytest.mark.asyncio
    async def test_no_linked_account(self, store):
        ingestor = PostIngestor(
            store,
            FakeGraph(pages=[{"id": "p1"}]),
            FakeStorage(),
            settings(business_account_id=None),
        )

        with pytest.raises(ConfigurationError):
            await ingestor.resolve_account_id()
