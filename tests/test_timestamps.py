"""
Tests for the timestamp reconciler.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_post
from recon.config import TimestampSettings
from recon.pipelines.timestamps import TimestampReconciler


class FakeInspector:
    """Returns canned <time datetime> values per permalink."""

    def __init__(self, values: dict):
        self.values = values
        self.visited: list[str] = []

    async def read_datetime(self, url: str):
        self.visited.append(url)
        value = self.values.get(url)
        if isinstance(value, Exception):
            raise value
        return value


def permalink(post_id: str) -> str:
    return f"https://www.instagram.com/p/{post_id}/"


def stored(post) -> datetime:
    return post.timestamp.replace(tzinfo=None)


class TestTimestampReconciler:
    """Tests for TimestampReconciler.run()."""

    @pytest.mark.asyncio
    async def test_updates_missing_and_recent_only(self, store):
        now = datetime.now(timezone.utc)
        await store.upsert_posts([
            make_post("ig-none", timestamp=None),
            make_post("ig-recent", timestamp=now - timedelta(days=1)),
            make_post("ig-old", timestamp=now - timedelta(days=30)),
        ])
        inspector = FakeInspector({
            permalink("ig-none"): "2024-03-01T10:00:00.000Z",
            permalink("ig-recent"): "2024-03-02T08:30:00.000Z",
            permalink("ig-old"): "2020-01-01T00:00:00.000Z",
        })

        report = await TimestampReconciler(store, inspector, TimestampSettings(window_days=7)).run()

        assert report.checked == 2
        assert report.updated == 2
        assert permalink("ig-old") not in inspector.visited
        assert stored(await store.get_post("ig-none")) == datetime(2024, 3, 1, 10, 0)
        assert stored(await store.get_post("ig-recent")) == datetime(2024, 3, 2, 8, 30)
        old = await store.get_post("ig-old")
        assert stored(old) != datetime(2020, 1, 1)

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, store):
        await store.upsert_posts([
            make_post("ig-1", timestamp=None),
            make_post("ig-2", timestamp=None),
            make_post("ig-3", timestamp=None),
            make_post("ig-4", timestamp=None),
        ])
        inspector = FakeInspector({
            permalink("ig-1"): None,
            permalink("ig-2"): TimeoutError("navigation timeout"),
            permalink("ig-3"): "not a date",
            permalink("ig-4"): "2024-05-05T05:05:05+0000",
        })

        report = await TimestampReconciler(store, inspector, TimestampSettings()).run()

        assert report.checked == 4
        assert report.updated == 1
        assert report.missing == 2
        assert report.failed == 1
        for post_id in ("ig-1", "ig-2", "ig-3"):
            assert (await store.get_post(post_id)).timestamp is None
        assert stored(await store.get_post("ig-4")) == datetime(2024, 5, 5, 5, 5, 5)

    @pytest.mark.asyncio
    async def test_nothing_to_verify(self, store):
        await store.upsert_post(make_post("ig-old", timestamp=datetime(2020, 1, 1, tzinfo=timezone.utc)))
        inspector = FakeInspector({})

        report = await TimestampReconciler(store, inspector, TimestampSettings()).run()

        assert report.checked == 0
        assert inspector.visited == []
