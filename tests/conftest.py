"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from recon.db import ensure_schema
from recon.store import ArticleRecord, PostRecord, ReconciliationStore

# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_engine():
    """Create a test database engine with the full schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await ensure_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def store(db_engine) -> ReconciliationStore:
    return ReconciliationStore(db_engine)


def make_article(title: str, url: str, **kwargs) -> ArticleRecord:
    return ArticleRecord(title=title, url=url, category=kwargs.pop("category", "Travel"), **kwargs)


def make_post(post_id: str, title: str | None = "Instagram Post", **kwargs) -> PostRecord:
    return PostRecord(
        id=post_id,
        title=title,
        url=kwargs.pop("url", f"https://www.instagram.com/p/{post_id}/"),
        image=kwargs.pop("image", None),
        type=kwargs.pop("type", "image"),
        timestamp=kwargs.pop("timestamp", datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)),
        **kwargs,
    )
