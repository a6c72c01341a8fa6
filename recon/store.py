"""Reconciliation store: idempotent upserts and queries over articles and posts.

Every public method runs in its own session and transaction, so a failure
part-way through a pipeline leaves earlier writes committed and the run
resumable.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from .models import Article, Post, ScriptStatus, utcnow

logger = logging.getLogger(__name__)

JOB_STATUS_ROW_ID = 1


@dataclass
class ArticleRecord:
    """Scraped article ready for insertion."""
    title: str
    url: str
    image: str | None = None
    category: str | None = None
    description: str | None = None


@dataclass
class PostRecord:
    """Canonical post built by ingestion or submitted by an admin."""
    id: str
    title: str | None
    url: str | None
    image: str | None
    type: str | None
    timestamp: datetime | None = None
    blog_url: str | None = None


class StoreError(Exception):
    """Raised when the store cannot serve a request."""
    pass


class ReconciliationStore:
    """Persistence layer over an async SQLAlchemy engine."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._sessions = async_sessionmaker(bind=engine, expire_on_commit=False)
        self._dialect = engine.dialect.name

    def _insert(self, model):
        if self._dialect == "postgresql":
            return postgresql.insert(model)
        if self._dialect == "sqlite":
            return sqlite.insert(model)
        raise StoreError(f"Upserts are not supported on dialect '{self._dialect}'")

    # --- articles -------------------------------------------------------

    async def upsert_article(self, article: ArticleRecord) -> None:
        await self.upsert_articles([article])

    async def upsert_articles(self, articles: Sequence[ArticleRecord]) -> None:
        """Insert articles in one statement; URLs already stored are left untouched."""
        if not articles:
            return

        now = utcnow()
        rows = [{**asdict(a), "created_at": now} for a in articles]
        stmt = self._insert(Article).values(rows).on_conflict_do_nothing(index_elements=["url"])

        async with self._sessions.begin() as session:
            await session.execute(stmt)
        logger.debug(f"Upserted {len(rows)} articles")

    async def existing_article_urls(self, urls: Iterable[str]) -> set[str]:
        urls = list(urls)
        if not urls:
            return set()
        async with self._sessions() as session:
            result = await session.execute(select(Article.url).where(Article.url.in_(urls)))
            return set(result.scalars().all())

    async def list_articles(self) -> list[Article]:
        """Full catalog, newest first."""
        query = select(Article).order_by(Article.created_at.desc(), Article.id.desc())
        async with self._sessions() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # --- posts ----------------------------------------------------------

    async def upsert_post(self, post: PostRecord, *, manual: bool = False) -> None:
        await self.upsert_posts([post], manual=manual)

    async def upsert_posts(self, posts: Sequence[PostRecord], *, manual: bool = False) -> None:
        """Insert or update posts by id in one statement.

        Args:
            posts: Posts to write
            manual: True for admin edits. Manual writes overwrite ``blog_url``
                and ``title`` and set ``manual_edit``; automated writes never
                touch ``blog_url``/``manual_edit`` and keep the title of
                manually edited rows.
        """
        if not posts:
            return

        if manual:
            rows = [{**asdict(p), "manual_edit": True} for p in posts]
        else:
            rows = [
                {
                    "id": p.id,
                    "title": p.title,
                    "url": p.url,
                    "image": p.image,
                    "type": p.type,
                    "timestamp": p.timestamp,
                    "manual_edit": False,
                }
                for p in posts
            ]

        stmt = self._insert(Post).values(rows)
        excluded = stmt.excluded
        set_: dict[str, Any] = {
            "url": excluded.url,
            "image": excluded.image,
            "type": excluded.type,
            "timestamp": excluded.timestamp,
        }
        if manual:
            set_.update(title=excluded.title, blog_url=excluded.blog_url, manual_edit=True)
        else:
            set_["title"] = case((Post.manual_edit, Post.title), else_=excluded.title)

        stmt = stmt.on_conflict_do_update(index_elements=["id"], set_=set_)
        async with self._sessions.begin() as session:
            await session.execute(stmt)
        logger.debug(f"Upserted {len(rows)} posts (manual={manual})")

    async def get_post(self, post_id: str) -> Post | None:
        async with self._sessions() as session:
            return await session.get(Post, post_id)

    async def list_posts(self) -> list[Post]:
        """All posts, most recently published first."""
        query = select(Post).order_by(Post.timestamp.desc().nulls_last(), Post.id)
        async with self._sessions() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_unmapped_posts(self) -> list[Post]:
        query = select(Post).where(Post.blog_url.is_(None)).order_by(Post.id)
        async with self._sessions() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def update_post_mapping(
        self,
        post_id: str,
        blog_url: str,
        title: str | None = None,
        *,
        manual: bool = True,
    ) -> bool:
        """Point a post at an article.

        Args:
            post_id: Post to update
            blog_url: Article URL to link
            title: New title; left unchanged when falsy
            manual: Also set ``manual_edit`` on the row

        Returns:
            True if a post with this id existed
        """
        values: dict[str, Any] = {"blog_url": blog_url}
        if title:
            values["title"] = title
        if manual:
            values["manual_edit"] = True

        async with self._sessions.begin() as session:
            result = await session.execute(update(Post).where(Post.id == post_id).values(**values))
        return result.rowcount > 0

    async def list_posts_for_timestamp_sync(
        self,
        window_days: int,
        *,
        now: datetime | None = None,
    ) -> list[Post]:
        """Posts without a timestamp, or with one inside the recent window."""
        cutoff = (now or utcnow()) - timedelta(days=window_days)
        query = (
            select(Post)
            .where(or_(Post.timestamp.is_(None), Post.timestamp >= cutoff))
            .order_by(Post.id)
        )
        async with self._sessions() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_posts_with_timestamp(self) -> int:
        query = select(func.count()).select_from(Post).where(Post.timestamp.is_not(None))
        async with self._sessions() as session:
            return (await session.execute(query)).scalar_one()

    async def update_post_timestamp(self, post_id: str, timestamp: datetime) -> None:
        async with self._sessions.begin() as session:
            await session.execute(
                update(Post).where(Post.id == post_id).values(timestamp=timestamp.astimezone(timezone.utc))
            )

    # --- job status -----------------------------------------------------

    async def set_job_status(self, status: str, **fields: Any) -> None:
        """Write the singleton status row, creating it if absent.

        Only ``status`` and the given fields are overwritten.
        """
        values = {"status": status, **fields}
        stmt = self._insert(ScriptStatus).values(id=JOB_STATUS_ROW_ID, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["id"], set_=values)
        async with self._sessions.begin() as session:
            await session.execute(stmt)

    async def get_job_status(self) -> ScriptStatus | None:
        async with self._sessions() as session:
            return await session.get(ScriptStatus, JOB_STATUS_ROW_ID)
