"""Job runner: named pipelines with status tracking and captured output.

The status lives in a single well-known row. Two jobs triggered at the
same time will overwrite each other's bookkeeping; "one job at a time" is
advisory only.
"""
from __future__ import annotations

import io
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Mapping

import httpx

from .config import Settings
from .graph import GraphClient
from .logging_config import TEXT_FORMAT, SensitiveDataFilter
from .models import utcnow
from .parsers import OCRExtractor
from .pipelines.articles import ArticleIngestor
from .pipelines.matching import run_matching
from .pipelines.posts import PostIngestor
from .pipelines.timestamps import PlaywrightInspector, TimestampReconciler
from .storage import S3Storage
from .store import ReconciliationStore

logger = logging.getLogger(__name__)

Pipeline = Callable[[], Awaitable[Any]]

INGEST_POSTS = "ingest-posts"
INGEST_ARTICLES = "ingest-articles"
RUN_MATCHING = "run-matching"
SYNC_TIMESTAMPS = "sync-timestamps"

JOB_ALIASES = {
    "sync-insta": INGEST_POSTS,
    "fetch-api": INGEST_POSTS,
    "sync-blog": INGEST_ARTICLES,
    "auto-map": RUN_MATCHING,
    "time-sync": SYNC_TIMESTAMPS,
}


class JobStatus(str, Enum):
    """Lifecycle of the status row."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class UnknownJobError(Exception):
    """Raised when a job name maps to no pipeline."""
    pass


class JobTracker:
    """Reads and writes the singleton job status row."""

    def __init__(self, store: ReconciliationStore) -> None:
        self.store = store

    async def start(self, name: str) -> None:
        await self.store.set_job_status(
            JobStatus.RUNNING.value,
            script_name=name,
            start_time=utcnow(),
            end_time=None,
            output=None,
        )

    async def finish(self, status: JobStatus, output: str) -> None:
        await self.store.set_job_status(status.value, end_time=utcnow(), output=output)

    async def current(self) -> dict[str, Any]:
        row = await self.store.get_job_status()
        if row is None:
            return {"status": JobStatus.IDLE.value, "script_name": None}
        return {
            "status": row.status,
            "script_name": row.script_name,
            "start_time": row.start_time,
            "end_time": row.end_time,
            "output": row.output,
        }


@contextmanager
def capture_logs(logger_name: str = "recon") -> Iterator[io.StringIO]:
    """Collect INFO+ records from ``logger_name`` into a buffer.

    The logger is lowered to INFO if needed and left there, so overlapping
    captures never undo each other. Console and file output keep their
    configured level, which ``setup_logging`` sets on the handlers.
    """
    buffer = io.StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    handler.addFilter(SensitiveDataFilter())

    target = logging.getLogger(logger_name)
    if target.getEffectiveLevel() > logging.INFO:
        target.setLevel(logging.INFO)
    target.addHandler(handler)
    try:
        yield buffer
    finally:
        target.removeHandler(handler)


class JobRunner:
    """Dispatches job names to pipelines and records their outcome."""

    def __init__(self, tracker: JobTracker, pipelines: Mapping[str, Pipeline]) -> None:
        self.tracker = tracker
        self.pipelines = dict(pipelines)

    @property
    def available(self) -> list[str]:
        return sorted(self.pipelines) + sorted(JOB_ALIASES)

    def resolve(self, name: str) -> str:
        """Canonical job name for ``name`` (aliases accepted).

        Raises:
            UnknownJobError: If no pipeline is registered under the name
        """
        canonical = JOB_ALIASES.get(name, name)
        if canonical not in self.pipelines:
            raise UnknownJobError(f"Unknown script. Available: {', '.join(self.available)}")
        return canonical

    async def start(self, name: str) -> str:
        canonical = self.resolve(name)
        await self.tracker.start(canonical)
        logger.info(f"Job {canonical} started")
        return canonical

    async def run(self, name: str) -> JobStatus:
        """Run a started job to completion and record its final status.

        Exceptions from the pipeline are recorded, never raised.
        """
        canonical = self.resolve(name)
        with capture_logs() as buffer:
            try:
                result = await self.pipelines[canonical]()
            except Exception as e:
                logger.error(f"Job {canonical} failed: {e}", exc_info=True)
                status = JobStatus.ERROR
                summary = f"{type(e).__name__}: {e}"
            else:
                logger.info(f"Job {canonical} completed")
                status = JobStatus.COMPLETED
                summary = str(result) if result is not None else ""

        output = buffer.getvalue()
        if summary:
            output = f"{output}{summary}\n"

        try:
            await self.tracker.finish(status, output)
        except Exception as e:
            logger.error(f"Could not record final status of {canonical}: {e}")
        return status

    async def execute(self, name: str) -> JobStatus:
        """Start and run a job in the foreground."""
        canonical = await self.start(name)
        return await self.run(canonical)


def build_pipelines(store: ReconciliationStore, settings: Settings) -> dict[str, Pipeline]:
    """Pipelines wired to real clients, each created and closed per run."""

    async def ingest_posts():
        async with httpx.AsyncClient(timeout=settings.instagram.request_timeout) as client:
            graph = GraphClient(client, settings.instagram)
            storage = S3Storage(settings.storage)
            return await PostIngestor(store, graph, storage, settings.instagram).run()

    async def ingest_articles():
        async with httpx.AsyncClient(
            timeout=settings.articles.request_timeout,
            headers={"User-Agent": settings.articles.user_agent},
            follow_redirects=True,
        ) as client:
            return await ArticleIngestor(store, client, settings.articles).run()

    async def match_posts():
        async with httpx.AsyncClient(timeout=settings.ocr.timeout, follow_redirects=True) as client:
            ocr = OCRExtractor(client, settings.ocr)
            return await run_matching(store, ocr, settings.matching)

    async def sync_timestamps():
        async with PlaywrightInspector(settings.timestamps) as inspector:
            return await TimestampReconciler(store, inspector, settings.timestamps).run()

    return {
        INGEST_POSTS: ingest_posts,
        INGEST_ARTICLES: ingest_articles,
        RUN_MATCHING: match_posts,
        SYNC_TIMESTAMPS: sync_timestamps,
    }
