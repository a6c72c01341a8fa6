"""FastAPI admin surface: job triggers, status polling and manual mapping.

Authentication is handled in front of this service.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import Settings, get_settings
from .db import create_engine, ensure_schema
from .jobs import JobRunner, JobTracker, UnknownJobError, build_pipelines
from .logging_config import setup_logging
from .store import PostRecord, ReconciliationStore

logger = logging.getLogger(__name__)


# Pydantic request/response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class RunScriptRequest(BaseModel):
    """Job trigger request."""
    script: str = Field(min_length=1)


class MessageResponse(BaseModel):
    success: bool
    message: str | None = None


class ScriptStatusResponse(BaseModel):
    """Current job status."""
    status: str
    script_name: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    output: str | None = None


class ArticleDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    title: str
    url: str
    category: str | None = None
    image: str | None = None
    description: str | None = None


class PostDTO(BaseModel):
    """Post as exchanged with the admin UI (camelCase keys)."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    title: str | None = None
    url: str | None = None
    image: str | None = None
    type: str | None = None
    blog_url: str | None = Field(default=None, alias="blogUrl")
    timestamp: datetime | None = None
    manual_edit: bool = Field(default=False, alias="manualEdit")


class UpdateMappingRequest(BaseModel):
    """Manual mapping of one post."""
    model_config = ConfigDict(populate_by_name=True)

    post_id: str = Field(min_length=1, alias="postId")
    blog_url: str = Field(min_length=1, alias="blogUrl")
    title: str | None = None


class SavePostsRequest(BaseModel):
    """Bulk manual save."""
    posts: list[PostDTO]


def get_store(request: Request) -> ReconciliationStore:
    return request.app.state.store


def get_runner(request: Request) -> JobRunner:
    return request.app.state.runner


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the admin app. Clients are created in the lifespan hook."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown logic."""
        setup_logging(settings.logging)
        logger.info("Application starting up")

        engine = create_engine(settings.db)
        await ensure_schema(engine)
        store = ReconciliationStore(engine)
        app.state.store = store
        app.state.runner = JobRunner(JobTracker(store), build_pipelines(store, settings))

        yield

        logger.info("Application shutting down")
        await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        description="Reconciles social posts with blog articles",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UnknownJobError)
    async def unknown_job_handler(request, exc: UnknownJobError):
        """Handle triggers for jobs that do not exist."""
        logger.warning(f"Rejected job trigger: {exc}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(error="unknown_script", detail=str(exc)).model_dump(),
        )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="ok", version=settings.version)

    @app.get("/api/ping")
    async def ping():
        return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}

    @app.post("/api/run-script", response_model=MessageResponse)
    async def run_script(
        request: RunScriptRequest,
        background_tasks: BackgroundTasks,
        runner: JobRunner = Depends(get_runner),
    ) -> MessageResponse:
        """Start a job and return immediately; poll /api/script-status for the result."""
        name = await runner.start(request.script)
        background_tasks.add_task(runner.run, name)
        logger.info(f"[Admin] Executing: {name}")
        return MessageResponse(success=True, message="Script started")

    @app.get("/api/script-status", response_model=ScriptStatusResponse)
    async def script_status(runner: JobRunner = Depends(get_runner)) -> ScriptStatusResponse:
        return ScriptStatusResponse(**await runner.tracker.current())

    @app.get("/api/articles", response_model=list[ArticleDTO])
    async def list_articles(store: ReconciliationStore = Depends(get_store)) -> list[ArticleDTO]:
        return [ArticleDTO.model_validate(a) for a in await store.list_articles()]

    @app.get("/api/posts", response_model=list[PostDTO])
    async def list_posts(store: ReconciliationStore = Depends(get_store)) -> list[PostDTO]:
        return [
            PostDTO(
                id=p.id,
                title=p.title,
                url=p.url,
                image=p.image,
                type=p.type,
                blog_url=p.blog_url,
                timestamp=p.timestamp,
                manual_edit=bool(p.manual_edit),
            )
            for p in await store.list_posts()
        ]

    @app.post("/api/update-post-mapping", response_model=MessageResponse)
    async def update_post_mapping(
        request: UpdateMappingRequest,
        store: ReconciliationStore = Depends(get_store),
    ) -> MessageResponse:
        """Manually link a post to an article (always marks it as a manual edit)."""
        logger.info(f"[Admin Mapping] {request.post_id} -> {request.blog_url}")
        updated = await store.update_post_mapping(request.post_id, request.blog_url, request.title)
        if not updated:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Post {request.post_id} not found",
            )
        return MessageResponse(success=True)

    @app.post("/api/save-posts", response_model=MessageResponse)
    async def save_posts(
        request: SavePostsRequest,
        store: ReconciliationStore = Depends(get_store),
    ) -> MessageResponse:
        """Save admin-edited posts; every saved post becomes a manual edit."""
        logger.info(f"[Admin] Saving {len(request.posts)} posts")
        records = {
            p.id: PostRecord(
                id=p.id,
                title=p.title,
                url=p.url,
                image=p.image,
                type=p.type,
                timestamp=p.timestamp,
                blog_url=p.blog_url,
            )
            for p in request.posts
        }
        await store.upsert_posts(list(records.values()), manual=True)
        return MessageResponse(success=True, message="Saved to database successfully")

    return app


app = create_app()
