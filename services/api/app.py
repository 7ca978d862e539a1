"""
Dashboard API - read-only view over the verification job store.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import orjson
from fastapi import Depends, FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles

from apps.verifier.extractor import fetch_today_visits
from utils.config import settings
from utils.db import init_schema
from utils.jobs import JobStore

logger = logging.getLogger(__name__)

EVENTS_INTERVAL_SECONDS = 5.0
STATIC_DIR = Path(__file__).parent / "static"


def get_store(request: Request) -> JobStore:
    return request.app.state.store


def create_app(store: JobStore | None = None, visit_extractor=fetch_today_visits) -> FastAPI:
    """
    Build the dashboard application.

    Args:
        store: Job store to read from; defaults to the configured SQLite database
        visit_extractor: Coroutine function returning today's SIMRS visits
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if store is None:
            init_schema()
        logger.info("%s dashboard API ready", settings.APP_NAME)
        yield

    app = FastAPI(
        title="icare verifier dashboard",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.store = store or JobStore()
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    @app.get("/", include_in_schema=False)
    def dashboard() -> FileResponse:
        return FileResponse(STATIC_DIR / "index.html")

    @app.get("/health")
    def health(store: JobStore = Depends(get_store)) -> JSONResponse:
        try:
            store.status_counts()
        except Exception as e:
            logger.error("Health check failed", extra={"error": str(e)})
            return JSONResponse(status_code=500, content={"status": "error", "message": str(e)})
        return JSONResponse(content={"status": "ok"})

    @app.get("/jobs")
    def list_jobs(store: JobStore = Depends(get_store)) -> list[dict]:
        return [job.model_dump(mode="json") for job in store.recent(limit=100)]

    @app.get("/jobs/stats")
    def job_stats(store: JobStore = Depends(get_store)) -> dict[str, int]:
        return store.status_counts()

    @app.get("/patients")
    async def list_patients() -> JSONResponse:
        try:
            visits = await visit_extractor()
        except Exception as e:
            logger.error("Failed to fetch patients from SIMRS", extra={"error": str(e)})
            return JSONResponse(status_code=500, content={"ok": False, "message": str(e)})
        return JSONResponse(content={"ok": True, "data": [visit.model_dump() for visit in visits]})

    @app.get("/events")
    async def events(request: Request, store: JobStore = Depends(get_store)) -> StreamingResponse:
        async def stream() -> AsyncIterator[bytes]:
            while not await request.is_disconnected():
                yield b"data: " + orjson.dumps(store.status_counts()) + b"\n\n"
                await asyncio.sleep(EVENTS_INTERVAL_SECONDS)

        return StreamingResponse(
            stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    return app
