"""FastAPI application exposing the host telemetry snapshot."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import FileResponse, JSONResponse

from .aggregator import Aggregator, now_ms
from .config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, aggregator: Optional[Aggregator] = None) -> FastAPI:
    settings = settings or get_settings()
    if aggregator is None:
        aggregator = Aggregator(fetch_timeout=settings.fetch_timeout, max_workers=settings.workers)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        aggregator.close()

    app = FastAPI(
        title="Host Telemetry Service",
        description="Single-snapshot host telemetry, refreshed on every request.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.aggregator = aggregator

    @app.get("/api/system", summary="Return a fresh host telemetry snapshot", tags=["system"])
    def system_snapshot():
        try:
            return JSONResponse(content=aggregator.build_snapshot())
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Error fetching system info")
            return JSONResponse(status_code=500, content={"error": str(exc), "timestamp": now_ms()})

    @app.get("/", include_in_schema=False)
    def index():
        index_path = settings.static_dir / "index.html"
        if not index_path.is_file():
            return JSONResponse(status_code=404, content={"error": "index.html not found"})
        return FileResponse(index_path)

    @app.get("/health", summary="Service health check", tags=["system"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
