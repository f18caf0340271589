"""Console entry point: configure logging and serve the API with uvicorn."""
from __future__ import annotations

import logging

import uvicorn

from .api import create_app
from .config import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def serve(settings: Settings) -> None:
    logger.info(
        "Host telemetry on http://%s:%d (source timeout %.1fs, %d workers)",
        settings.host,
        settings.port,
        settings.fetch_timeout,
        settings.workers,
    )
    # Per-request access lines are only useful while debugging.
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        access_log=settings.log_level == "debug",
    )


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    serve(settings)


if __name__ == "__main__":
    main()
