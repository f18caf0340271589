"""Runtime configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

DEFAULT_STATIC_DIR = Path(__file__).resolve().parent / "static"


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "info"
    fetch_timeout: float = 5.0
    workers: int = 10
    static_dir: Path = DEFAULT_STATIC_DIR


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    host = os.getenv("HOST_TELEMETRY_HOST", "0.0.0.0")
    port = int(os.getenv("PORT") or "3000")
    log_level = os.getenv("HOST_TELEMETRY_LOG_LEVEL", "info").lower()
    fetch_timeout = float(os.getenv("HOST_TELEMETRY_FETCH_TIMEOUT", "5.0"))
    workers = max(1, int(os.getenv("HOST_TELEMETRY_WORKERS", "10")))
    static_dir = Path(os.getenv("HOST_TELEMETRY_STATIC_DIR") or DEFAULT_STATIC_DIR).expanduser()
    return Settings(
        host=host,
        port=port,
        log_level=log_level,
        fetch_timeout=fetch_timeout,
        workers=workers,
        static_dir=static_dir,
    )
