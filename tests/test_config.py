from pathlib import Path

import pytest

from host_telemetry.config import DEFAULT_STATIC_DIR, get_settings


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults(monkeypatch):
    for name in ("PORT", "HOST_TELEMETRY_HOST", "HOST_TELEMETRY_LOG_LEVEL", "HOST_TELEMETRY_FETCH_TIMEOUT", "HOST_TELEMETRY_WORKERS", "HOST_TELEMETRY_STATIC_DIR"):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings.port == 3000
    assert settings.host == "0.0.0.0"
    assert settings.log_level == "info"
    assert settings.fetch_timeout == 5.0
    assert settings.static_dir == DEFAULT_STATIC_DIR


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("PORT", "8081")
    monkeypatch.setenv("HOST_TELEMETRY_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("HOST_TELEMETRY_FETCH_TIMEOUT", "1.5")
    monkeypatch.setenv("HOST_TELEMETRY_WORKERS", "0")
    monkeypatch.setenv("HOST_TELEMETRY_STATIC_DIR", str(tmp_path))

    settings = get_settings()

    assert settings.port == 8081
    assert settings.log_level == "debug"
    assert settings.fetch_timeout == 1.5
    assert settings.workers == 1
    assert settings.static_dir == Path(tmp_path)
