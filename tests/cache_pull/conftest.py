"""Shared fixtures for the cache_pull test suite."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from BuildCache.CachePull.logging_config import LOGGER_NAME
from BuildCache.CachePull.network.client import reset_http_client
from BuildCache.CachePull.settings import CachePullSettings, get_settings

_STEP_ENV_VARS = (
    "cache_api_url",
    "is_debug_mode",
    "allow_fallback",
    "extract_to_relative_path",
    "BITRISEIO_STACK_ID",
    "CACHE_PULL_SOURCE",
    "CACHE_PULL_DEBUG",
    "CACHE_PULL_ALLOW_FALLBACK",
    "CACHE_PULL_EXTRACT_RELATIVE",
    "CACHE_PULL_STACK_ID",
    "CACHE_PULL_SOURCE_KIND",
    "CACHE_PULL_EXTRACTOR",
    "CACHE_PULL_HTTP_TIMEOUT",
    "CACHE_PULL_RETRY_WAIT",
    "CACHE_PULL_EXPORT_KEY",
    "CACHE_PULL_INFO_DIR",
    "CACHE_PULL_LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def _isolated_step_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Start every test without CI inputs, with a private manifest directory."""

    for name in _STEP_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(name.lower(), raising=False)
        monkeypatch.delenv(name.upper(), raising=False)
    monkeypatch.setenv("CACHE_PULL_INFO_DIR", str(tmp_path / "info"))
    yield
    reset_http_client()
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_cache_pull_managed", False):
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def make_settings(tmp_path: Path):
    """Build settings with test defaults: no retry pause, manual extraction."""

    def _make(**overrides) -> CachePullSettings:
        values = {
            "retry_wait_seconds": 0.0,
            "extractor": "manual",
            "info_dir": tmp_path / "info",
        }
        values.update(overrides)
        return get_settings(**values)

    return _make


class RecordingExporter:
    """Exporter double capturing exported variables."""

    def __init__(self) -> None:
        self.exported: dict = {}

    def export(self, key: str, value: str) -> None:
        self.exported[key] = value


@pytest.fixture
def exporter() -> RecordingExporter:
    return RecordingExporter()
