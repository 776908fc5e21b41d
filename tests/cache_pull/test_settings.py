# === NAVMAP v1 ===
# {
#   "module": "tests.cache_pull.test_settings",
#   "purpose": "Environment aliases, overrides and validation of step settings.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Environment aliases, overrides and validation of step settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from BuildCache.CachePull.errors import ConfigurationError
from BuildCache.CachePull.settings import (
    DEFAULT_EXPORT_KEY,
    ExtractorKind,
    LogFormat,
    SourceKind,
    get_settings,
)


def test_defaults(tmp_path: Path) -> None:
    settings = get_settings()

    assert settings.cache_source == ""
    assert settings.debug is False
    assert settings.allow_fallback is False
    assert settings.extract_relative is False
    assert settings.stack_id == ""
    assert settings.source_kind is SourceKind.AUTO
    assert settings.extractor is ExtractorKind.AUTO
    assert settings.export_key == DEFAULT_EXPORT_KEY
    assert settings.log_format is LogFormat.TEXT
    assert settings.info_dir == tmp_path / "info"


def test_ci_input_names_are_read(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("cache_api_url", "  https://cache.example.com/api/x  ")
    monkeypatch.setenv("is_debug_mode", "true")
    monkeypatch.setenv("allow_fallback", "true")
    monkeypatch.setenv("extract_to_relative_path", "true")
    monkeypatch.setenv("BITRISEIO_STACK_ID", "osx-xcode-12")

    settings = get_settings()

    assert settings.cache_source == "https://cache.example.com/api/x"
    assert settings.debug is True
    assert settings.allow_fallback is True
    assert settings.extract_relative is True
    assert settings.stack_id == "osx-xcode-12"


def test_prefixed_aliases_are_read(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CACHE_PULL_SOURCE", "file:///tmp/cache.tar")
    monkeypatch.setenv("CACHE_PULL_EXTRACTOR", "MANUAL")
    monkeypatch.setenv("CACHE_PULL_SOURCE_KIND", "direct")
    monkeypatch.setenv("CACHE_PULL_RETRY_WAIT", "0.5")

    settings = get_settings()

    assert settings.cache_source == "file:///tmp/cache.tar"
    assert settings.extractor is ExtractorKind.MANUAL
    assert settings.source_kind is SourceKind.DIRECT
    assert settings.retry_wait_seconds == 0.5


def test_empty_environment_values_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("is_debug_mode", "")
    monkeypatch.setenv("BITRISEIO_STACK_ID", "")

    settings = get_settings()

    assert settings.debug is False
    assert settings.stack_id == ""


def test_overrides_win_and_none_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BITRISEIO_STACK_ID", "from-env")
    monkeypatch.setenv("allow_fallback", "true")

    settings = get_settings(stack_id="from-cli", allow_fallback=None)

    assert settings.stack_id == "from-cli"
    assert settings.allow_fallback is True


def test_settings_are_frozen() -> None:
    settings = get_settings()

    with pytest.raises(Exception):
        settings.debug = True  # type: ignore[misc]


@pytest.mark.parametrize(
    ("name", "value", "field"),
    [
        ("CACHE_PULL_HTTP_TIMEOUT", "-1", "http_timeout_seconds"),
        ("CACHE_PULL_RETRY_WAIT", "600", "retry_wait_seconds"),
        ("CACHE_PULL_EXTRACTOR", "zip", "extractor"),
        ("is_debug_mode", "maybe", "debug"),
    ],
)
def test_invalid_values_are_configuration_errors(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str, field: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError) as excinfo:
        get_settings()

    assert "Invalid cache pull settings" in str(excinfo.value)
