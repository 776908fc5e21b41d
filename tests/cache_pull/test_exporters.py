# === NAVMAP v1 ===
# {
#   "module": "tests.cache_pull.test_exporters",
#   "purpose": "Exporting the manifest path through envman or the log.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Exporting the manifest path through envman or the log."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from BuildCache.CachePull.errors import ExportError
from BuildCache.CachePull.exporters import EnvmanExporter, LoggingExporter, select_exporter

POSIX_ONLY = pytest.mark.skipif(os.name == "nt", reason="shell script stand-in for envman")


def _fake_envman(tmp_path: Path, *, exit_code: int = 0) -> Path:
    """Write an ``envman`` stand-in recording its arguments and stdin."""

    script = tmp_path / "envman"
    script.write_text(
        "#!/bin/sh\n"
        f'echo "$@" > "{tmp_path}/args"\n'
        f'cat > "{tmp_path}/value"\n'
        'echo "envman says no" >&2\n'
        f"exit {exit_code}\n",
        encoding="utf-8",
    )
    script.chmod(0o755)
    return script


@POSIX_ONLY
def test_envman_receives_key_and_value(tmp_path: Path) -> None:
    envman = _fake_envman(tmp_path)

    EnvmanExporter(command=str(envman)).export("BITRISE_CACHE_INFO_PATH", "/tmp/cache-info.json")

    assert (tmp_path / "args").read_text(encoding="utf-8").strip() == "add --key BITRISE_CACHE_INFO_PATH"
    assert (tmp_path / "value").read_text(encoding="utf-8") == "/tmp/cache-info.json"


@POSIX_ONLY
def test_envman_failure_is_export_error(tmp_path: Path) -> None:
    envman = _fake_envman(tmp_path, exit_code=3)

    with pytest.raises(ExportError, match="envman says no"):
        EnvmanExporter(command=str(envman)).export("KEY", "value")


def test_missing_envman_is_export_error(tmp_path: Path) -> None:
    with pytest.raises(ExportError):
        EnvmanExporter(command=str(tmp_path / "no-envman")).export("KEY", "value")


def test_logging_exporter_records_and_logs(caplog: pytest.LogCaptureFixture) -> None:
    exporter = LoggingExporter()

    with caplog.at_level(logging.INFO, logger="BuildCache.CachePull"):
        exporter.export("KEY", "/tmp/x.json")

    assert exporter.exported == {"KEY": "/tmp/x.json"}
    assert "KEY=/tmp/x.json" in caplog.text


def test_select_exporter_prefers_envman() -> None:
    assert isinstance(select_exporter(which=lambda name: "/usr/local/bin/envman"), EnvmanExporter)
    assert isinstance(select_exporter(which=lambda name: None), LoggingExporter)
