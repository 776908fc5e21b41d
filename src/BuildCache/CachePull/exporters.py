"""Expose the recovered manifest path to later pipeline steps.

On the CI runner, environment variables for later steps are written through
the ``envman`` tool.  Outside the runner (local runs, tests) the value is only
logged.  :func:`select_exporter` picks the right one.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Callable, Optional, Protocol

from .errors import ExportError
from .logging_config import LOGGER_NAME

__all__ = ["EnvExporter", "EnvmanExporter", "LoggingExporter", "select_exporter"]

_ENVMAN_TIMEOUT_SECONDS = 30


class EnvExporter(Protocol):
    def export(self, key: str, value: str) -> None:
        """Make ``key=value`` visible to subsequent pipeline steps."""


class EnvmanExporter:
    """Export through ``envman add --key KEY``, passing the value on stdin."""

    def __init__(self, *, command: str = "envman", logger: Optional[logging.Logger] = None) -> None:
        self._command = command
        self._logger = logger or logging.getLogger(LOGGER_NAME)

    def export(self, key: str, value: str) -> None:
        command = [self._command, "add", "--key", key]
        try:
            completed = subprocess.run(
                command,
                input=value.encode("utf-8"),
                capture_output=True,
                timeout=_ENVMAN_TIMEOUT_SECONDS,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExportError(f"envman timed out exporting {key}") from exc
        except OSError as exc:
            raise ExportError(f"Failed to run envman to export {key}: {exc}") from exc

        if completed.returncode != 0:
            output = (completed.stderr or completed.stdout).decode("utf-8", errors="ignore").strip()
            raise ExportError(
                f"Failed to export {key}: {output or f'envman exited with {completed.returncode}'}"
            )
        self._logger.info("exported %s", key, extra={"stage": "export", "key": key, "value": value})


class LoggingExporter:
    """Log the value instead of exporting it (no CI runner available)."""

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self.exported: dict = {}

    def export(self, key: str, value: str) -> None:
        self.exported[key] = value
        self._logger.info("%s=%s", key, value, extra={"stage": "export", "key": key})


def select_exporter(
    *,
    logger: Optional[logging.Logger] = None,
    which: Optional[Callable[[str], Optional[str]]] = None,
) -> EnvExporter:
    """Use ``envman`` when it is installed, otherwise only log the value."""

    envman = (which or shutil.which)("envman")
    if envman:
        return EnvmanExporter(command=envman, logger=logger)
    return LoggingExporter(logger=logger)
