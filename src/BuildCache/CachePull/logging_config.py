"""
Structured Logging Utilities

This module centralizes logging setup for the cache pull step. It provides
helpers for masking sensitive fields (API tokens and signed download URLs),
emitting JSON log records for machine consumption, and installing a plain
console handler for interactive CI logs.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Dict, Optional, TextIO
from urllib.parse import urlsplit, urlunsplit

LOGGER_NAME = "BuildCache.CachePull"

_SENSITIVE_KEYS = {"authorization", "api_key", "apikey", "token", "secret", "password"}
_URL_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def _mask_url(value: str) -> str:
    """Drop the query string of signed URLs, keeping scheme, host, and path."""

    parts = urlsplit(value)
    if not parts.query:
        return value
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "***masked***", ""))


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Args:
        payload: Arbitrary key-value pairs that may contain credentials or
            pre-signed download URLs.

    Returns:
        Copy of the payload where common secret fields are replaced with
        `***masked***` and URL query strings are hidden.

    Examples:
        >>> mask_sensitive_data({"token": "secret", "status": "ok"})
        {'token': '***masked***', 'status': 'ok'}
    """
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        lower = key.lower()
        if lower in _SENSITIVE_KEYS:
            masked[key] = "***masked***"
        elif isinstance(value, str) and "apikey" in value.lower():
            masked[key] = "***masked***"
        elif isinstance(value, str) and _URL_PATTERN.match(value):
            masked[key] = _mask_url(value)
        else:
            masked[key] = value
    return masked


class JSONFormatter(logging.Formatter):
    """Formatter emitting JSON structured logs.

    Examples:
        >>> formatter = JSONFormatter()
        >>> isinstance(formatter.format(logging.makeLogRecord({'msg': 'test'})), str)
        True
    """

    _RESERVED = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        """Serialize a logging record into a JSON line.

        Args:
            record: Log record emitted by the cache pull components.

        Returns:
            JSON string with masked secrets and any ``extra`` fields attached.
        """
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stage": getattr(record, "stage", None),
        }
        for key, value in record.__dict__.items():
            if key in self._RESERVED or key in log_obj:
                continue
            if not isinstance(value, (str, int, float, bool, type(None))):
                value = str(value)
            log_obj[key] = value
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj))


def setup_logging(
    level: str = "INFO",
    *,
    log_format: str = "text",
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Configure the cache pull logger.

    Args:
        level: Logging level name (``DEBUG`` in debug mode, ``INFO`` otherwise).
        log_format: ``text`` for ``LEVEL: message`` lines, ``json`` for one JSON
            object per record.
        stream: Output stream, ``sys.stdout`` by default.

    Returns:
        Configured logger instance scoped to the cache pull step.

    Examples:
        >>> logger = setup_logging("INFO")
        >>> logger.name
        'BuildCache.CachePull'
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_cache_pull_managed", False):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.StreamHandler(stream or sys.stdout)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    handler._cache_pull_managed = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    logger.propagate = True

    return logger


__all__ = ["LOGGER_NAME", "JSONFormatter", "setup_logging", "mask_sensitive_data"]
