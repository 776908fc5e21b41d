# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.network.client",
#   "purpose": "Provide the shared HTTPX client used to resolve and download cache archives",
#   "sections": [
#     {"id": "constants", "name": "Constants & globals", "anchor": "CONST", "kind": "constants"},
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "api", "name": "Public API", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Shared HTTPX client used by the cache pull step.

The client is created lazily from :class:`~BuildCache.CachePull.settings.CachePullSettings`
and reused for the API lookup and the archive download.  Tests swap it for a
client backed by ``httpx.MockTransport`` through :func:`configure_http_client`
(see :func:`BuildCache.CachePull.testing.use_mock_http_client`).
"""

from __future__ import annotations

import contextlib
import logging
import ssl
import threading
from typing import Optional

import certifi
import httpx

from ..settings import CachePullSettings

LOGGER = logging.getLogger("BuildCache.CachePull.network")

# --- Constants & globals -------------------------------------------------------

USER_AGENT = "cache-pull/1.0 (+httpx)"
_CLIENT_LOCK = threading.RLock()
_HTTP_CLIENT: Optional[httpx.Client] = None

# --- Client construction helpers ----------------------------------------------


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def _timeout_for(settings: CachePullSettings) -> httpx.Timeout:
    # Connect stays short; reads may stall while large archives stream.
    total = settings.http_timeout_seconds
    return httpx.Timeout(connect=min(total, 10.0), read=total, write=total, pool=total)


def _build_http_client(settings: CachePullSettings) -> httpx.Client:
    return httpx.Client(
        timeout=_timeout_for(settings),
        verify=_build_ssl_context(),
        trust_env=True,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    )


def _close_client_unlocked() -> None:
    global _HTTP_CLIENT
    if _HTTP_CLIENT is not None:
        with contextlib.suppress(Exception):
            _HTTP_CLIENT.close()
    _HTTP_CLIENT = None


# --- Public API ----------------------------------------------------------------


def configure_http_client(client: Optional[httpx.Client]) -> None:
    """Install ``client`` as the shared client, or drop the current one when ``None``."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is not client:
            _close_client_unlocked()
        _HTTP_CLIENT = client


def reset_http_client() -> None:
    """Close and forget the shared client (test helper and shutdown hook)."""

    with _CLIENT_LOCK:
        _close_client_unlocked()


def get_http_client(settings: Optional[CachePullSettings] = None) -> httpx.Client:
    """Return the shared HTTPX client, creating it from ``settings`` if necessary."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is not None:
            return _HTTP_CLIENT
        cfg = settings or CachePullSettings()
        _HTTP_CLIENT = _build_http_client(cfg)
        LOGGER.debug(
            "HTTP client initialized",
            extra={"stage": "download", "timeout": cfg.http_timeout_seconds},
        )
        return _HTTP_CLIENT


__all__ = [
    "USER_AGENT",
    "configure_http_client",
    "get_http_client",
    "reset_http_client",
]
