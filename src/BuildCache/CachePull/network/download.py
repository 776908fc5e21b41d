# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.network.download",
#   "purpose": "Resolve cache download URLs and fetch archives with a single bounded retry",
#   "sections": [
#     {"id": "source", "name": "Source Resolution", "anchor": "SRC", "kind": "helpers"},
#     {"id": "downloader", "name": "Downloader", "anchor": "DWN", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Cache archive download.

Two kinds of source are supported.  A *direct* source is the archive URL
itself (``https://`` or, for local testing, ``file://``).  An *API* source is a
cache endpoint that answers ``GET`` with ``{"download_url": ...}``; a status
outside ``200..202`` there means no cache has been pushed yet, which is not a
failure of the step.

Downloads get exactly one retry after a fixed pause.  There is no exponential
backoff and no retry budget beyond the second attempt, which keeps the worst
case pipeline time bounded.
"""

from __future__ import annotations

import json
import logging
import shutil
import time
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import unquote, urlsplit
from urllib.request import url2pathname

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ..cancellation import CancellationToken
from ..errors import (
    CacheNotInitializedError,
    ConfigurationError,
    DownloadFailure,
    ResolutionError,
)
from ..settings import SourceKind
from .client import get_http_client

__all__ = [
    "DOWNLOAD_ATTEMPTS",
    "Downloader",
    "is_direct_archive_url",
    "resolve_source",
]

LOGGER = logging.getLogger("BuildCache.CachePull.network")

DOWNLOAD_ATTEMPTS = 2
_CHUNK_SIZE = 1 << 20
_MAX_DIAGNOSTIC_BODY = 4096
_ARCHIVE_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".gz")
_RESOLVE_OK_STATUSES = range(200, 203)

# --- Source Resolution ------------------------------------------------------------


def is_direct_archive_url(url: str) -> bool:
    """Return ``True`` when ``url`` names an archive rather than a cache API endpoint."""

    parts = urlsplit(url)
    if parts.scheme.lower() == "file":
        return True
    path = parts.path.lower()
    return any(path.endswith(suffix) for suffix in _ARCHIVE_SUFFIXES)


def resolve_source(source: str, kind: SourceKind = SourceKind.AUTO) -> bool:
    """Decide whether ``source`` must be resolved through the cache API.

    Returns:
        ``True`` if ``source`` is an API endpoint, ``False`` for a direct archive URL.

    Raises:
        ConfigurationError: If the URL scheme is not supported.
    """

    scheme = urlsplit(source).scheme.lower()
    if scheme not in {"http", "https", "file"}:
        raise ConfigurationError(f"Unsupported cache source URL scheme: {source!r}")
    if kind == SourceKind.API:
        if scheme == "file":
            raise ConfigurationError("A file:// cache source cannot be a cache API endpoint")
        return True
    if kind == SourceKind.DIRECT:
        return False
    return not is_direct_archive_url(source)


def _file_url_to_path(url: str) -> Path:
    parts = urlsplit(url)
    return Path(url2pathname(unquote(parts.path)))


def _diagnostic_body(raw: bytes) -> str:
    text = raw[:_MAX_DIAGNOSTIC_BODY].decode("utf-8", errors="replace")
    if len(raw) > _MAX_DIAGNOSTIC_BODY:
        text += "..."
    return text


# --- Downloader ---------------------------------------------------------------------


class Downloader:
    """Resolve and fetch cache archives.

    Args:
        client: HTTPX client; defaults to the shared client from
            :func:`~BuildCache.CachePull.network.client.get_http_client`.
        retry_wait_seconds: Fixed pause before the second download attempt.
        debug: Log resolved URLs and response details.
        cancel_token: Checked between streamed chunks.
        sleep: Sleep function used by the retry pause (injectable for tests).
    """

    def __init__(
        self,
        *,
        client: Optional[httpx.Client] = None,
        retry_wait_seconds: float = 3.0,
        debug: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self._retry_wait_seconds = retry_wait_seconds
        self._debug = debug
        self._cancel_token = cancel_token or CancellationToken()
        self._sleep = sleep
        self._logger = logger or LOGGER

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = get_http_client()
        return self._client

    def resolve_download_url(self, endpoint: str) -> str:
        """Ask the cache API for the archive URL.

        Raises:
            CacheNotInitializedError: When the API answers outside ``200..202``.
            ResolutionError: On transport failures, non-JSON bodies, or a missing
                ``download_url`` field.
        """

        try:
            response = self.client.get(endpoint)
        except httpx.HTTPError as exc:
            raise ResolutionError(f"Failed to send cache API request: {exc}") from exc

        status = response.status_code
        body = response.content
        if status not in _RESOLVE_OK_STATUSES:
            raise CacheNotInitializedError(
                "Build cache not found. Probably cache not initialised yet "
                "(first cache push initialises the cache), nothing to worry about",
                status_code=status,
            )

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise ResolutionError(
                f"Request sent, but failed to parse JSON response (http-code:{status}): "
                f"{_diagnostic_body(body)}",
                status_code=status,
            ) from exc

        download_url = payload.get("download_url") if isinstance(payload, dict) else None
        if not isinstance(download_url, str) or not download_url.strip():
            raise ResolutionError(
                f"Request sent, but Download URL is empty (http-code:{status}): "
                f"{_diagnostic_body(body)}",
                status_code=status,
            )

        if self._debug:
            self._logger.debug(
                "resolved cache download url",
                extra={"stage": "resolve", "download_url": download_url},
            )
        return download_url.strip()

    def fetch(self, url: str, local_path: Path) -> int:
        """Stream ``url`` into ``local_path`` and return the number of bytes written.

        Raises:
            DownloadFailure: On any non-200 response or transport failure.
            OperationCancelledError: If the cancellation token fires mid-transfer.
        """

        self._cancel_token.raise_if_cancelled("download")
        if urlsplit(url).scheme.lower() == "file":
            return self._copy_local(url, local_path)

        written = 0
        try:
            with self.client.stream("GET", url) as response:
                if response.status_code != 200:
                    body = _diagnostic_body(response.read())
                    self._logger.warning(
                        "archive download returned non-success status",
                        extra={"stage": "download", "status": response.status_code, "body": body},
                    )
                    raise DownloadFailure(
                        "Failed to download archive - non success response code: "
                        f"{response.status_code}",
                        status_code=response.status_code,
                        body=body,
                    )
                with local_path.open("wb") as target:
                    for chunk in response.iter_bytes(_CHUNK_SIZE):
                        self._cancel_token.raise_if_cancelled("download")
                        target.write(chunk)
                        written += len(chunk)
        except httpx.HTTPError as exc:
            raise DownloadFailure(f"Failed to download cache archive: {exc}") from exc
        except OSError as exc:
            raise DownloadFailure(f"Failed to save cache content into file: {exc}") from exc

        self._logger.debug(
            "archive downloaded",
            extra={"stage": "download", "bytes": written, "path": str(local_path)},
        )
        return written

    def fetch_with_retry(self, url: str, local_path: Path) -> int:
        """Call :meth:`fetch`, retrying once after a fixed pause.

        The second failure propagates unchanged.
        """

        retrying = Retrying(
            stop=stop_after_attempt(DOWNLOAD_ATTEMPTS),
            wait=wait_fixed(self._retry_wait_seconds),
            retry=retry_if_exception_type(DownloadFailure),
            before_sleep=before_sleep_log(self._logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(self.fetch, url, local_path)

    def _copy_local(self, url: str, local_path: Path) -> int:
        source = _file_url_to_path(url)
        try:
            with source.open("rb") as handle, local_path.open("wb") as target:
                shutil.copyfileobj(handle, target, _CHUNK_SIZE)
        except OSError as exc:
            raise DownloadFailure(f"Failed to read local cache archive {source}: {exc}") from exc
        size = local_path.stat().st_size
        self._logger.debug(
            "archive copied from local path",
            extra={"stage": "download", "bytes": size, "source": str(source)},
        )
        return size
