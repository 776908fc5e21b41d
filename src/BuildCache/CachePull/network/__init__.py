"""Network subsystem: shared HTTP client and cache archive downloads.

Modules:
- client: lazily built, swappable HTTPX client
- download: cache API resolution, streaming fetch, and the single-retry policy

Example:
    >>> from BuildCache.CachePull.network import Downloader
    >>> downloader = Downloader(retry_wait_seconds=3.0)
    >>> url = downloader.resolve_download_url("https://cache.example.com/api/cache")  # doctest: +SKIP
    >>> downloader.fetch_with_retry(url, Path("/tmp/cache-archive"))  # doctest: +SKIP
"""

from BuildCache.CachePull.network.client import (
    configure_http_client,
    get_http_client,
    reset_http_client,
)
from BuildCache.CachePull.network.download import (
    DOWNLOAD_ATTEMPTS,
    Downloader,
    is_direct_archive_url,
    resolve_source,
)

__all__ = [
    # Client lifecycle
    "get_http_client",
    "configure_http_client",
    "reset_http_client",
    # Downloads
    "DOWNLOAD_ATTEMPTS",
    "Downloader",
    "is_direct_archive_url",
    "resolve_source",
]
