"""Public API for the build cache pull step.

Downloads a cache archive (directly or through the cache API), detects
whether it is gzip-compressed, checks that it was produced on a compatible
stack, and restores its contents.
"""

from __future__ import annotations

from importlib import metadata as importlib_metadata

try:  # pragma: no cover - metadata may be unavailable during development
    __version__ = importlib_metadata.version("buildcache-cachepull")
except importlib_metadata.PackageNotFoundError:  # pragma: no cover - local source tree
    __version__ = "0.0.0"

from .cancellation import CancellationToken
from .errors import (
    CacheNotInitializedError,
    CachePullError,
    DownloadFailure,
    ManifestNotFoundError,
    StackMismatchError,
)
from .gates import GateDecision, GateOutcome, check_stack_compatibility
from .manifests import CacheItem, CacheManifest, ManifestReader
from .pipeline import CachePull, RunOutcome, RunStatus, pull
from .settings import CachePullSettings, get_settings

__all__ = [
    "__version__",
    "CacheItem",
    "CacheManifest",
    "CacheNotInitializedError",
    "CachePull",
    "CachePullError",
    "CachePullSettings",
    "CancellationToken",
    "DownloadFailure",
    "GateDecision",
    "GateOutcome",
    "ManifestNotFoundError",
    "ManifestReader",
    "RunOutcome",
    "RunStatus",
    "StackMismatchError",
    "check_stack_compatibility",
    "get_settings",
    "pull",
]
