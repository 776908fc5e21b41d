"""Exception hierarchy shared across cache resolution, download, and restore.

The cache pull step spans configuration parsing, HTTP retrieval, archive
decoding, manifest interpretation, and filesystem placement.  This module
groups those failure modes into one hierarchy so the CLI can map high-level
categories onto exit codes while callers still have access to specialised
subclasses (and their diagnostic attributes) when finer handling is needed.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "CachePullError",
    "ConfigurationError",
    "ResolutionError",
    "CacheNotInitializedError",
    "DownloadFailure",
    "ArchiveFormatError",
    "ArchiveEntryError",
    "UnsupportedEntryError",
    "ExtractionToolError",
    "ManifestError",
    "ManifestNotFoundError",
    "StackMismatchError",
    "ExportError",
    "OperationCancelledError",
    "StreamRestoreError",
]


class CachePullError(RuntimeError):
    """Base exception for cache retrieval and restore failures."""


class ConfigurationError(CachePullError):
    """Raised when settings or CLI inputs are invalid."""


class ResolutionError(CachePullError):
    """Raised when the cache API endpoint cannot produce a usable download URL."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CacheNotInitializedError(CachePullError):
    """Raised when the cache API reports that no cache has been pushed yet.

    This is not a failure of the step: callers treat it as "nothing to restore".
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DownloadFailure(CachePullError):
    """Raised when fetching the archive fails.

    Attributes:
        status_code: HTTP status of the failed response, ``None`` for transport errors.
        body: Response body captured for diagnostics (may be truncated).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ArchiveFormatError(CachePullError):
    """Raised when the downloaded payload is neither a tar nor a gzip-compressed tar."""


class ArchiveEntryError(ArchiveFormatError):
    """Raised when a single archive entry cannot be materialised."""

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message)
        self.path = path


class UnsupportedEntryError(ArchiveEntryError):
    """Raised when the manual extractor meets an entry kind it cannot reproduce."""


class ExtractionToolError(CachePullError):
    """Raised when the external ``tar`` process fails.

    Attributes:
        output: Combined stdout/stderr captured from the process.
        returncode: Process exit status, ``None`` when the tool could not start.
    """

    def __init__(
        self,
        message: str,
        *,
        output: str = "",
        returncode: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class ManifestError(CachePullError):
    """Raised when the cache manifest cannot be decoded."""


class ManifestNotFoundError(ManifestError):
    """Raised when neither the archive nor the extracted root contain a manifest."""


class StackMismatchError(CachePullError):
    """Raised when the cache was produced on a different stack and fallback is off."""

    def __init__(
        self,
        message: str,
        *,
        manifest_stack_id: Optional[str] = None,
        current_stack_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.manifest_stack_id = manifest_stack_id
        self.current_stack_id = current_stack_id


class ExportError(CachePullError):
    """Raised when the manifest path cannot be exported to later pipeline steps."""


class OperationCancelledError(CachePullError):
    """Raised when a cancellation token fires during a fetch or extraction."""


class StreamRestoreError(RuntimeError):
    """Raised on misuse of :class:`~BuildCache.CachePull.streams.RestorableStream`.

    Restoring twice, or after the stream committed to one decoding path, is a
    programming error rather than a recoverable condition.
    """


# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.errors",
#   "purpose": "Define the exception hierarchy used across cache resolution, download, and restore",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "network", "name": "Resolution & Download Errors", "anchor": "NET", "kind": "api"},
#     {"id": "archive", "name": "Archive & Extraction Errors", "anchor": "ARC", "kind": "api"},
#     {"id": "manifest", "name": "Manifest & Stack Errors", "anchor": "MAN", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
