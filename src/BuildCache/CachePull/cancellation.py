"""Cooperative cancellation for the blocking phases of a cache pull.

The pull runs strictly sequentially, but two of its phases can block for a
long time: streaming the archive over HTTP and waiting for the external
``tar`` process.  :class:`CancellationToken` lets a signal handler or an
embedding thread ask those phases to stop.  Checks happen at explicit
boundaries (between downloaded chunks, between subprocess polls) so partial
files and child processes are cleaned up predictably.
"""

from __future__ import annotations

import threading

from .errors import OperationCancelledError


class CancellationToken:
    """Thread-safe cancellation token for cooperative task cancellation.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        """Initialize a new cancellation token."""
        self._is_cancelled = threading.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        """Return ``True`` once cancellation has been requested."""
        return self._is_cancelled.is_set()

    def raise_if_cancelled(self, operation: str) -> None:
        """Raise :class:`OperationCancelledError` if cancellation was requested.

        Args:
            operation: Short description of the interrupted work, used in the
                error message (for example ``"download"``).
        """
        if self._is_cancelled.is_set():
            raise OperationCancelledError(f"{operation} cancelled")


# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.cancellation",
#   "purpose": "Provide the cooperative cancellation token honoured by downloads and tar extraction",
#   "sections": [
#     {"id": "token", "name": "CancellationToken", "anchor": "TOK", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
