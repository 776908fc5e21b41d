# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.streams",
#   "purpose": "Forward-only byte stream with a one-shot rewind of speculatively read bytes",
#   "sections": [
#     {
#       "id": "restorablestream",
#       "name": "RestorableStream",
#       "anchor": "class-restorablestream",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Forward-only byte stream with a one-shot rewind.

Archive sniffing has to try one decoder, and if that fails, hand exactly the
same bytes to another one.  Downloads and process pipes cannot seek, so
:class:`RestorableStream` records what the first attempt consumed and replays
it on :meth:`RestorableStream.restore`.  Only bytes actually read are kept;
the payload is never buffered as a whole.

Lifecycle:

1. *Recording*: every read from the source is appended to the restore buffer.
2. Either :meth:`~RestorableStream.restore` (replay the buffer, then continue
   with the source) or :meth:`~RestorableStream.commit` (drop the buffer).
   Both end recording; neither can be undone.
"""

from __future__ import annotations

import io
from typing import BinaryIO, Optional

from .errors import StreamRestoreError

__all__ = ["RestorableStream"]


class RestorableStream(io.RawIOBase):
    """Wrap a single-pass readable so a speculative read can be replayed once.

    Args:
        source: Any object exposing ``read(size)``; seeking is never used.

    Examples:
        >>> stream = RestorableStream(io.BytesIO(b"abcdef"))
        >>> stream.read(3)
        b'abc'
        >>> stream.restore()
        >>> stream.read()
        b'abcdef'
    """

    def __init__(self, source: BinaryIO) -> None:
        super().__init__()
        self._source = source
        self._recorded = bytearray()
        self._replay: Optional[bytes] = None
        self._replay_offset = 0
        self._recording = True
        self._restored = False
        self._committed = False

    # --- io.RawIOBase ---------------------------------------------------------

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        view = memoryview(buffer).cast("B")
        wanted = len(view)
        if wanted == 0:
            return 0

        if self._replay is not None:
            remaining = len(self._replay) - self._replay_offset
            if remaining > 0:
                count = min(wanted, remaining)
                view[:count] = self._replay[self._replay_offset : self._replay_offset + count]
                self._replay_offset += count
                if self._replay_offset >= len(self._replay):
                    self._replay = None
                return count
            self._replay = None

        data = self._source.read(wanted)
        if not data:
            return 0
        count = len(data)
        view[:count] = data
        if self._recording:
            self._recorded += data
        return count

    def close(self) -> None:
        self._replay = None
        self._recorded = bytearray()
        super().close()

    # --- restore / commit -----------------------------------------------------

    @property
    def buffered_bytes(self) -> int:
        """Number of bytes currently held for a possible restore."""
        return len(self._recorded)

    def restore(self) -> None:
        """Replay every byte consumed so far before reading further from the source.

        Raises:
            StreamRestoreError: If the stream was already restored or committed.
        """
        if self._restored:
            raise StreamRestoreError("stream has already been restored")
        if self._committed:
            raise StreamRestoreError("stream has been committed; restore is no longer possible")
        self._restored = True
        self._recording = False
        self._replay = bytes(self._recorded)
        self._replay_offset = 0
        self._recorded = bytearray()

    def commit(self) -> None:
        """Discard the restore buffer; the current decoding path is final."""
        self._committed = True
        self._recording = False
        self._recorded = bytearray()
