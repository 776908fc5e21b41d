# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.sniffing",
#   "purpose": "Classify cache archives as gzip-compressed or raw tar without re-reading them",
#   "sections": [
#     {"id": "types", "name": "Probe Types", "anchor": "TYP", "kind": "api"},
#     {"id": "reader", "name": "ArchiveReader", "anchor": "RDR", "kind": "api"},
#     {"id": "sniffer", "name": "FormatSniffer", "anchor": "SNF", "kind": "api"},
#     {"id": "helpers", "name": "open_archive / probe_archive", "anchor": "HLP", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Archive format sniffing.

The cache-writing tool produces either a plain tar or a gzip-compressed tar and
never says which.  :class:`FormatSniffer` settles it from the bytes alone: it
wraps the source in a :class:`~BuildCache.CachePull.streams.RestorableStream`,
tries to open a gzip decoder, and on failure rewinds and reads the same bytes
as raw tar.  The two paths are mutually exclusive and no byte is read twice
from the underlying source.

Only the first entry is needed to classify the archive; a payload without any
entries is reported as empty rather than raised as an error, so the caller can
decide how to react.
"""

from __future__ import annotations

import contextlib
import gzip
import io
import logging
import tarfile
import zlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, BinaryIO, Iterator, Optional, Tuple

from .errors import ArchiveFormatError
from .logging_config import LOGGER_NAME
from .streams import RestorableStream

__all__ = [
    "ARCHIVE_READ_ERRORS",
    "ArchiveProbe",
    "ArchiveReader",
    "Compression",
    "FormatSniffer",
    "open_archive",
    "probe_archive",
]

# Failures raised by tarfile/gzip while walking a corrupt or truncated payload.
ARCHIVE_READ_ERRORS = (tarfile.TarError, EOFError, zlib.error, gzip.BadGzipFile)


class Compression(str, Enum):
    GZIP = "gzip"
    NONE = "none"


@dataclass(frozen=True)
class ArchiveProbe:
    """Outcome of sniffing an archive stream.

    Attributes:
        compression: Encoding detected for the payload.
        first_entry: Name of the first archive entry, ``None`` when the archive
            holds no entries.
    """

    compression: Compression
    first_entry: Optional[str]

    @property
    def empty(self) -> bool:
        return self.first_entry is None


def _read_block(stream: RestorableStream) -> bytes:
    chunks = []
    remaining = tarfile.BLOCKSIZE
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


class ArchiveReader:
    """Sequential view over the entries of a sniffed archive."""

    def __init__(self, probe: ArchiveProbe, tar: Optional[tarfile.TarFile]) -> None:
        self.probe = probe
        self._tar = tar

    def __iter__(self) -> Iterator[tarfile.TarInfo]:
        if self._tar is None:
            return
        try:
            for member in self._tar:
                yield member
        except ARCHIVE_READ_ERRORS as exc:
            raise ArchiveFormatError(f"Failed to read archive entries: {exc}") from exc

    def extractfile(self, member: tarfile.TarInfo) -> Optional[IO[bytes]]:
        """Return the payload of the current ``member`` (stream mode allows no seeking back)."""

        if self._tar is None:
            return None
        return self._tar.extractfile(member)

    def close(self) -> None:
        if self._tar is not None:
            self._tar.close()
            self._tar = None


class FormatSniffer:
    """Decide between gzip-compressed and raw tar for a forward-only stream."""

    def __init__(self, *, logger: Optional[logging.Logger] = None, debug: bool = False) -> None:
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self._debug = debug

    def decode(self, source: BinaryIO) -> Tuple[Compression, BinaryIO]:
        """Return the detected compression and a readable yielding decoded tar bytes.

        The gzip attempt reads into a restorable buffer; when the gzip header is
        missing or invalid the buffer is replayed for the raw path.
        """

        stream = RestorableStream(source)
        decoder = gzip.GzipFile(fileobj=stream, mode="rb")
        try:
            head = decoder.peek(1)
        except (OSError, EOFError, zlib.error) as exc:
            if self._debug:
                self._logger.debug(
                    "archive is not gzip-compressed, retrying as raw tar",
                    extra={"stage": "sniff", "reason": str(exc), "buffered": stream.buffered_bytes},
                )
            decoder.close()
            stream.restore()
            return Compression.NONE, io.BufferedReader(stream)
        if not head and stream.buffered_bytes == 0:
            # Zero-byte source: there is no gzip member, report it as raw.
            decoder.close()
            stream.restore()
            return Compression.NONE, io.BufferedReader(stream)
        stream.commit()
        return Compression.GZIP, decoder  # type: ignore[return-value]

    @contextlib.contextmanager
    def open(self, source: BinaryIO) -> Iterator[ArchiveReader]:
        """Sniff ``source`` and yield an :class:`ArchiveReader` over its entries.

        Raises:
            ArchiveFormatError: If the decoded bytes are not a tar archive.
        """

        compression, decoded = self.decode(source)
        with contextlib.closing(decoded):
            # An end-of-archive block (or nothing) where the first header
            # should be means there are no entries.
            head_stream = RestorableStream(decoded)
            try:
                head = _read_block(head_stream)
            except ARCHIVE_READ_ERRORS as exc:
                raise ArchiveFormatError(f"Failed to decode archive payload: {exc}") from exc
            if not head.strip(b"\0"):
                probe = ArchiveProbe(compression=compression, first_entry=None)
                self._log_probe(probe)
                yield ArchiveReader(probe, None)
                return
            head_stream.restore()
            try:
                tar = tarfile.open(fileobj=io.BufferedReader(head_stream), mode="r|")
            except ARCHIVE_READ_ERRORS as exc:
                raise ArchiveFormatError(
                    f"Archive is neither a gzip-compressed nor a raw tar archive: {exc}"
                ) from exc
            first = tar.firstmember
            probe = ArchiveProbe(
                compression=compression,
                first_entry=first.name if first is not None else None,
            )
            self._log_probe(probe)
            reader = ArchiveReader(probe, tar)
            try:
                yield reader
            finally:
                reader.close()

    def probe(self, source: BinaryIO) -> ArchiveProbe:
        """Classify ``source`` by reading only up to its first entry."""

        with self.open(source) as reader:
            return reader.probe

    def _log_probe(self, probe: ArchiveProbe) -> None:
        self._logger.debug(
            "sniffed archive format",
            extra={
                "stage": "sniff",
                "compression": probe.compression.value,
                "first_entry": probe.first_entry,
                "empty": probe.empty,
            },
        )


@contextlib.contextmanager
def open_archive(
    archive_path: Path,
    *,
    sniffer: Optional[FormatSniffer] = None,
) -> Iterator[ArchiveReader]:
    """Open a local archive file and yield its sniffed :class:`ArchiveReader`.

    The file handle, the decoder, and the tar reader are all released when the
    block exits, including on errors raised by the caller.
    """

    sniffer = sniffer or FormatSniffer()
    with archive_path.open("rb") as handle:
        with sniffer.open(handle) as reader:
            yield reader


def probe_archive(archive_path: Path, *, sniffer: Optional[FormatSniffer] = None) -> ArchiveProbe:
    """Return the :class:`ArchiveProbe` for a local archive file."""

    with open_archive(archive_path, sniffer=sniffer) as reader:
        return reader.probe
