"""Testing utilities for exercising the cache pull step end-to-end.

Provides a context manager that swaps the shared HTTP client for one backed
by an ``httpx`` transport, and a builder for small tar archives with the
entry kinds the cache-writing tool produces.
"""

from __future__ import annotations

import contextlib
import gzip as gzip_module
import io
import json
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Optional, Union

import httpx

from ..network.client import configure_http_client, reset_http_client

__all__ = [
    "ArchiveEntry",
    "build_tar_archive",
    "manifest_entry",
    "use_mock_http_client",
]


@contextlib.contextmanager
def use_mock_http_client(transport: httpx.BaseTransport, **client_kwargs) -> Iterator[httpx.Client]:
    """Temporarily install an HTTPX client backed by ``transport``."""

    client = httpx.Client(transport=transport, **client_kwargs)
    configure_http_client(client)
    try:
        yield client
    finally:
        reset_http_client()


@dataclass(frozen=True)
class ArchiveEntry:
    """One entry for :func:`build_tar_archive`.

    ``kind`` is one of ``file``, ``dir``, ``symlink``, ``hardlink`` or ``fifo``;
    ``data`` is the payload of files, ``linkname`` the target of links.
    """

    name: str
    kind: str = "file"
    data: bytes = b""
    mode: int = 0o644
    linkname: str = ""


_KIND_TYPES = {
    "file": tarfile.REGTYPE,
    "dir": tarfile.DIRTYPE,
    "symlink": tarfile.SYMTYPE,
    "hardlink": tarfile.LNKTYPE,
    "fifo": tarfile.FIFOTYPE,
}


def manifest_entry(payload: Mapping[str, object], name: str = "archive_info.json") -> ArchiveEntry:
    """Return an archive entry holding ``payload`` as JSON."""

    return ArchiveEntry(name=name, data=json.dumps(payload).encode("utf-8"))


def build_tar_archive(
    path: Path,
    entries: Iterable[Union[ArchiveEntry, tuple]],
    *,
    gzip: bool = False,
    mtime: int = 1_600_000_000,
) -> Path:
    """Write a tar archive (optionally gzip-compressed) containing ``entries``.

    Entries are written in the given order.  Plain ``(name, data)`` tuples are
    accepted as shorthand for regular files.  Absolute names are stored as-is,
    like ``tar -cPf`` does.
    """

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.GNU_FORMAT) as tar:
        for raw in entries:
            entry = raw if isinstance(raw, ArchiveEntry) else ArchiveEntry(name=raw[0], data=raw[1])
            info = tarfile.TarInfo(entry.name)
            info.type = _KIND_TYPES[entry.kind]
            info.mode = 0o755 if entry.kind == "dir" and entry.mode == 0o644 else entry.mode
            info.mtime = mtime
            info.linkname = entry.linkname
            payload: Optional[io.BytesIO] = None
            if entry.kind == "file":
                info.size = len(entry.data)
                payload = io.BytesIO(entry.data)
            tar.addfile(info, payload)

    data = buffer.getvalue()
    if gzip:
        data = gzip_module.compress(data, mtime=0)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path
