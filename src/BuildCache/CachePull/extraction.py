# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.extraction",
#   "purpose": "Materialise cache archives on disk through tar or an in-process walker",
#   "sections": [
#     {"id": "types", "name": "ExtractionResult / Extractor", "anchor": "TYP", "kind": "api"},
#     {"id": "paths", "name": "Entry Path Mapping", "anchor": "PTH", "kind": "helpers"},
#     {"id": "delegated", "name": "DelegatedExtractor", "anchor": "DEL", "kind": "api"},
#     {"id": "manual", "name": "ManualExtractor", "anchor": "MAN", "kind": "api"},
#     {"id": "select", "name": "select_extractor", "anchor": "SEL", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Cache archive extraction strategies.

Two interchangeable strategies implement :class:`Extractor`:

``DelegatedExtractor``
    Runs the system ``tar`` with absolute paths and permission bits preserved
    (``-P``).  This is what the cache-writing tool pairs with and it is the
    fastest option on CI machines.

``ManualExtractor``
    Walks the archive in-process, entry by entry and in archive order.  It
    reproduces directories, regular files (with their recorded mode),
    symlinks and hard links, and lets the caller re-root absolute entry names
    under a different directory.  Used when ``tar`` is unavailable and in
    tests that must not depend on the host archiver.

Both accept raw or gzip-compressed archives: the delegated strategy relies on
``tar`` auto-detection, the manual one on :mod:`BuildCache.CachePull.sniffing`.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tarfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional, Protocol

from .cancellation import CancellationToken
from .errors import (
    ArchiveEntryError,
    ConfigurationError,
    ExtractionToolError,
    OperationCancelledError,
    UnsupportedEntryError,
)
from .logging_config import LOGGER_NAME
from .settings import ExtractorKind
from .sniffing import ARCHIVE_READ_ERRORS, FormatSniffer, open_archive

__all__ = [
    "DIRECTORY_MODE",
    "DelegatedExtractor",
    "ExtractionResult",
    "Extractor",
    "ManualExtractor",
    "select_extractor",
]

DIRECTORY_MODE = 0o755
_POLL_INTERVAL_SECONDS = 0.25
_POSIX_MODES = os.name != "nt"

# --- Types ------------------------------------------------------------------------


@dataclass(frozen=True)
class ExtractionResult:
    """Summary of one extraction run.

    Attributes:
        strategy: ``"tar"`` or ``"manual"``.
        destination_root: Root relative entry names were written under.
        entries_written: Number of archive entries materialised, ``None`` when
            the strategy cannot tell (the external tool does not report it).
        output: Captured tool output (delegated strategy only).
    """

    strategy: str
    destination_root: Path
    entries_written: Optional[int]
    output: str = ""


class Extractor(Protocol):
    """Protocol shared by the extraction strategies."""

    name: str

    def extract(
        self,
        archive_path: Path,
        destination_root: Path,
        *,
        preserve_absolute: bool = True,
    ) -> ExtractionResult:
        """Materialise ``archive_path`` and report what was written."""


# --- Entry Path Mapping -----------------------------------------------------------


def _entry_target(name: str, root: Path, *, preserve_absolute: bool) -> Path:
    """Map an archive entry name to the filesystem path it should occupy."""

    posix = PurePosixPath(name.replace("\\", "/"))
    if ".." in posix.parts:
        raise ArchiveEntryError(f"{name}: entry escapes the extraction root", path=name)
    if posix.is_absolute():
        if preserve_absolute:
            return Path(str(posix))
        posix = posix.relative_to("/")
    parts = [part for part in posix.parts if part not in {"", "."}]
    if not parts:
        return root
    return root.joinpath(*parts)


def _ensure_within(path: Path, root: Path, name: str) -> None:
    """Reject ``path`` when symlinks already on disk take it outside ``root``."""

    real_root = os.path.realpath(root)
    real_path = os.path.realpath(path)
    if real_path != real_root and not real_path.startswith(real_root.rstrip(os.sep) + os.sep):
        raise ArchiveEntryError(f"{name}: entry escapes the extraction root", path=name)


def _clear_existing(path: Path) -> None:
    if path.is_symlink() or (path.exists() and not path.is_dir()):
        path.unlink()


# --- DelegatedExtractor -----------------------------------------------------------


class DelegatedExtractor:
    """Extract by running the external ``tar`` binary.

    Args:
        tar_command: Executable name or path.
        debug: Pass ``-v`` so the tool lists entries in the captured output.
        cancel_token: Polled while waiting for the child; cancellation kills it.
    """

    name = "tar"

    def __init__(
        self,
        *,
        tar_command: str = "tar",
        debug: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        poll_interval: float = _POLL_INTERVAL_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._tar_command = tar_command
        self._debug = debug
        self._cancel_token = cancel_token or CancellationToken()
        self._poll_interval = poll_interval
        self._logger = logger or logging.getLogger(LOGGER_NAME)

    def command(self, archive_path: Path, destination_root: Path, *, preserve_absolute: bool) -> List[str]:
        flags = "-x"
        if self._debug:
            flags += "v"
        if preserve_absolute:
            flags += "P"
        flags += "f"
        return [self._tar_command, flags, str(archive_path), "-C", str(destination_root)]

    def extract(
        self,
        archive_path: Path,
        destination_root: Path,
        *,
        preserve_absolute: bool = True,
    ) -> ExtractionResult:
        """Run ``tar`` and wait for it, polling the cancellation token.

        Raises:
            ExtractionToolError: If ``tar`` cannot start or exits non-zero; the
                message carries the combined output.
            OperationCancelledError: If cancellation is requested while waiting.
        """

        self._cancel_token.raise_if_cancelled("extraction")
        destination_root.mkdir(parents=True, exist_ok=True)
        command = self.command(archive_path, destination_root, preserve_absolute=preserve_absolute)
        printable = " ".join(command)
        self._logger.debug("running archive tool", extra={"stage": "extract", "command": printable})

        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            raise ExtractionToolError(f"{printable} failed to start: {exc}") from exc

        while True:
            try:
                raw_output, _ = process.communicate(timeout=self._poll_interval)
                break
            except subprocess.TimeoutExpired:
                if self._cancel_token.is_cancelled():
                    process.kill()
                    process.communicate()
                    raise OperationCancelledError("extraction cancelled")

        output = raw_output.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            raise ExtractionToolError(
                f"{printable} failed: {output or f'exit status {process.returncode}'}",
                output=output,
                returncode=process.returncode,
            )
        if self._debug and output:
            self._logger.debug("archive tool output", extra={"stage": "extract", "output": output})
        return ExtractionResult(
            strategy=self.name,
            destination_root=destination_root,
            entries_written=None,
            output=output,
        )


# --- ManualExtractor ----------------------------------------------------------------


class ManualExtractor:
    """Extract entry by entry without an external archiver."""

    name = "manual"

    def __init__(
        self,
        *,
        debug: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        sniffer: Optional[FormatSniffer] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._debug = debug
        self._cancel_token = cancel_token or CancellationToken()
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self._sniffer = sniffer or FormatSniffer(logger=self._logger, debug=debug)

    def extract(
        self,
        archive_path: Path,
        destination_root: Path,
        *,
        preserve_absolute: bool = True,
    ) -> ExtractionResult:
        """Materialise every entry of ``archive_path`` in archive order.

        Relative entry names land under ``destination_root``.  Absolute names
        are written where they point when ``preserve_absolute`` is set and
        re-rooted under ``destination_root`` otherwise.

        Raises:
            ArchiveFormatError: If the archive cannot be decoded.
            ArchiveEntryError: If an entry cannot be written or escapes the root.
            UnsupportedEntryError: For entry kinds other than directories,
                files, device nodes, FIFOs, symlinks and hard links.
        """

        destination_root.mkdir(parents=True, exist_ok=True)
        written = 0
        with open_archive(archive_path, sniffer=self._sniffer) as reader:
            for member in reader:
                self._cancel_token.raise_if_cancelled("extraction")
                target = _entry_target(
                    member.name, destination_root, preserve_absolute=preserve_absolute
                )
                if not preserve_absolute and target != destination_root:
                    _ensure_within(target.parent, destination_root, member.name)
                try:
                    self._materialise(reader, member, target, destination_root, preserve_absolute)
                except ARCHIVE_READ_ERRORS as exc:
                    raise ArchiveEntryError(
                        f"{member.name}: archive is truncated or corrupt: {exc}", path=member.name
                    ) from exc
                except OSError as exc:
                    raise ArchiveEntryError(
                        f"{member.name}: failed to extract entry: {exc}", path=member.name
                    ) from exc
                written += 1
                if self._debug:
                    self._logger.debug(
                        "extracted entry",
                        extra={"stage": "extract", "entry": member.name, "target": str(target)},
                    )

        return ExtractionResult(
            strategy=self.name,
            destination_root=destination_root,
            entries_written=written,
        )

    def _materialise(
        self,
        reader,
        member: tarfile.TarInfo,
        target: Path,
        root: Path,
        preserve_absolute: bool,
    ) -> None:
        if member.isdir():
            target.mkdir(parents=True, exist_ok=True, mode=DIRECTORY_MODE)
        elif member.isreg() or member.ischr() or member.isblk() or member.isfifo():
            self._write_file(reader, member, target)
        elif member.issym():
            target.parent.mkdir(parents=True, exist_ok=True, mode=DIRECTORY_MODE)
            _clear_existing(target)
            os.symlink(member.linkname, target)
        elif member.islnk():
            link_source = self._hardlink_source(member, target, root, preserve_absolute)
            if not preserve_absolute:
                _ensure_within(link_source, root, member.name)
            target.parent.mkdir(parents=True, exist_ok=True, mode=DIRECTORY_MODE)
            _clear_existing(target)
            os.link(link_source, target)
        else:
            raise UnsupportedEntryError(
                f"{member.name}: unsupported entry type {member.type!r}", path=member.name
            )

    def _write_file(self, reader, member: tarfile.TarInfo, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True, mode=DIRECTORY_MODE)
        _clear_existing(target)
        payload = reader.extractfile(member)
        with target.open("wb") as handle:
            if payload is not None:
                with payload:
                    shutil.copyfileobj(payload, handle)
        if _POSIX_MODES:
            os.chmod(target, member.mode & 0o7777)

    @staticmethod
    def _hardlink_source(
        member: tarfile.TarInfo,
        target: Path,
        root: Path,
        preserve_absolute: bool,
    ) -> Path:
        # The recorded target is relative to the link's own directory; archives
        # written by stock tar record it from the archive root instead.
        linkname = member.linkname
        if PurePosixPath(linkname.replace("\\", "/")).is_absolute():
            return _entry_target(linkname, root, preserve_absolute=preserve_absolute)
        sibling = target.parent.joinpath(*PurePosixPath(linkname).parts)
        if sibling.exists():
            return sibling
        return _entry_target(linkname, root, preserve_absolute=preserve_absolute)


# --- select_extractor ---------------------------------------------------------------


def select_extractor(
    kind: ExtractorKind = ExtractorKind.AUTO,
    *,
    debug: bool = False,
    cancel_token: Optional[CancellationToken] = None,
    logger: Optional[logging.Logger] = None,
    which: Optional[Callable[[str], Optional[str]]] = None,
) -> Extractor:
    """Return the extraction strategy for ``kind``.

    ``auto`` prefers ``tar`` when it is on ``PATH`` and falls back to the
    manual walker otherwise.

    Raises:
        ConfigurationError: If ``tar`` is requested explicitly but not installed.
    """

    logger = logger or logging.getLogger(LOGGER_NAME)
    if kind == ExtractorKind.MANUAL:
        return ManualExtractor(debug=debug, cancel_token=cancel_token, logger=logger)

    tar_path = (which or shutil.which)("tar")
    if tar_path:
        return DelegatedExtractor(
            tar_command=tar_path, debug=debug, cancel_token=cancel_token, logger=logger
        )
    if kind == ExtractorKind.TAR:
        raise ConfigurationError("The tar extractor was requested but no tar binary is on PATH")
    logger.info(
        "tar not found on PATH, using the built-in extractor",
        extra={"stage": "extract"},
    )
    return ManualExtractor(debug=debug, cancel_token=cancel_token, logger=logger)
