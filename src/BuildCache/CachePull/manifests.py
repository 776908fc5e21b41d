# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.manifests",
#   "purpose": "Cache manifest models and lookup inside archives or extracted roots",
#   "sections": [
#     {"id": "models", "name": "CacheItem / CacheManifest", "anchor": "MOD", "kind": "api"},
#     {"id": "names", "name": "Sentinel Names", "anchor": "NAM", "kind": "constants"},
#     {"id": "reader", "name": "ManifestReader", "anchor": "RDR", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Cache manifest models and lookup.

The cache-writing tool stores a small JSON descriptor next to the cached
files.  Two shapes exist:

* the *simple* ``archive_info.json`` (often recorded as
  ``/tmp/archive_info.json``) carrying only ``stack_id``; the cached files
  carry their own destination paths in the archive;
* the *legacy* ``cache-info.json`` with ``cache_contents``, mapping paths in
  the archive to absolute destinations.

Both are decoded into :class:`CacheManifest`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ArchiveFormatError, ManifestError, ManifestNotFoundError
from .logging_config import LOGGER_NAME
from .sniffing import ARCHIVE_READ_ERRORS, FormatSniffer, open_archive

__all__ = [
    "LEGACY_MANIFEST_NAME",
    "MANIFEST_NAMES",
    "SIMPLE_MANIFEST_NAME",
    "CacheItem",
    "CacheManifest",
    "LocatedManifest",
    "ManifestReader",
    "normalize_entry_name",
]

# --- Models ---------------------------------------------------------------------


class CacheItem(BaseModel):
    """One cached path: where it sits in the archive and where it must go."""

    destination_path: str = Field(min_length=1)
    relative_path_in_archive: str = Field(min_length=1)

    model_config = ConfigDict(frozen=True, extra="ignore")


class CacheManifest(BaseModel):
    """Decoded cache descriptor.

    ``stack_id`` identifies the stack the cache was produced on; an empty or
    missing value means the producer did not care.  ``cache_contents`` is only
    present in legacy manifests and is never empty when present.
    """

    stack_id: Optional[str] = None
    fingerprint: Optional[str] = None
    cache_contents: Optional[List[CacheItem]] = Field(default=None, min_length=1)

    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def has_placement_map(self) -> bool:
        return bool(self.cache_contents)


# --- Sentinel Names -------------------------------------------------------------

SIMPLE_MANIFEST_NAME = "archive_info.json"
LEGACY_MANIFEST_NAME = "cache-info.json"
MANIFEST_NAMES: Tuple[str, ...] = (
    SIMPLE_MANIFEST_NAME,
    f"tmp/{SIMPLE_MANIFEST_NAME}",
    LEGACY_MANIFEST_NAME,
)


def normalize_entry_name(name: str) -> str:
    """Strip leading ``/`` and ``./`` so absolute and relative recordings compare equal."""

    normalized = name.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


@dataclass(frozen=True)
class LocatedManifest:
    """A decoded manifest together with where it was found.

    Attributes:
        manifest: Decoded descriptor.
        entry_name: Archive entry name (or path relative to the extracted root).
        path: Filesystem path when read from an extracted root, otherwise ``None``.
    """

    manifest: CacheManifest
    entry_name: str
    path: Optional[Path] = None


# --- Reader ---------------------------------------------------------------------


class ManifestReader:
    """Locate and decode the cache manifest."""

    def __init__(
        self,
        *,
        names: Tuple[str, ...] = MANIFEST_NAMES,
        sniffer: Optional[FormatSniffer] = None,
        logger: Optional[logging.Logger] = None,
        debug: bool = False,
    ) -> None:
        self._names = tuple(normalize_entry_name(name) for name in names)
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self._sniffer = sniffer or FormatSniffer(logger=self._logger, debug=debug)
        self._debug = debug

    def decode(self, raw: bytes, *, source: str) -> CacheManifest:
        """Decode manifest JSON.

        Raises:
            ManifestError: If ``raw`` is not valid JSON or violates the schema.
        """

        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise ManifestError(f"Failed to read cache manifest JSON from {source}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ManifestError(f"Cache manifest {source} must be a JSON object")
        try:
            return CacheManifest.model_validate(payload)
        except PydanticValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in exc.errors()
            )
            raise ManifestError(f"Invalid cache manifest {source}: {details}") from exc

    def read_from_archive(self, archive_path: Path) -> LocatedManifest:
        """Scan archive entries in order and decode the first manifest entry.

        Raises:
            ManifestNotFoundError: If no entry matches after the whole archive was read.
            ManifestError: If the matching entry cannot be decoded.
            ArchiveFormatError: If the archive ends inside the manifest entry.
        """

        with open_archive(archive_path, sniffer=self._sniffer) as reader:
            for member in reader:
                if not member.isfile():
                    continue
                if normalize_entry_name(member.name) not in self._names:
                    continue
                payload = reader.extractfile(member)
                if payload is None:
                    continue
                try:
                    with payload:
                        raw = payload.read()
                except ARCHIVE_READ_ERRORS as exc:
                    raise ArchiveFormatError(
                        f"Archive is truncated or corrupt while reading {member.name}: {exc}"
                    ) from exc
                manifest = self.decode(raw, source=member.name)
                self._log_found(member.name, manifest)
                return LocatedManifest(manifest=manifest, entry_name=member.name)
        raise ManifestNotFoundError("Did not find the required cache manifest in the archive")

    def read_from_root(self, root: Path) -> LocatedManifest:
        """Decode the manifest from an already extracted directory tree.

        Raises:
            ManifestNotFoundError: If none of the sentinel paths exist under ``root``.
        """

        for name in self._names:
            candidate = root / Path(*PurePosixPath(name).parts)
            if candidate.is_file():
                manifest = self.decode(candidate.read_bytes(), source=str(candidate))
                self._log_found(name, manifest)
                return LocatedManifest(manifest=manifest, entry_name=name, path=candidate)
        raise ManifestNotFoundError(f"Cache manifest not found in uncompressed cache data: {root}")

    def _log_found(self, name: str, manifest: CacheManifest) -> None:
        extra = {"stage": "manifest", "entry": name, "stack_id": manifest.stack_id}
        if self._debug:
            extra["items"] = len(manifest.cache_contents or [])
        self._logger.debug("cache manifest located", extra=extra)
