# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.placement",
#   "purpose": "Move extracted cache items to their destinations, collecting per-item failures",
#   "sections": [
#     {"id": "results", "name": "PlacementResult / SkippedItem", "anchor": "RES", "kind": "api"},
#     {"id": "placer", "name": "ContentPlacer", "anchor": "PLC", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Placement of extracted cache items.

Legacy manifests map each path inside the archive to an absolute destination.
:class:`ContentPlacer` moves the items there one by one, replacing whatever
already occupies a destination.  A single missing or unmovable item must not
void the whole restore, so failures are logged, collected and skipped; the
placement as a whole always succeeds.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional

from .logging_config import LOGGER_NAME
from .manifests import CacheItem

__all__ = ["ContentPlacer", "PlacementResult", "PlacedItem", "SkippedItem"]


@dataclass(frozen=True)
class PlacedItem:
    item: CacheItem
    source: Path
    destination: Path


@dataclass(frozen=True)
class SkippedItem:
    """An item that could not be placed and why."""

    item: CacheItem
    reason: str


@dataclass
class PlacementResult:
    """Outcome of placing every manifest item, in manifest order."""

    placed: List[PlacedItem] = field(default_factory=list)
    skipped: List[SkippedItem] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def placed_count(self) -> int:
        return len(self.placed)


def _is_within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


def _remove_existing(destination: Path) -> None:
    """Clear ``destination`` so the move replaces it instead of nesting into it."""

    if destination.is_dir() and not destination.is_symlink():
        shutil.rmtree(destination)
    elif os.path.lexists(destination):
        destination.unlink()


class ContentPlacer:
    """Move items from an extraction root to their destination paths."""

    def __init__(self, *, logger: Optional[logging.Logger] = None, debug: bool = False) -> None:
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self._debug = debug

    def place(self, items: Iterable[CacheItem], extraction_root: Path) -> PlacementResult:
        """Place ``items`` and return which were placed and which were skipped."""

        result = PlacementResult()
        root = Path(os.path.abspath(extraction_root))
        for item in items:
            source = self._source_for(item, root)
            if source is None:
                self._skip(result, item, "escapes extraction root")
                continue
            destination = Path(item.destination_path)

            if not os.path.lexists(source):
                self._skip(result, item, f"source not found in extracted cache: {source}")
                continue
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                self._skip(result, item, f"failed to create destination directory: {exc}")
                continue
            try:
                _remove_existing(destination)
            except OSError as exc:
                self._skip(result, item, f"failed to replace existing destination: {exc}")
                continue
            try:
                shutil.move(str(source), str(destination))
            except (OSError, shutil.Error) as exc:
                self._skip(result, item, f"failed to move item: {exc}")
                continue

            result.placed.append(PlacedItem(item=item, source=source, destination=destination))
            if self._debug:
                self._logger.debug(
                    "placed cache item",
                    extra={"stage": "place", "source": str(source), "destination": str(destination)},
                )

        if result.skipped:
            self._logger.warning(
                "%d cache item(s) could not be placed",
                result.skipped_count,
                extra={"stage": "place", "skipped": result.skipped_count},
            )
        return result

    @staticmethod
    def _source_for(item: CacheItem, root: Path) -> Optional[Path]:
        relative = PurePosixPath(item.relative_path_in_archive.replace("\\", "/"))
        parts = [part for part in relative.parts if part != "/"]
        candidate = Path(os.path.normpath(root.joinpath(*parts)))
        if not _is_within(candidate, root):
            return None
        # Symlinks extracted from the archive must not lead the move outside.
        real_root = Path(os.path.realpath(root))
        real_parent = Path(os.path.realpath(candidate.parent))
        if candidate != root and not _is_within(real_parent, real_root):
            return None
        return candidate

    def _skip(self, result: PlacementResult, item: CacheItem, reason: str) -> None:
        result.skipped.append(SkippedItem(item=item, reason=reason))
        self._logger.warning(
            "skipping cache item %s: %s",
            item.relative_path_in_archive,
            reason,
            extra={"stage": "place", "destination": item.destination_path},
        )
