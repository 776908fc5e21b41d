# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.pipeline",
#   "purpose": "Run one cache pull: resolve, download, gate, extract, place, export",
#   "sections": [
#     {"id": "outcome", "name": "RunStatus / RunOutcome", "anchor": "OUT", "kind": "api"},
#     {"id": "pipeline", "name": "CachePull", "anchor": "RUN", "kind": "api"},
#     {"id": "helpers", "name": "pull", "anchor": "HLP", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Cache pull orchestration.

:class:`CachePull` runs the steps strictly in sequence:

1. resolve the source (direct archive URL, or cache API lookup);
2. download the archive into a temporary work directory, retrying once;
3. sniff the archive encoding and read the cache manifest from it;
4. check stack compatibility (before anything touches the filesystem);
5. extract the archive;
6. for legacy manifests, move each cached item to its destination;
7. persist the recovered manifest and export its path for later steps.

The work directory, the archive file and every decoder are released on all
exit paths.  Fatal conditions propagate as
:class:`~BuildCache.CachePull.errors.CachePullError` subclasses; the
recoverable ones (no source, cache not initialised, skipped items, stack
fallback) are reported on the returned :class:`RunOutcome`.
"""

from __future__ import annotations

import logging
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .cancellation import CancellationToken
from .errors import CacheNotInitializedError, ExportError
from .exporters import EnvExporter, select_exporter
from .extraction import ExtractionResult, Extractor, select_extractor
from .gates import GateDecision, GateOutcome, check_stack_compatibility
from .logging_config import LOGGER_NAME, mask_sensitive_data
from .manifests import CacheManifest, LEGACY_MANIFEST_NAME, ManifestReader
from .network.client import get_http_client
from .network.download import Downloader, resolve_source
from .placement import ContentPlacer, PlacementResult
from .settings import CachePullSettings
from .sniffing import ArchiveProbe, FormatSniffer, probe_archive

__all__ = ["CachePull", "RunOutcome", "RunStatus", "pull"]

ARCHIVE_FILE_NAME = "cache-archive.tar"
EXTRACTED_DIR_NAME = "extracted"

# --- Outcome ------------------------------------------------------------------------


class RunStatus(str, Enum):
    SKIPPED = "skipped"
    NOT_INITIALIZED = "not_initialized"
    RESTORED = "restored"


@dataclass
class RunOutcome:
    """What a pull run did.

    Attributes:
        status: Overall result; every status maps to a successful exit.
        message: Human-readable summary.
        download_url: Archive URL that was fetched.
        archive_bytes: Size of the downloaded archive.
        probe: Detected archive encoding and first entry.
        manifest: Decoded cache manifest.
        gate_decision: Stack compatibility decision.
        extraction: Extraction summary.
        placement: Per-item placement result (legacy manifests only).
        manifest_path: Persisted manifest path exported to later steps.
    """

    status: RunStatus
    message: str
    download_url: Optional[str] = None
    archive_bytes: Optional[int] = None
    probe: Optional[ArchiveProbe] = None
    manifest: Optional[CacheManifest] = None
    gate_decision: Optional[GateDecision] = None
    extraction: Optional[ExtractionResult] = None
    placement: Optional[PlacementResult] = None
    manifest_path: Optional[Path] = None

    @property
    def skipped_items(self) -> int:
        return self.placement.skipped_count if self.placement is not None else 0


# --- Pipeline -----------------------------------------------------------------------


class CachePull:
    """Pull and restore a build cache according to ``settings``.

    Every collaborator can be injected; the defaults are built from
    ``settings`` on first use.

    Args:
        settings: Frozen step configuration.
        downloader: Resolves and fetches the archive.
        extractor: Extraction strategy; chosen by ``settings.extractor`` when omitted.
        exporter: Receives the manifest path; ``envman`` when installed.
        working_dir: Root for relative archive entries, the current directory by default.
        cancel_token: Honoured while downloading and while ``tar`` runs.
        sleep: Pause used between download attempts.
    """

    def __init__(
        self,
        settings: CachePullSettings,
        *,
        downloader: Optional[Downloader] = None,
        extractor: Optional[Extractor] = None,
        exporter: Optional[EnvExporter] = None,
        placer: Optional[ContentPlacer] = None,
        working_dir: Optional[Path] = None,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self._cancel_token = cancel_token or CancellationToken()
        self._sleep = sleep
        self._downloader = downloader
        self._extractor = extractor
        self._exporter = exporter
        self._placer = placer or ContentPlacer(logger=self._logger, debug=settings.debug)
        self._working_dir = working_dir
        self._sniffer = FormatSniffer(logger=self._logger, debug=settings.debug)
        self._manifests = ManifestReader(
            sniffer=self._sniffer, logger=self._logger, debug=settings.debug
        )

    @property
    def downloader(self) -> Downloader:
        if self._downloader is None:
            self._downloader = Downloader(
                client=get_http_client(self.settings),
                retry_wait_seconds=self.settings.retry_wait_seconds,
                debug=self.settings.debug,
                cancel_token=self._cancel_token,
                sleep=self._sleep,
            )
        return self._downloader

    @property
    def extractor(self) -> Extractor:
        if self._extractor is None:
            self._extractor = select_extractor(
                self.settings.extractor,
                debug=self.settings.debug,
                cancel_token=self._cancel_token,
                logger=self._logger,
            )
        return self._extractor

    @property
    def exporter(self) -> EnvExporter:
        if self._exporter is None:
            self._exporter = select_exporter(logger=self._logger)
        return self._exporter

    def run(self) -> RunOutcome:
        """Execute the pull.

        Raises:
            CachePullError: For every fatal condition; see the module docstring.
        """

        settings = self.settings
        self._logger.info("Cache pull...", extra={"stage": "start"})
        if settings.debug:
            self._logger.debug(
                "step settings",
                extra=mask_sensitive_data(
                    {f"setting_{key}": value for key, value in settings.model_dump(mode="json").items()}
                ),
            )

        if not settings.cache_source:
            message = "No cache source specified, there's no cache to use, exiting."
            self._logger.info(message, extra={"stage": "start"})
            return RunOutcome(status=RunStatus.SKIPPED, message=message)

        via_api = resolve_source(settings.cache_source, settings.source_kind)

        with tempfile.TemporaryDirectory(prefix="cache-pull-") as tmp:
            work_dir = Path(tmp)

            if via_api:
                try:
                    download_url = self.downloader.resolve_download_url(settings.cache_source)
                except CacheNotInitializedError as exc:
                    self._logger.info(
                        str(exc), extra={"stage": "resolve", "status": exc.status_code}
                    )
                    return RunOutcome(status=RunStatus.NOT_INITIALIZED, message=str(exc))
            else:
                download_url = settings.cache_source

            self._logger.info("Downloading cache ...", extra={"stage": "download"})
            archive_path = work_dir / ARCHIVE_FILE_NAME
            archive_bytes = self.downloader.fetch_with_retry(download_url, archive_path)
            self._logger.info("Downloading cache [DONE]", extra={"stage": "download"})

            probe = probe_archive(archive_path, sniffer=self._sniffer)
            if probe.empty:
                self._logger.warning(
                    "cache archive contains no entries", extra={"stage": "sniff"}
                )
            located = self._manifests.read_from_archive(archive_path)
            manifest = located.manifest

            decision = check_stack_compatibility(
                manifest.stack_id, settings.stack_id, settings.allow_fallback
            )
            self._log_decision(decision)
            decision.raise_for_abort()

            self._logger.info("Uncompressing cache ...", extra={"stage": "extract"})
            placement: Optional[PlacementResult] = None
            if manifest.has_placement_map:
                extraction_root = work_dir / EXTRACTED_DIR_NAME
                extraction = self.extractor.extract(
                    archive_path, extraction_root, preserve_absolute=False
                )
                # Items are placed from the manifest that was extracted next to them.
                extracted = self._manifests.read_from_root(extraction_root).manifest
                placement = self._placer.place(extracted.cache_contents or [], extraction_root)
            else:
                extraction_root = self._working_dir or Path.cwd()
                extraction = self.extractor.extract(
                    archive_path,
                    extraction_root,
                    preserve_absolute=not settings.extract_relative,
                )
            self._logger.info("Uncompressing cache [DONE]", extra={"stage": "extract"})

        manifest_path = self._persist_manifest(manifest)
        self._export(manifest_path)

        message = "Cache restored"
        if decision.outcome is GateOutcome.PROCEED_WITH_FALLBACK:
            message += f" from stack {decision.manifest_stack_id} (fallback)"
        if placement is not None and placement.skipped:
            message += f", {placement.skipped_count} item(s) skipped"
        self._logger.info("Finished", extra={"stage": "finish"})
        return RunOutcome(
            status=RunStatus.RESTORED,
            message=message,
            download_url=download_url,
            archive_bytes=archive_bytes,
            probe=probe,
            manifest=manifest,
            gate_decision=decision,
            extraction=extraction,
            placement=placement,
            manifest_path=manifest_path,
        )

    def _log_decision(self, decision: GateDecision) -> None:
        extra = {
            "stage": "gate",
            "outcome": decision.outcome.value,
            "manifest_stack_id": decision.manifest_stack_id,
            "current_stack_id": decision.current_stack_id,
        }
        if decision.outcome is GateOutcome.PROCEED:
            self._logger.debug(decision.reason, extra=extra)
        else:
            self._logger.warning(decision.reason, extra=extra)

    def _persist_manifest(self, manifest: CacheManifest) -> Path:
        target_dir = self.settings.info_dir
        target = target_dir / LEGACY_MANIFEST_NAME
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_text(manifest.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")
        except OSError as exc:
            raise ExportError(f"Failed to save the cache manifest to {target}: {exc}") from exc
        return target

    def _export(self, manifest_path: Path) -> None:
        self.exporter.export(self.settings.export_key, str(manifest_path))
        if self.settings.debug:
            self._logger.debug(
                "$%s=%s",
                self.settings.export_key,
                manifest_path,
                extra={"stage": "export"},
            )


# --- pull ---------------------------------------------------------------------------


def pull(settings: Optional[CachePullSettings] = None, **kwargs) -> RunOutcome:
    """Convenience wrapper: build :class:`CachePull` and run it.

    Examples:
        >>> from BuildCache.CachePull.settings import get_settings
        >>> pull(get_settings(cache_source=""), exporter=None).status.value  # doctest: +SKIP
        'skipped'
    """

    return CachePull(settings or CachePullSettings(), **kwargs).run()
