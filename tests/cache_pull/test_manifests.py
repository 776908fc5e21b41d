# === NAVMAP v1 ===
# {
#   "module": "tests.cache_pull.test_manifests",
#   "purpose": "Locating and decoding cache manifests in archives and extracted roots.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Locating and decoding cache manifests in archives and extracted roots."""

from __future__ import annotations

import json
import tarfile
from pathlib import Path

import pytest

from BuildCache.CachePull.errors import ArchiveFormatError, ManifestError, ManifestNotFoundError
from BuildCache.CachePull.manifests import ManifestReader, normalize_entry_name
from BuildCache.CachePull.testing import ArchiveEntry, build_tar_archive, manifest_entry

LEGACY = {
    "fingerprint": "abc123",
    "cache_contents": [
        {"destination_path": "/home/ci/.gradle", "relative_path_in_archive": "gradle"},
        {"destination_path": "/home/ci/.m2", "relative_path_in_archive": "m2"},
    ],
}


@pytest.mark.parametrize(
    "name", ["archive_info.json", "/tmp/archive_info.json", "./archive_info.json", "tmp/archive_info.json"]
)
def test_simple_manifest_found_under_any_recorded_name(name: str, tmp_path: Path) -> None:
    archive = build_tar_archive(
        tmp_path / "cache.tar",
        [("/home/ci/File.txt", b"x"), manifest_entry({"stack_id": "linux-20"}, name=name)],
    )

    located = ManifestReader().read_from_archive(archive)

    assert located.manifest.stack_id == "linux-20"
    assert located.manifest.cache_contents is None
    assert located.entry_name == name


def test_legacy_manifest_keeps_item_order(tmp_path: Path) -> None:
    archive = build_tar_archive(
        tmp_path / "cache.tar.gz",
        [manifest_entry(LEGACY, name="./cache-info.json")],
        gzip=True,
    )

    manifest = ManifestReader().read_from_archive(archive).manifest

    assert manifest.has_placement_map
    assert [item.relative_path_in_archive for item in manifest.cache_contents] == ["gradle", "m2"]
    assert manifest.fingerprint == "abc123"
    assert manifest.stack_id is None


def test_manifest_is_searched_through_the_whole_archive(tmp_path: Path) -> None:
    entries = [(f"dir/file-{index}.txt", b"payload") for index in range(50)]
    entries.append(manifest_entry({"stack_id": "last"}))
    archive = build_tar_archive(tmp_path / "cache.tar", entries)

    assert ManifestReader().read_from_archive(archive).manifest.stack_id == "last"


def test_directory_named_like_manifest_is_ignored(tmp_path: Path) -> None:
    archive = build_tar_archive(
        tmp_path / "cache.tar",
        [ArchiveEntry("archive_info.json", kind="dir"), ("File.txt", b"x")],
    )

    with pytest.raises(ManifestNotFoundError):
        ManifestReader().read_from_archive(archive)


def test_missing_manifest_is_reported(tmp_path: Path) -> None:
    archive = build_tar_archive(tmp_path / "cache.tar", [("File.txt", b"x")])

    with pytest.raises(ManifestNotFoundError):
        ManifestReader().read_from_archive(archive)


def test_empty_archive_has_no_manifest(tmp_path: Path) -> None:
    archive = build_tar_archive(tmp_path / "cache.tar", [])

    with pytest.raises(ManifestNotFoundError):
        ManifestReader().read_from_archive(archive)


def test_invalid_json_is_manifest_error(tmp_path: Path) -> None:
    archive = build_tar_archive(tmp_path / "cache.tar", [("archive_info.json", b"{not json")])

    with pytest.raises(ManifestError, match="JSON"):
        ManifestReader().read_from_archive(archive)


def test_empty_cache_contents_is_rejected(tmp_path: Path) -> None:
    archive = build_tar_archive(
        tmp_path / "cache.tar", [manifest_entry({"cache_contents": []}, name="cache-info.json")]
    )

    with pytest.raises(ManifestError, match="cache_contents"):
        ManifestReader().read_from_archive(archive)


def test_read_from_root(tmp_path: Path) -> None:
    (tmp_path / "cache-info.json").write_text(json.dumps(LEGACY), encoding="utf-8")

    located = ManifestReader().read_from_root(tmp_path)

    assert located.path == tmp_path / "cache-info.json"
    assert len(located.manifest.cache_contents) == 2


def test_read_from_root_finds_nested_tmp_name(tmp_path: Path) -> None:
    (tmp_path / "tmp").mkdir()
    (tmp_path / "tmp" / "archive_info.json").write_text('{"stack_id": "s"}', encoding="utf-8")

    located = ManifestReader().read_from_root(tmp_path)

    assert located.entry_name == "tmp/archive_info.json"
    assert located.manifest.stack_id == "s"


def test_read_from_root_without_manifest(tmp_path: Path) -> None:
    with pytest.raises(ManifestNotFoundError):
        ManifestReader().read_from_root(tmp_path)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("/tmp/a.json", "tmp/a.json"), ("./a.json", "a.json"), ("a.json", "a.json"), ("././b", "b")],
)
def test_normalize_entry_name(raw: str, expected: str) -> None:
    assert normalize_entry_name(raw) == expected


def test_manifest_cut_short_is_archive_format_error(tmp_path: Path) -> None:
    archive = build_tar_archive(
        tmp_path / "cache.tar", [manifest_entry({"fingerprint": "a" * 8000})]
    )
    archive.write_bytes(archive.read_bytes()[: tarfile.BLOCKSIZE + 1000])

    with pytest.raises(ArchiveFormatError):
        ManifestReader().read_from_archive(archive)
