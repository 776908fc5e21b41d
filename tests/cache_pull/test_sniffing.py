# === NAVMAP v1 ===
# {
#   "module": "tests.cache_pull.test_sniffing",
#   "purpose": "Classification of gzip, raw, empty and corrupt cache archives.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Classification of gzip, raw, empty and corrupt cache archives."""

from __future__ import annotations

import gzip
import io
import tarfile
from pathlib import Path

import pytest

from BuildCache.CachePull.errors import ArchiveFormatError
from BuildCache.CachePull.sniffing import Compression, FormatSniffer, open_archive, probe_archive
from BuildCache.CachePull.testing import build_tar_archive


class OneWayStream:
    """Readable without seek or tell, like a socket or pipe."""

    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)

    def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)


ENTRIES = [("archive_info.json", b'{"stack_id": "linux"}'), ("File.txt", b"cached")]


def test_gzip_archive_is_detected(tmp_path: Path) -> None:
    archive = build_tar_archive(tmp_path / "cache.tar.gz", ENTRIES, gzip=True)

    probe = probe_archive(archive)

    assert probe.compression is Compression.GZIP
    assert probe.first_entry == "archive_info.json"
    assert not probe.empty


def test_raw_archive_is_detected(tmp_path: Path) -> None:
    archive = build_tar_archive(tmp_path / "cache.tar", ENTRIES)

    probe = probe_archive(archive)

    assert probe.compression is Compression.NONE
    assert probe.first_entry == "archive_info.json"


@pytest.mark.parametrize("compressed", [False, True])
def test_all_entries_survive_sniffing_on_forward_only_stream(compressed: bool, tmp_path: Path) -> None:
    """The bytes used for sniffing are replayed, so no entry is lost."""

    archive = build_tar_archive(tmp_path / "cache", ENTRIES, gzip=compressed)
    sniffer = FormatSniffer()

    with sniffer.open(OneWayStream(archive.read_bytes())) as reader:
        seen = {}
        for member in reader:
            handle = reader.extractfile(member)
            seen[member.name] = handle.read() if handle else None

    assert seen == dict(ENTRIES)


def test_archive_without_entries_is_empty_not_error(tmp_path: Path) -> None:
    archive = build_tar_archive(tmp_path / "empty.tar", [])

    probe = probe_archive(archive)

    assert probe.empty
    assert probe.first_entry is None


def test_gzip_of_empty_archive_is_empty(tmp_path: Path) -> None:
    archive = build_tar_archive(tmp_path / "empty.tar.gz", [], gzip=True)

    probe = probe_archive(archive)

    assert probe.empty
    assert probe.compression is Compression.GZIP


def test_zero_byte_payload_is_empty(tmp_path: Path) -> None:
    archive = tmp_path / "zero.tar"
    archive.write_bytes(b"")

    with open_archive(archive) as reader:
        assert reader.probe.empty
        assert list(reader) == []


def test_garbage_payload_raises_format_error(tmp_path: Path) -> None:
    archive = tmp_path / "garbage.bin"
    archive.write_bytes(b"this is definitely not a tar archive" * 20)

    with pytest.raises(ArchiveFormatError):
        probe_archive(archive)


def test_gzip_wrapped_garbage_raises_format_error(tmp_path: Path) -> None:
    archive = tmp_path / "garbage.gz"
    archive.write_bytes(gzip.compress(b"not a tar payload" * 40))

    with pytest.raises(ArchiveFormatError):
        probe_archive(archive)


def test_sniffer_matches_tarfile_view(tmp_path: Path) -> None:
    archive = build_tar_archive(tmp_path / "cache.tar.gz", ENTRIES, gzip=True)
    with tarfile.open(archive) as expected:
        names = expected.getnames()

    with open_archive(archive) as reader:
        assert [member.name for member in reader] == names
