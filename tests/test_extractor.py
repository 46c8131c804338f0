"""Tests for archive extraction into release directories."""
from __future__ import annotations

import bz2
import io
import os
import tarfile
from pathlib import Path

import pytest

from fakes import build_tar_bz2, build_zip
from tsupdater.errors import CorruptArchive, ExtractError, ExtractionIOError
from tsupdater.extractor import ArchiveExtractor, common_root
from tsupdater.target import ArchiveType

SERVER_FILES = {
    "ts3server": b"#!/bin/sh\necho new\n",
    "libts3db_sqlite3.so": b"\x7fELF",
    "sql/create_sqlite/create_tables.sql": b"CREATE TABLE servers;",
}


def test_common_root_requires_single_nested_prefix() -> None:
    """Only a shared directory with nested entries counts as a root."""
    assert common_root(["top/", "top/a", "top/b/c"]) == "top"
    assert common_root(["./top/a", "top/b"]) == "top"
    assert common_root(["top/a", "other/b"]) is None
    assert common_root(["ts3server", "LICENSE"]) is None
    assert common_root([]) is None


def test_tar_bz2_strips_top_level_directory(tmp_path: Path) -> None:
    """Entries land directly in the destination without the archive's folder."""
    destination = tmp_path / "releases" / "3.13.8"

    ArchiveExtractor().extract(io.BytesIO(build_tar_bz2(SERVER_FILES)), destination)

    assert (destination / "ts3server").read_bytes() == SERVER_FILES["ts3server"]
    assert (destination / "sql" / "create_sqlite" / "create_tables.sql").is_file()
    assert not (destination / "teamspeak3-server_linux_amd64").exists()
    assert os.access(destination / "ts3server", os.X_OK)


def test_tar_bz2_without_root_keeps_layout(tmp_path: Path) -> None:
    """Archives without a shared folder are extracted as-is."""
    payload = build_tar_bz2({"ts3server": b"bin", "LICENSE": b"text"}, root=None)

    ArchiveExtractor().extract(io.BytesIO(payload), tmp_path / "out")

    assert sorted(path.name for path in (tmp_path / "out").iterdir()) == ["LICENSE", "ts3server"]


def test_strip_root_can_be_disabled(tmp_path: Path) -> None:
    """With stripping disabled the archive folder is preserved."""
    ArchiveExtractor(strip_root=False).extract(io.BytesIO(build_tar_bz2(SERVER_FILES)), tmp_path)

    assert (tmp_path / "teamspeak3-server_linux_amd64" / "ts3server").is_file()


def test_extract_overwrites_in_place(tmp_path: Path) -> None:
    """Existing files are overwritten and unrelated files are kept."""
    destination = tmp_path / "3.13.8"
    destination.mkdir()
    (destination / "ts3server").write_text("partial from a failed run", encoding="utf-8")
    (destination / "ts3server.ini").write_text("licensepath=/srv", encoding="utf-8")

    ArchiveExtractor().extract(io.BytesIO(build_tar_bz2(SERVER_FILES)), destination)

    assert (destination / "ts3server").read_bytes() == SERVER_FILES["ts3server"]
    assert (destination / "ts3server.ini").read_text(encoding="utf-8") == "licensepath=/srv"


def test_extract_replaces_stale_symlink_instead_of_following_it(tmp_path: Path) -> None:
    """A symlink left at a file's path is replaced, not written through."""
    outside = tmp_path / "outside.txt"
    outside.write_text("untouched", encoding="utf-8")
    destination = tmp_path / "3.13.8"
    destination.mkdir()
    (destination / "ts3server").symlink_to(outside)

    ArchiveExtractor().extract(io.BytesIO(build_tar_bz2(SERVER_FILES)), destination)

    assert not (destination / "ts3server").is_symlink()
    assert outside.read_text(encoding="utf-8") == "untouched"


def test_multistream_bzip2_is_read_completely(tmp_path: Path) -> None:
    """Concatenated bzip2 streams decode as one tarball."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for name, data in SERVER_FILES.items():
            info = tarfile.TarInfo(f"teamspeak3-server_linux_amd64/{name}")
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    raw = buffer.getvalue()
    middle = len(raw) // 2
    payload = bz2.compress(raw[:middle]) + bz2.compress(raw[middle:])

    ArchiveExtractor().extract(io.BytesIO(payload), tmp_path / "out")

    assert (tmp_path / "out" / "libts3db_sqlite3.so").read_bytes() == b"\x7fELF"


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"this is not an archive",
        build_tar_bz2(SERVER_FILES)[:40],
        bz2.compress(b"plain text, not a tarball" * 40),
    ],
    ids=["empty", "garbage", "truncated", "not-a-tarball"],
)
def test_corrupt_tar_bz2_raises(tmp_path: Path, payload: bytes) -> None:
    """Undecodable input raises CorruptArchive."""
    with pytest.raises(CorruptArchive) as excinfo:
        ArchiveExtractor().extract(io.BytesIO(payload), tmp_path / "out")

    assert isinstance(excinfo.value, ExtractError)


def test_tar_member_escaping_destination_is_refused(tmp_path: Path) -> None:
    """Members resolving outside the destination are rejected."""
    payload = build_tar_bz2({"ts3server": b"bin", "../../escape.txt": b"nope"})

    with pytest.raises(CorruptArchive, match="unsafe"):
        ArchiveExtractor().extract(io.BytesIO(payload), tmp_path / "releases" / "3.13.8")

    assert not (tmp_path / "escape.txt").exists()


def test_unwritable_destination_raises_io_error(tmp_path: Path) -> None:
    """Filesystem failures surface as ExtractionIOError."""
    blocker = tmp_path / "releases"
    blocker.write_text("not a directory", encoding="utf-8")

    with pytest.raises(ExtractionIOError):
        ArchiveExtractor().extract(io.BytesIO(build_tar_bz2(SERVER_FILES)), blocker / "3.13.8")


def test_zip_strips_top_level_directory(tmp_path: Path) -> None:
    """Zip archives are unpacked with the shared folder removed."""
    destination = tmp_path / "3.13.8"

    ArchiveExtractor().extract(io.BytesIO(build_zip(SERVER_FILES)), destination, ArchiveType.ZIP)

    assert (destination / "ts3server").read_bytes() == SERVER_FILES["ts3server"]
    assert (destination / "sql" / "create_sqlite" / "create_tables.sql").is_file()


def test_zip_overwrites_in_place(tmp_path: Path) -> None:
    """Zip extraction overwrites existing files as well."""
    destination = tmp_path / "3.13.8"
    destination.mkdir()
    (destination / "ts3server").write_text("old", encoding="utf-8")

    ArchiveExtractor().extract(io.BytesIO(build_zip(SERVER_FILES)), destination, ArchiveType.ZIP)

    assert (destination / "ts3server").read_bytes() == SERVER_FILES["ts3server"]


def test_corrupt_zip_raises(tmp_path: Path) -> None:
    """Non-zip input raises CorruptArchive."""
    with pytest.raises(CorruptArchive):
        ArchiveExtractor().extract(io.BytesIO(b"PK but not really"), tmp_path, ArchiveType.ZIP)


def test_zip_member_escaping_destination_is_refused(tmp_path: Path) -> None:
    """Zip entries climbing out of the destination are rejected."""
    payload = build_zip({"ts3server": b"bin", "../../escape.txt": b"nope"})

    with pytest.raises(CorruptArchive, match="unsafe"):
        ArchiveExtractor().extract(io.BytesIO(payload), tmp_path / "releases" / "3.13.8", ArchiveType.ZIP)

    assert not (tmp_path / "escape.txt").exists()


def test_absolute_tar_member_is_refused(tmp_path: Path) -> None:
    """Absolute member names are rejected rather than re-rooted."""
    payload = build_tar_bz2({"ts3server": b"bin", "/etc/cron.d/evil": b"nope"}, root=None)

    with pytest.raises(CorruptArchive, match="unsafe"):
        ArchiveExtractor().extract(io.BytesIO(payload), tmp_path / "out")
