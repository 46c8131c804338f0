"""Extraction of downloaded server archives into release directories.

Entries are written over whatever already exists in the destination; nothing
is wiped beforehand and a failed extraction is left as-is for the next run to
overwrite. Decode failures surface as :class:`~tsupdater.errors.CorruptArchive`
and filesystem failures as :class:`~tsupdater.errors.ExtractionIOError`.
"""
from __future__ import annotations

import bz2
import logging
import os
import stat
import tarfile
import tempfile
import zipfile
import zlib
from collections.abc import Iterable
from pathlib import Path, PurePosixPath
from typing import IO

from .errors import CorruptArchive, ExtractionIOError
from .target import ArchiveType

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def common_root(names: Iterable[str]) -> str | None:
    """Return the single top-level directory shared by every entry, if any."""
    root: str | None = None
    saw_nested = False
    for name in names:
        parts = [part for part in PurePosixPath(name).parts if part not in {"", "."}]
        if not parts:
            continue
        if root is None:
            root = parts[0]
        elif parts[0] != root:
            return None
        if len(parts) > 1:
            saw_nested = True
    return root if saw_nested else None


def _strip(name: str, root: str | None) -> str:
    parts = [part for part in PurePosixPath(name).parts if part not in {"", "."}]
    if root is not None and parts and parts[0] == root:
        parts = parts[1:]
    return "/".join(parts)


class ArchiveExtractor:
    """Unpack tar.bz2 and zip archives into a destination directory."""

    def __init__(self, *, strip_root: bool = True) -> None:
        """Configure whether a shared top-level directory is stripped."""
        self.strip_root = strip_root

    def extract(
        self,
        byte_stream: IO[bytes],
        destination_directory: Path,
        archive_type: ArchiveType = ArchiveType.TAR_BZ2,
    ) -> None:
        """Extract *byte_stream* into *destination_directory*, creating it if needed."""
        try:
            destination_directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExtractionIOError(
                f"Cannot create release directory {destination_directory}: {exc}"
            ) from exc

        if archive_type is ArchiveType.ZIP:
            self._extract_zip(byte_stream, destination_directory)
        else:
            self._extract_tar_bz2(byte_stream, destination_directory)
        LOGGER.info("Extracted archive into %s", destination_directory)

    # tar.bz2 -------------------------------------------------------------
    def _extract_tar_bz2(self, byte_stream: IO[bytes], destination: Path) -> None:
        with tempfile.TemporaryFile(prefix="tsupdater-tar-") as tarball:
            _decompress_bz2(byte_stream, tarball)
            tarball.seek(0)
            try:
                with tarfile.open(fileobj=tarball, mode="r:") as archive:
                    members = archive.getmembers()
                    root = common_root(m.name for m in members) if self.strip_root else None
                    for member in members:
                        self._extract_tar_member(archive, member, root, destination)
            except (tarfile.TarError, EOFError) as exc:
                raise CorruptArchive(f"Archive is not a readable tarball: {exc}") from exc

    def _extract_tar_member(
        self,
        archive: tarfile.TarFile,
        member: tarfile.TarInfo,
        root: str | None,
        destination: Path,
    ) -> None:
        if PurePosixPath(member.name).is_absolute():
            raise CorruptArchive(f"Refusing unsafe archive member {member.name!r}.")
        name = _strip(member.name, root)
        if not name:
            return
        changes: dict[str, object] = {"name": name}
        if member.islnk():
            changes["linkname"] = _strip(member.linkname, root)
        member = member.replace(**changes, deep=False)

        target = destination / name
        if member.isfile() and target.is_symlink():
            # Never write through a stale symlink left by an older release.
            try:
                target.unlink()
            except OSError as exc:
                raise ExtractionIOError(f"Cannot replace {target}: {exc}") from exc
        try:
            archive.extract(member, path=destination, filter="data")
        except tarfile.FilterError as exc:
            raise CorruptArchive(f"Refusing unsafe archive member {member.name!r}: {exc}") from exc
        except OSError as exc:
            raise ExtractionIOError(f"Failed to write {target}: {exc}") from exc

    # zip -----------------------------------------------------------------
    def _extract_zip(self, byte_stream: IO[bytes], destination: Path) -> None:
        try:
            archive = zipfile.ZipFile(byte_stream)
        except (zipfile.BadZipFile, EOFError) as exc:
            raise CorruptArchive(f"Archive is not a readable zip file: {exc}") from exc

        with archive:
            infos = archive.infolist()
            root = common_root(info.filename for info in infos) if self.strip_root else None
            resolved_destination = destination.resolve()
            for info in infos:
                name = _strip(info.filename, root)
                if not name:
                    continue
                target = destination / name
                if not _is_within(resolved_destination, target):
                    raise CorruptArchive(f"Refusing unsafe archive member {info.filename!r}.")
                if info.is_dir():
                    _makedirs(target)
                    continue
                _makedirs(target.parent)
                self._write_zip_entry(archive, info, target)

    def _write_zip_entry(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo, target: Path) -> None:
        try:
            source = archive.open(info)
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError) as exc:
            raise CorruptArchive(f"Cannot read {info.filename!r}: {exc}") from exc

        with source:
            try:
                if target.is_symlink():
                    target.unlink()
                handle = target.open("wb")
            except OSError as exc:
                raise ExtractionIOError(f"Failed to write {target}: {exc}") from exc
            with handle:
                _copy_stream(source, handle, target, source_label=info.filename)

        mode = (info.external_attr >> 16) & 0o777
        if mode and info.create_system == 3:
            try:
                os.chmod(target, mode | stat.S_IRUSR)
            except OSError as exc:
                raise ExtractionIOError(f"Failed to set permissions on {target}: {exc}") from exc


def _decompress_bz2(source: IO[bytes], sink: IO[bytes]) -> None:
    decompressor = bz2.BZ2Decompressor()
    completed_streams = 0
    while True:
        pending = source.read(CHUNK_SIZE)
        if not pending:
            break
        while pending:
            if decompressor.eof:
                decompressor = bz2.BZ2Decompressor()
            try:
                data = decompressor.decompress(pending)
            except (OSError, EOFError, ValueError) as exc:
                if completed_streams:
                    # Trailing bytes after a complete stream are ignored, as bz2.open does.
                    return
                raise CorruptArchive(f"Archive is not a valid bzip2 stream: {exc}") from exc
            try:
                sink.write(data)
            except OSError as exc:
                raise ExtractionIOError(f"Failed to buffer decompressed archive: {exc}") from exc
            if decompressor.eof:
                completed_streams += 1
                pending = decompressor.unused_data
            else:
                pending = b""
    if not decompressor.eof:
        raise CorruptArchive("Archive ended before the bzip2 stream was complete.")


def _copy_stream(source: IO[bytes], sink: IO[bytes], target: Path, *, source_label: str) -> None:
    while True:
        try:
            chunk = source.read(CHUNK_SIZE)
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise CorruptArchive(f"Cannot decode {source_label!r}: {exc}") from exc
        if not chunk:
            return
        try:
            sink.write(chunk)
        except OSError as exc:
            raise ExtractionIOError(f"Failed to write {target}: {exc}") from exc


def _makedirs(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ExtractionIOError(f"Failed to create directory {path}: {exc}") from exc


def _is_within(root: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(root)
    except ValueError:
        return False
    return True


__all__ = ["ArchiveExtractor", "common_root"]

