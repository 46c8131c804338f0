"""Version parsing and comparison for TeamSpeak release directories."""
from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import total_ordering
from pathlib import Path

from packaging.version import InvalidVersion
from packaging.version import Version as PackagingVersion

from .errors import MalformedVersionDirectory, SymlinkUnresolvable

LOGGER = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)$", re.ASCII)

ReleaseSet = frozenset["Version"]


@total_ordering
@dataclass(frozen=True, slots=True)
class Version:
    """A ``major.minor.patch`` release number ordered numerically."""

    major: int
    minor: int
    patch: int

    def __post_init__(self) -> None:
        """Reject negative components."""
        if min(self.major, self.minor, self.patch) < 0:
            raise ValueError(f"Version components must be non-negative: {self.as_tuple()}")

    @classmethod
    def parse(cls, text: str) -> Version | None:
        """Return the version named by *text*, or ``None`` when it is not ``x.y.z``."""
        if VERSION_PATTERN.fullmatch(text) is None:
            return None
        try:
            parsed = PackagingVersion(text)
        except InvalidVersion:
            return None
        major, minor, patch = parsed.release
        return cls(major, minor, patch)

    @property
    def packaging_version(self) -> PackagingVersion:
        """Return the equivalent :class:`packaging.version.Version`."""
        return PackagingVersion(str(self))

    def as_tuple(self) -> tuple[int, int, int]:
        """Return the ``(major, minor, patch)`` triple."""
        return (self.major, self.minor, self.patch)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.packaging_version < other.packaging_version

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True, slots=True)
class RawListing:
    """Entry names read from a mirror index, in document order."""

    entries: tuple[str, ...]
    source: str = ""
    format: str = field(default="html")


def parse_local(symlink_target_path: Path | str) -> Version:
    """Return the version named by the final segment of *symlink_target_path*."""
    path = Path(symlink_target_path)
    version = Version.parse(path.name)
    if version is None:
        raise MalformedVersionDirectory(path)
    return version


def read_installed_version(symlink_path: Path) -> Version:
    """Resolve the active symlink and parse the release directory it points at."""
    if not symlink_path.is_symlink():
        reason = "path does not exist" if not symlink_path.exists() else "not a symlink"
        raise SymlinkUnresolvable(symlink_path, reason)
    try:
        target = symlink_path.resolve(strict=True)
    except (OSError, RuntimeError) as exc:
        raise SymlinkUnresolvable(
            symlink_path, f"target {os.readlink(symlink_path)} is missing ({exc})"
        ) from exc
    if not target.is_dir():
        raise SymlinkUnresolvable(symlink_path, f"target {target} is not a directory")

    version = parse_local(target)
    LOGGER.debug("Installed release %s resolved from %s -> %s", version, symlink_path, target)
    return version


def parse_remote_listing(raw_listing: RawListing | Iterable[str]) -> ReleaseSet:
    """Return every version named in *raw_listing*, ignoring other entries."""
    entries = raw_listing.entries if isinstance(raw_listing, RawListing) else raw_listing
    versions: set[Version] = set()
    for entry in entries:
        candidate = entry.strip().rstrip("/")
        version = Version.parse(candidate)
        if version is not None:
            versions.add(version)
    return frozenset(versions)


def latest(release_set: Iterable[Version]) -> Version | None:
    """Return the highest version in *release_set*, or ``None`` when empty."""
    return max(release_set, default=None)


__all__ = [
    "RawListing",
    "ReleaseSet",
    "VERSION_PATTERN",
    "Version",
    "latest",
    "parse_local",
    "parse_remote_listing",
    "read_installed_version",
]
