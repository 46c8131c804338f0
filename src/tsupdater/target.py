"""Platform tuples selecting which TeamSpeak server archive to download."""
from __future__ import annotations

import platform
from dataclasses import dataclass
from enum import Enum

from .versions import Version


class TargetError(ValueError):
    """Raised when a platform tuple is unknown or cannot be deduced."""


class ArchiveType(str, Enum):
    """Archive container formats published on the mirror."""

    TAR_BZ2 = "tar.bz2"
    ZIP = "zip"

    @property
    def extension(self) -> str:
        """Return the filename extension without the leading dot."""
        return self.value


@dataclass(frozen=True, slots=True)
class PlatformTarget:
    """An ``(os, arch)`` pair identifying one archive variant."""

    os: str
    arch: str

    @property
    def token(self) -> str:
        """Return the mirror's spelling of this tuple (``linux_amd64``, ``win64``...)."""
        try:
            return _TOKENS[(self.os, self.arch)]
        except KeyError as exc:
            raise TargetError(f"Unsupported platform tuple {self.os}/{self.arch}.") from exc

    @property
    def archive_type(self) -> ArchiveType:
        """Return the archive format published for this tuple."""
        if self.os in {"mac", "windows"}:
            return ArchiveType.ZIP
        return ArchiveType.TAR_BZ2

    def archive_filename(self, version: Version) -> str:
        """Return the archive filename for *version*."""
        return f"teamspeak3-server_{self.token}-{version}.{self.archive_type.extension}"

    @classmethod
    def parse(cls, value: str) -> PlatformTarget:
        """Parse a mirror token (``linux_amd64``) or ``os/arch`` spelling."""
        normalized = value.strip().lower()
        if normalized in _BY_TOKEN:
            return _BY_TOKEN[normalized]
        for separator in ("/", "-", "_"):
            if separator in normalized:
                os_name, _, arch = normalized.partition(separator)
                candidate = cls(os_name, _ARCH_ALIASES.get(arch, arch))
                if (candidate.os, candidate.arch) in _TOKENS:
                    return candidate
        known = ", ".join(sorted(_BY_TOKEN))
        raise TargetError(f"Target tuple not recognized: {value!r}. Known tuples: {known}.")

    @classmethod
    def deduce(cls, system: str | None = None, machine: str | None = None) -> PlatformTarget:
        """Infer the tuple of the running host."""
        system_name = (system if system is not None else platform.system()).lower()
        machine_name = (machine if machine is not None else platform.machine()).lower()
        arch = _ARCH_ALIASES.get(machine_name, machine_name)

        if system_name == "darwin":
            return cls("mac", "universal")
        if system_name == "windows" and arch in {"amd64", "x86"}:
            return cls("windows", arch)
        if system_name == "linux" and arch in {"amd64", "x86"}:
            return cls("linux", arch)
        if system_name == "freebsd" and arch == "amd64":
            return cls("freebsd", arch)
        raise TargetError(
            f"Failed to deduce target tuple for {system_name}/{machine_name}; "
            "pass --target-tuple explicitly."
        )

    def __str__(self) -> str:
        return self.token


_TOKENS: dict[tuple[str, str], str] = {
    ("linux", "amd64"): "linux_amd64",
    ("linux", "x86"): "linux_x86",
    ("alpine", "amd64"): "linux_alpine",
    ("freebsd", "amd64"): "freebsd_amd64",
    ("mac", "universal"): "mac",
    ("windows", "amd64"): "win64",
    ("windows", "x86"): "win32",
}

_BY_TOKEN: dict[str, PlatformTarget] = {
    token: PlatformTarget(os_name, arch) for (os_name, arch), token in _TOKENS.items()
}

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "x64": "amd64",
    "i386": "x86",
    "i686": "x86",
    "x86_32": "x86",
}


def supported_targets() -> list[PlatformTarget]:
    """Return every tuple the mirror publishes archives for."""
    return [PlatformTarget(os_name, arch) for os_name, arch in _TOKENS]


__all__ = ["ArchiveType", "PlatformTarget", "TargetError", "supported_targets"]
