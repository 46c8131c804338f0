"""Exception hierarchy for the update pipeline.

Each failure family maps to one pipeline stage and one exit code so the CLI
can report *which* stage failed without inspecting messages:

* :class:`ParseError` - the installed version could not be determined.
* :class:`FetchError` - the mirror could not be read or lacks the archive.
* :class:`ExtractError` - the downloaded archive could not be unpacked.
* :class:`SwapError` - the active symlink could not be repointed.
"""
from __future__ import annotations

from pathlib import Path

from .exit_codes import ExitCode


class UpdaterError(RuntimeError):
    """Base class for every failure surfaced by the update pipeline."""

    stage = "update"
    exit_code: int = ExitCode.VALIDATION


# Parse -------------------------------------------------------------------
class ParseError(UpdaterError):
    """Raised when the locally installed version cannot be determined."""

    stage = "parse"
    exit_code = ExitCode.PARSE


class MalformedVersionDirectory(ParseError):
    """Raised when a release directory name is not ``x.y.z``."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(
            f"Directory '{self.path.name}' ({self.path}) is not a version directory (x.y.z)."
        )


class SymlinkUnresolvable(ParseError):
    """Raised when the active symlink does not resolve to a release directory."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Symlink {self.path} is unusable: {reason}")


# Fetch -------------------------------------------------------------------
class FetchError(UpdaterError):
    """Raised when the mirror cannot provide the listing or archive."""

    stage = "fetch"
    exit_code = ExitCode.FETCH


class MirrorUnreachable(FetchError):
    """Raised on connection failures, timeouts and unexpected HTTP statuses."""


class UnexpectedListingFormat(FetchError):
    """Raised when a mirror response cannot be read as a listing at all."""


class ArchiveNotFound(FetchError):
    """Raised when no archive exists for the requested platform tuple."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"No archive published at {url}")


class DownloadIOError(FetchError):
    """Raised when the downloaded archive cannot be buffered locally."""


# Extract -----------------------------------------------------------------
class ExtractError(UpdaterError):
    """Raised when an archive cannot be extracted."""

    stage = "extract"
    exit_code = ExitCode.EXTRACT


class CorruptArchive(ExtractError):
    """Raised when the archive stream cannot be decoded."""


class ExtractionIOError(ExtractError):
    """Raised on filesystem errors while writing extracted entries."""


# Swap --------------------------------------------------------------------
class SwapError(UpdaterError):
    """Raised when the active symlink cannot be switched."""

    stage = "swap"
    exit_code = ExitCode.SWAP


class SymlinkBackupFailed(SwapError):
    """Raised when the current link cannot be preserved; nothing was changed."""


class SymlinkCreateFailed(SwapError):
    """Raised when the new link could not be created; the original was restored."""


class IrrecoverableSwapState(SwapError):
    """Raised when restoring the original link failed after a failed swap."""

    exit_code = ExitCode.IRRECOVERABLE


__all__ = [
    "ArchiveNotFound",
    "CorruptArchive",
    "DownloadIOError",
    "ExtractError",
    "ExtractionIOError",
    "FetchError",
    "IrrecoverableSwapState",
    "MalformedVersionDirectory",
    "MirrorUnreachable",
    "ParseError",
    "SwapError",
    "SymlinkBackupFailed",
    "SymlinkCreateFailed",
    "SymlinkUnresolvable",
    "UnexpectedListingFormat",
    "UpdaterError",
]
