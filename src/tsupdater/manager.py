"""Update orchestration: check, download, extract and switch releases."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .extractor import ArchiveExtractor
from .mirror import MirrorClient
from .swap import SwapStrategy, SymlinkTransition, select_strategy
from .target import PlatformTarget
from .versions import (
    ReleaseSet,
    Version,
    latest,
    parse_remote_listing,
    read_installed_version,
)

LOGGER = logging.getLogger(__name__)


class UpdateState(str, Enum):
    """States of a single update run."""

    IDLE = "idle"
    CHECKING = "checking"
    UP_TO_DATE = "up-to-date"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    SWAPPING = "swapping"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[UpdateState, frozenset[UpdateState]] = {
    UpdateState.IDLE: frozenset({UpdateState.CHECKING}),
    UpdateState.CHECKING: frozenset({UpdateState.UP_TO_DATE, UpdateState.DOWNLOADING}),
    UpdateState.DOWNLOADING: frozenset({UpdateState.EXTRACTING}),
    UpdateState.EXTRACTING: frozenset({UpdateState.SWAPPING}),
    UpdateState.SWAPPING: frozenset({UpdateState.DONE}),
    UpdateState.UP_TO_DATE: frozenset(),
    UpdateState.DONE: frozenset(),
    UpdateState.FAILED: frozenset(),
}


@dataclass(slots=True)
class UpdateCheck:
    """Installed and published versions observed by a check."""

    installed: Version
    releases: ReleaseSet
    latest: Version | None

    @property
    def update_available(self) -> bool:
        """Return True only when a strictly newer release is published."""
        return self.latest is not None and self.latest > self.installed


@dataclass(slots=True)
class UpdateResult:
    """Outcome of :meth:`InstallationManager.run`."""

    state: UpdateState
    installed: Version
    latest: Version | None
    release_dir: Path | None = None
    transition: SymlinkTransition | None = None
    history: list[UpdateState] = field(default_factory=list)

    @property
    def updated(self) -> bool:
        """Return whether the active symlink was switched."""
        return self.state is UpdateState.DONE


class InstallationManager:
    """Drive one update run through the check/download/extract/swap pipeline."""

    def __init__(
        self,
        *,
        symlink_path: Path,
        releases_path: Path,
        mirror_url: str,
        target: PlatformTarget,
        client: MirrorClient | None = None,
        extractor: ArchiveExtractor | None = None,
        strategy: SwapStrategy | None = None,
        clock: Callable[[], float] = time.time,
        on_state: Callable[[UpdateState], None] | None = None,
    ) -> None:
        """Wire the manager to its collaborators; the platform tuple is fixed here."""
        self.symlink_path = symlink_path.expanduser()
        self.releases_path = releases_path.expanduser()
        self.mirror_url = mirror_url
        self.target = target
        self.client = client or MirrorClient()
        self.extractor = extractor or ArchiveExtractor()
        self.strategy = strategy or select_strategy("auto")
        self.clock = clock
        self.on_state = on_state
        self.state = UpdateState.IDLE
        self.history: list[UpdateState] = [UpdateState.IDLE]

    # State machine ------------------------------------------------------
    def _enter(self, state: UpdateState) -> None:
        if state is not UpdateState.FAILED and state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal state transition {self.state.value} -> {state.value}")
        LOGGER.debug("State %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)
        if self.on_state is not None:
            self.on_state(state)

    def release_dir(self, version: Version) -> Path:
        """Return the directory a release is extracted into."""
        return self.releases_path / str(version)

    # Public API ---------------------------------------------------------
    def check(self) -> UpdateCheck:
        """Compare the installed release with the mirror without changing anything."""
        installed = read_installed_version(self.symlink_path)
        listing = self.client.fetch_listing(self.mirror_url)
        releases = parse_remote_listing(listing)
        newest = latest(releases)
        LOGGER.info(
            "Installed %s, latest published %s (%d releases listed)",
            installed,
            newest if newest is not None else "none",
            len(releases),
        )
        return UpdateCheck(installed=installed, releases=releases, latest=newest)

    def run(self) -> UpdateResult:
        """Install the newest release when it is strictly newer than the active one."""
        if self.state is not UpdateState.IDLE:
            raise RuntimeError("InstallationManager instances run only once.")
        try:
            return self._run()
        except Exception:
            self._enter(UpdateState.FAILED)
            raise

    def _run(self) -> UpdateResult:
        self._enter(UpdateState.CHECKING)
        check = self.check()

        if not check.update_available or check.latest is None:
            self._enter(UpdateState.UP_TO_DATE)
            return UpdateResult(
                state=self.state,
                installed=check.installed,
                latest=check.latest,
                history=list(self.history),
            )

        newest = check.latest
        LOGGER.info("Update available: %s -> %s", check.installed, newest)

        self._enter(UpdateState.DOWNLOADING)
        archive = self.client.fetch_archive(self.mirror_url, newest, self.target)

        self._enter(UpdateState.EXTRACTING)
        destination = self.release_dir(newest)
        with archive:
            self.extractor.extract(archive, destination, self.target.archive_type)

        self._enter(UpdateState.SWAPPING)
        transition = SymlinkTransition.plan(
            self.symlink_path,
            destination.resolve(),
            int(self.clock()),
        )
        self.strategy.swap(transition)
        LOGGER.info(
            "Switched %s to %s (previous link kept as %s)",
            self.symlink_path,
            transition.new_target,
            transition.backup_path,
        )

        self._enter(UpdateState.DONE)
        return UpdateResult(
            state=self.state,
            installed=check.installed,
            latest=newest,
            release_dir=destination,
            transition=transition,
            history=list(self.history),
        )


__all__ = [
    "InstallationManager",
    "UpdateCheck",
    "UpdateResult",
    "UpdateState",
]
