"""Strategies for repointing the active symlink at a new release.

Both strategies leave ``<symlink>.<unix_timestamp>`` behind as a backup link to
the previous release and guarantee that the active symlink keeps resolving to
*some* release directory:

``AtomicSwap``
    Copies the current link to the backup name, then renames a freshly created
    temporary link over the active one. The active path never disappears.

``RenameSwap``
    Renames the active link to the backup name, then creates the new link. If
    creation fails the original link is re-created before the error is raised.
    Used where replacing an existing link by rename is not available.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import (
    IrrecoverableSwapState,
    SymlinkBackupFailed,
    SymlinkCreateFailed,
)

LOGGER = logging.getLogger(__name__)

ALLOWED_SWAP_STRATEGIES = {"auto", "atomic", "rename"}


@dataclass(frozen=True, slots=True)
class SymlinkTransition:
    """Ephemeral description of one symlink swap."""

    symlink_path: Path
    backup_path: Path
    old_target: str
    new_target: Path
    timestamp: int

    @classmethod
    def plan(cls, symlink_path: Path, new_target: Path, timestamp: int) -> SymlinkTransition:
        """Read the current link and choose a backup name that does not exist yet."""
        try:
            old_target = os.readlink(symlink_path)
        except OSError as exc:
            raise SymlinkBackupFailed(f"Cannot read symlink {symlink_path}: {exc}") from exc
        return cls(
            symlink_path=symlink_path,
            backup_path=_free_backup_path(symlink_path, timestamp),
            old_target=old_target,
            new_target=new_target,
            timestamp=timestamp,
        )


def _free_backup_path(symlink_path: Path, timestamp: int) -> Path:
    candidate = symlink_path.with_name(f"{symlink_path.name}.{timestamp}")
    counter = 1
    while candidate.exists() or candidate.is_symlink():
        candidate = symlink_path.with_name(f"{symlink_path.name}.{timestamp}.{counter}")
        counter += 1
    return candidate


class SwapStrategy(Protocol):
    """Capability that switches the active symlink according to a transition."""

    name: str

    def swap(self, transition: SymlinkTransition) -> None:
        """Apply *transition* or raise a :class:`~tsupdater.errors.SwapError`."""


class AtomicSwap:
    """Replace the active link with a single ``rename(2)``."""

    name = "atomic"

    def swap(self, transition: SymlinkTransition) -> None:
        """Back up the current link, then rename a temporary link over it."""
        link = transition.symlink_path
        temp_link = link.with_name(f".{link.name}.tsupdater-{transition.timestamp}.tmp")

        try:
            os.symlink(transition.old_target, transition.backup_path, target_is_directory=True)
        except OSError as exc:
            raise SymlinkBackupFailed(
                f"Cannot create backup link {transition.backup_path}: {exc}"
            ) from exc

        try:
            if temp_link.is_symlink():
                temp_link.unlink()
            os.symlink(transition.new_target, temp_link, target_is_directory=True)
            os.replace(temp_link, link)
        except OSError as exc:
            _discard(temp_link)
            _discard(transition.backup_path)
            raise SymlinkCreateFailed(
                f"Cannot point {link} at {transition.new_target}: {exc}; "
                f"{link} still points at {transition.old_target}."
            ) from exc
        LOGGER.debug("Atomically swapped %s -> %s", link, transition.new_target)


class RenameSwap:
    """Rename the active link away, then create the new one."""

    name = "rename"

    def swap(self, transition: SymlinkTransition) -> None:
        """Rename then create, re-creating the original link on failure."""
        link = transition.symlink_path
        try:
            os.rename(link, transition.backup_path)
        except OSError as exc:
            raise SymlinkBackupFailed(
                f"Cannot rename {link} to {transition.backup_path}: {exc}"
            ) from exc

        try:
            os.symlink(transition.new_target, link, target_is_directory=True)
        except OSError as exc:
            LOGGER.warning("Creating %s failed (%s); restoring previous link", link, exc)
            self._restore(transition, exc)
            raise SymlinkCreateFailed(
                f"Cannot point {link} at {transition.new_target}: {exc}; "
                f"restored {link} -> {transition.old_target}."
            ) from exc
        LOGGER.debug("Swapped %s -> %s", link, transition.new_target)

    def _restore(self, transition: SymlinkTransition, cause: OSError) -> None:
        link = transition.symlink_path
        try:
            os.symlink(transition.old_target, link, target_is_directory=True)
        except OSError as exc:
            raise IrrecoverableSwapState(
                f"Failed to create {link} ({cause}) and failed to restore it ({exc}); "
                f"the previous link is preserved at {transition.backup_path} -> "
                f"{transition.old_target}."
            ) from exc


def _discard(path: Path) -> None:
    try:
        if path.is_symlink():
            path.unlink()
    except OSError as exc:
        LOGGER.warning("Could not remove %s: %s", path, exc)


def select_strategy(name: str = "auto") -> SwapStrategy:
    """Return the strategy called *name* (``auto`` picks per platform)."""
    normalized = name.strip().lower()
    if normalized == "auto":
        normalized = "atomic" if os.name == "posix" else "rename"
    if normalized == "atomic":
        return AtomicSwap()
    if normalized == "rename":
        return RenameSwap()
    allowed = ", ".join(sorted(ALLOWED_SWAP_STRATEGIES))
    raise ValueError(f"Unsupported swap strategy '{name}'. Allowed: {allowed}.")


__all__ = [
    "ALLOWED_SWAP_STRATEGIES",
    "AtomicSwap",
    "RenameSwap",
    "SwapStrategy",
    "SymlinkTransition",
    "select_strategy",
]
