"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from fakes import Installation


@pytest.fixture
def installation(tmp_path: Path) -> Installation:
    """Provide ``teamspeak -> releases/3.13.7`` with a server binary inside."""
    releases = tmp_path / "releases"
    current = releases / "3.13.7"
    current.mkdir(parents=True)
    (current / "ts3server").write_text("old server", encoding="utf-8")
    symlink = tmp_path / "teamspeak"
    symlink.symlink_to(current, target_is_directory=True)
    return Installation(releases=releases, symlink=symlink, current=current)


def snapshot_tree(root: Path) -> list[tuple[str, str]]:
    """Describe every entry under *root*, including symlink targets."""
    entries: list[tuple[str, str]] = []
    for path in sorted(root.rglob("*")):
        relative = str(path.relative_to(root))
        if path.is_symlink():
            entries.append((relative, f"link:{os.readlink(path)}"))
        elif path.is_dir():
            entries.append((relative, "dir"))
        else:
            entries.append((relative, path.read_text(encoding="utf-8", errors="replace")))
    return entries


@pytest.fixture
def tree_snapshot() -> Callable[[Path], list[tuple[str, str]]]:
    """Expose :func:`snapshot_tree` to tests."""
    return snapshot_tree
