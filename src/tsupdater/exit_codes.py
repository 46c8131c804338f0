"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes, one per failing stage."""

    OK = 0
    VALIDATION = 2
    PARSE = 3
    FETCH = 4
    EXTRACT = 5
    SWAP = 6
    IRRECOVERABLE = 7
