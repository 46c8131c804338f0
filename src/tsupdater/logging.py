"""Structured JSON-lines logging of CLI operations.

Every CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects the steps the command performed and the final result, then appends a
single JSON record to ``<logs_dir>/operations.jsonl``. Logging never breaks a
command: when the directory cannot be created or a write fails the logger
disables itself and the command carries on.
"""
from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG = "operations.jsonl"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    """Return a JSON-safe rendition of *value*."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the outcome of a single CLI operation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start tracking *command* with its arguments and target."""
        self.op_id = f"op-{datetime.now(tz=UTC):%Y%m%dT%H%M%SZ}-{secrets.token_hex(4)}"
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.monotonic()
        self._started_at = _now_iso()

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a named step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as succeeded."""
        self._finish("success", message, changed=changed, rc=0, context=context)

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._finish(
            "error",
            message,
            changed=0,
            rc=rc,
            errors=list(errors) if errors else [message],
            context=context,
        )

    def _finish(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        rc: int,
        errors: list[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "rc": rc,
        }
        if errors:
            result["errors"] = errors
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON record describing this operation."""
        result = self.result or {
            "status": "error",
            "message": "Operation ended without reporting a result.",
            "changed": 0,
            "rc": 1,
        }
        return {
            "op_id": self.op_id,
            "command": self.command,
            "started_at": self._started_at,
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": self.steps,
            "result": result,
        }


class StructuredLogger:
    """Append operation records to ``operations.jsonl`` under *log_dir*."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*; disable logging when it is unavailable."""
        self.log_dir = log_dir.expanduser()
        self._operations_log_path = self.log_dir / OPERATIONS_LOG
        self._enabled = True
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Structured logging disabled: cannot create %s (%s)", self.log_dir, exc)
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return whether records are still being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Track *command* and write its record when the block exits."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"Unhandled {type(exc).__name__}: {exc}")
            raise
        finally:
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            LOGGER.debug("Structured logging disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
