"""Structured operation logging for leonctl.

Every CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects the steps taken and the final result, then appends one JSON object
per operation to ``<logs_dir>/operations.jsonl``. Human readable messages are
also forwarded to the standard :mod:`logging` hierarchy under ``leonctl``.

Logging must never break a command: if the log directory cannot be created or
a write fails, the logger disables itself and carries on silently.
"""
from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

LOGGER = logging.getLogger("leonctl")

OPERATIONS_LOG = "operations.jsonl"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Collects steps and the outcome of a single CLI operation."""

    command: str
    args: dict[str, object] = field(default_factory=dict)
    target: dict[str, object] = field(default_factory=dict)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None
    started: float = field(default_factory=time.monotonic)

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)
        LOGGER.debug("%s: step %s -> %s %s", self.command, name, status, detail or "")

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._finish("success", message, changed=changed, warnings=warnings, context=context)
        LOGGER.info("%s: %s", self.command, message)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        rc: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            rc=rc,
            context=context,
        )
        LOGGER.warning("%s: %s", self.command, message)

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        error_list = list(errors) if errors is not None else [message]
        self._finish("error", message, errors=error_list, rc=rc, context=context)
        LOGGER.error("%s: %s", self.command, message)

    def _finish(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        rc: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
            "rc": rc,
            "context": _sanitize(dict(context or {})),
            "duration_ms": int((time.monotonic() - self.started) * 1000),
        }

    def to_record(self) -> dict[str, object]:
        """Return the JSON-safe record written to the operations log."""
        return {
            "timestamp": _now_iso(),
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": list(self.steps),
            "result": self.result,
        }


class StructuredLogger:
    """Append operation records to a JSON-lines log file."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*; disable logging when it cannot be created."""
        self._log_dir = log_dir.expanduser()
        self._operations_log_path = self._log_dir / OPERATIONS_LOG
        self._enabled = True
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Disabling operation log, cannot create %s: %s", self._log_dir, exc)
            self._enabled = False

    @property
    def log_dir(self) -> Path:
        """Return the directory holding log files."""
        return self._log_dir

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it when the block exits."""
        scope = OperationScope(command=command, args=dict(args or {}), target=dict(target or {}))
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"Unhandled error: {exc}", errors=[repr(exc)])
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.", changed=0)
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
        except OSError as exc:
            LOGGER.debug("Disabling operation log after write failure: %s", exc)
            self._enabled = False


__all__ = ["LOGGER", "OperationScope", "StructuredLogger"]
