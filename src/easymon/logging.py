"""Timestamped terminal/file logging with structured operation records.

Every human-readable line is prefixed with a local ``[YYYY-mm-dd HH:MM:SS]``
timestamp and written both to the terminal and to the configured log file.
Each :meth:`StructuredLogger.operation` scope additionally appends one JSON
record to ``<log file>.operations.jsonl`` describing its steps and outcome.

The log file is only opened once :meth:`StructuredLogger.attach` is called.
Lines emitted earlier are buffered in memory, which lets the CLI run its
preflight checks before touching the filesystem. If the log file cannot be
written the logger disables file output and keeps printing to the terminal.
"""
from __future__ import annotations

import json
import time
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from rich.console import Console

_LEVEL_STYLES = {
    "info": None,
    "warning": "yellow",
    "error": "bold red",
}


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result of one logged operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise an empty scope for *command*."""
        self._logger = logger
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self.started_at = logger.now()
        self._started = time.monotonic()

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a single step; the detail only goes to the log file."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)
        self._logger.debug(f"[{self.command}] {name}: {status}" + (f" ({detail})" if detail else ""))

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful."""
        self._finish("success", message, changed=changed, backups=backups, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish(
            "warning",
            message,
            warnings=list(warnings or [message]),
            errors=list(errors or []),
            changed=changed,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed."""
        self._finish(
            "error",
            message,
            errors=list(errors) if errors is not None else [message],
            rc=rc,
            context=context,
        )

    def _finish(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
        rc: int | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
            "backups": [str(item) for item in backups or []],
            "context": _sanitize(dict(context or {})),
        }
        if rc is not None:
            result["rc"] = rc
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON-serialisable record for this operation."""
        return {
            "timestamp": self.started_at.isoformat(timespec="seconds"),
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": self.steps,
            "result": self.result,
            "duration_ms": int((time.monotonic() - self._started) * 1000),
        }


class StructuredLogger:
    """Duplicate timestamped lines to the terminal and a log file."""

    def __init__(
        self,
        log_file: Path | None,
        *,
        console: Console | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Create a logger that will write to *log_file* once attached."""
        self.log_file = log_file.expanduser() if log_file is not None else None
        self.console = console or Console(highlight=False, soft_wrap=True)
        self._clock = clock or datetime.now
        self._enabled = self.log_file is not None
        self._attached = False
        self._pending: list[tuple[Path, str]] = []
        self._operations_log_path = (
            self.log_file.with_name(f"{self.log_file.name}.operations.jsonl")
            if self.log_file is not None
            else None
        )

    def now(self) -> datetime:
        """Return the current time from the injected clock."""
        return self._clock()

    @property
    def attached(self) -> bool:
        """Return ``True`` once buffered output has been flushed to disk."""
        return self._attached

    def attach(self) -> None:
        """Create the log file directory and flush buffered lines."""
        if self._attached:
            return
        self._attached = True
        if not self._enabled or self.log_file is None:
            self._pending.clear()
            return
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._disable(f"cannot create {self.log_file.parent}: {exc}")
            return
        pending, self._pending = self._pending, []
        for path, line in pending:
            self._append(path, line)

    # Human readable output -----------------------------------------
    def info(self, message: str) -> None:
        """Log *message* to the terminal and log file."""
        self._emit("info", message)

    def warning(self, message: str) -> None:
        """Log a warning."""
        self._emit("warning", f"WARNING: {message}")

    def error(self, message: str) -> None:
        """Log an error."""
        self._emit("error", message)

    def debug(self, message: str) -> None:
        """Write *message* to the log file only."""
        self._write(self.log_file, self._stamp(message))

    # Structured operations -----------------------------------------
    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist its record on exit."""
        scope = OperationScope(self, command, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None or scope.result.get("status") != "error":
                scope.error(str(exc) or exc.__class__.__name__)
            raise
        finally:
            if scope.result is None:
                scope.success(f"{command} completed.")
            self._write(
                self._operations_log_path,
                json.dumps(scope.to_record(), sort_keys=False),
            )

    # ------------------------------------------------------------------
    def _stamp(self, message: str) -> str:
        return f"[{self.now():%Y-%m-%d %H:%M:%S}] {message}"

    def _emit(self, level: str, message: str) -> None:
        line = self._stamp(message)
        self.console.print(
            line,
            style=_LEVEL_STYLES[level],
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
        self._write(self.log_file, line)

    def _write(self, path: Path | None, line: str) -> None:
        if not self._enabled or path is None:
            return
        if not self._attached:
            self._pending.append((path, line))
            return
        self._append(path, line)

    def _append(self, path: Path, line: str) -> None:
        if not self._enabled:
            return
        try:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            self._disable(f"cannot write {path}: {exc}")

    def _disable(self, reason: str) -> None:
        self._enabled = False
        self._pending.clear()
        self.console.print(
            self._stamp(f"WARNING: file logging disabled ({reason})"),
            style="yellow",
            markup=False,
            highlight=False,
            soft_wrap=True,
        )


__all__ = ["OperationScope", "StructuredLogger"]
