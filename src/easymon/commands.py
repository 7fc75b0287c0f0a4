"""Subprocess runner shared by every provider that shells out."""
from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import ProvisionError

if TYPE_CHECKING:
    from .logging import StructuredLogger


class CommandError(ProvisionError):
    """Raised when a required external command fails."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        returncode: int | None = None,
        output: str = "",
    ) -> None:
        """Record the failing argv, exit status and captured output."""
        super().__init__(message)
        self.command = list(command)
        self.returncode = returncode
        self.output = output


@dataclass(slots=True)
class CommandRunner:
    """Run external commands, raising :class:`CommandError` on failure."""

    logger: StructuredLogger | None = None

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        input: str | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        error_cls: type[CommandError] = CommandError,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *args* and return the completed process."""
        command = [str(arg) for arg in args]
        joined = " ".join(command)
        if self.logger is not None:
            self.logger.debug(f"$ {joined}")
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                input=input,
                cwd=str(cwd) if cwd is not None else None,
                env={**os.environ, **env} if env else None,
                check=False,
            )
        except FileNotFoundError as exc:
            raise error_cls(
                f"Command failed: {joined} ({command[0]} not found)",
                command=command,
            ) from exc

        stdout = result.stdout or ""
        stderr = result.stderr or ""
        if self.logger is not None:
            for line in (stdout + stderr).splitlines():
                self.logger.debug(f"  {line}")
        if check and result.returncode != 0:
            message = stderr.strip() or stdout.strip() or "no output"
            raise error_cls(
                f"Command failed: {joined} (exit {result.returncode}): {message}",
                command=command,
                returncode=result.returncode,
                output=message,
            )
        return result


__all__ = ["CommandError", "CommandRunner"]
