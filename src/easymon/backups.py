"""Backup-on-overwrite helpers for configuration files.

Before an existing file is replaced it is copied to a sibling named
``<file>.bak-<epoch seconds>``. Backups are never pruned; each run that
overwrites a pre-existing file adds exactly one more.
"""
from __future__ import annotations

import os
import re
import shutil
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ProvisionError


class BackupError(ProvisionError):
    """Raised when a backup or guarded write fails."""


@dataclass(slots=True)
class BackupManager:
    """Copy files aside before overwriting them and track what was saved."""

    clock: Callable[[], float] = time.time
    created: list[Path] = field(default_factory=list)

    def backup_path_for(self, path: Path) -> Path:
        """Return an unused backup path for *path*."""
        stamp = int(self.clock())
        candidate = path.with_name(f"{path.name}.bak-{stamp}")
        counter = 1
        while candidate.exists():
            candidate = path.with_name(f"{path.name}.bak-{stamp}-{counter}")
            counter += 1
        return candidate

    def backup(self, path: Path) -> Path | None:
        """Copy *path* aside when it exists and return the backup location."""
        if not path.is_file():
            return None
        destination = self.backup_path_for(path)
        try:
            shutil.copy2(path, destination)
        except OSError as exc:
            raise BackupError(f"Failed to backup {path}: {exc}") from exc
        self.created.append(destination)
        return destination

    def write_text(self, path: Path, content: str, *, mode: int = 0o644) -> Path | None:
        """Back up *path* if present, then atomically replace it with *content*."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"Failed to create directory {path.parent}: {exc}") from exc
        backup_path = self.backup(path)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise BackupError(f"Failed to write {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)
        return backup_path

    def substitute(
        self,
        path: Path,
        pattern: str | re.Pattern[str],
        replacement: str,
    ) -> tuple[int, Path | None]:
        """Apply a multiline regex substitution to *path* in place.

        Returns the number of replacements and the backup path. A missing file
        is left alone and reported as zero replacements without a backup.
        """
        if not path.is_file():
            return 0, None
        try:
            original = path.read_text(encoding="utf-8")
            mode = path.stat().st_mode & 0o7777
        except OSError as exc:
            raise BackupError(f"Failed to read {path}: {exc}") from exc
        compiled = re.compile(pattern, re.MULTILINE) if isinstance(pattern, str) else pattern
        updated, count = compiled.subn(replacement, original)
        backup_path = self.write_text(path, updated, mode=mode)
        return count, backup_path


__all__ = ["BackupError", "BackupManager"]
