"""Detect POSIX record locks held by other processes.

APT guards its lists directory with an ``fcntl`` write lock. The probe below
asks for the same lock without blocking and releases it straight away, so it
only reports contention and never keeps the lock for this process.
"""
from __future__ import annotations

import errno
import fcntl
import os
from pathlib import Path

from .errors import ProvisionError


class LockProbeError(ProvisionError):
    """Raised when a lock file exists but cannot be inspected."""


def lock_is_held(path: Path) -> bool:
    """Return ``True`` when another process holds the write lock on *path*."""
    try:
        fd = os.open(path, os.O_RDWR)
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise LockProbeError(f"Cannot open lock file {path}: {exc}") from exc
    try:
        try:
            fcntl.lockf(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            if exc.errno in (errno.EACCES, errno.EAGAIN):
                return True
            raise LockProbeError(f"Cannot probe lock file {path}: {exc}") from exc
        fcntl.lockf(fd, fcntl.LOCK_UN)
        return False
    finally:
        os.close(fd)


__all__ = ["LockProbeError", "lock_is_held"]
