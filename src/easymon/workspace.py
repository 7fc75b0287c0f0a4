"""Scoped download workspace removed on every exit path."""
from __future__ import annotations

import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .errors import ProvisionError
from .logging import StructuredLogger


class WorkspaceError(ProvisionError):
    """Raised when the workspace directory cannot be claimed."""


@contextmanager
def workspace(path: Path, logger: StructuredLogger) -> Iterator[Path]:
    """Create *path*, yield it, and delete it however the block exits.

    The directory must not exist beforehand: the run owns it exclusively and
    only removes what it created.
    """
    if path.exists():
        raise WorkspaceError(f"Workspace {path} already exists; refusing to reuse it")
    logger.info(f"Creating workspace: {path}")
    try:
        path.mkdir(parents=True, mode=0o700)
    except OSError as exc:
        raise WorkspaceError(f"Failed to create workspace {path}: {exc}") from exc
    try:
        yield path
    finally:
        logger.info("Cleaning temporary files...")
        shutil.rmtree(path, ignore_errors=True)
        if path.exists():
            logger.warning(f"Workspace {path} could not be fully removed")


__all__ = ["WorkspaceError", "workspace"]
