"""APT/dpkg provider for Debian package management."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..backups import BackupManager
from ..commands import CommandError, CommandRunner
from ..locking import lock_is_held
from .downloads import HttpDownloader

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class AptError(CommandError):
    """Raised when apt, dpkg or gpg invocations fail."""


@dataclass(slots=True)
class AptPackageManager:
    """Query and mutate the dpkg database through apt-get."""

    runner: CommandRunner
    backups: BackupManager
    downloader: HttpDownloader
    keyring_dir: Path = Path("/etc/apt/trusted.gpg.d")
    sources_dir: Path = Path("/etc/apt/sources.list.d")
    lock_path: Path = Path("/var/lib/apt/lists/lock")
    apt_get_bin: str = "apt-get"
    dpkg_query_bin: str = "dpkg-query"
    gpg_bin: str = "gpg"

    def lock_held(self) -> bool:
        """Return True when another process holds the apt lists lock."""
        return lock_is_held(self.lock_path)

    def is_installed(self, package: str) -> bool:
        """Return True when dpkg records *package* as installed."""
        try:
            result = self.runner.run(
                [self.dpkg_query_bin, "-W", "-f=${Status}", package],
                check=False,
                error_cls=AptError,
            )
        except AptError:
            return False
        if result.returncode != 0:
            return False
        words = result.stdout.split()
        return len(words) == 3 and words[2] == "installed"

    def update(self) -> subprocess.CompletedProcess[str]:
        """Refresh package metadata."""
        return self._apt_get("update", "-qq")

    def upgrade(self) -> subprocess.CompletedProcess[str]:
        """Upgrade installed packages non-interactively."""
        return self._apt_get("upgrade", "-y", "-qq")

    def install(self, packages: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Install *packages* non-interactively."""
        return self._apt_get("install", "-y", "-qq", *packages)

    def add_repository(self, name: str, *, key_url: str, repo: str) -> Path:
        """Register a signed vendor repository and return its sources file.

        The armored signing key is fetched from *key_url*, dearmored into
        ``<keyring_dir>/<name>.gpg`` and referenced via ``signed-by`` from
        ``<sources_dir>/<name>.list``.
        """
        armored = self.downloader.fetch_text(key_url)
        self.keyring_dir.mkdir(parents=True, exist_ok=True)
        keyring = self.keyring_dir / f"{name}.gpg"
        self.runner.run(
            [self.gpg_bin, "--batch", "--yes", "--dearmor", "--output", str(keyring)],
            input=armored,
            error_cls=AptError,
        )
        sources = self.sources_dir / f"{name}.list"
        self.backups.write_text(sources, f"deb [signed-by={keyring}] {repo}\n")
        return sources

    # ------------------------------------------------------------------
    def _apt_get(self, *args: str) -> subprocess.CompletedProcess[str]:
        return self.runner.run([self.apt_get_bin, *args], env=APT_ENV, error_cls=AptError)


__all__ = ["APT_ENV", "AptError", "AptPackageManager"]
