"""Shared plumbing for the per-component installers."""
from __future__ import annotations

import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from packaging.version import InvalidVersion, Version

from ..backups import BackupManager
from ..commands import CommandError, CommandRunner
from ..config import AppConfig
from ..errors import ProvisionError
from ..logging import OperationScope, StructuredLogger
from ..providers.accounts import ServiceAccountSpec
from ..providers.apt import AptPackageManager
from ..providers.downloads import HttpDownloader, TarExtractor
from ..providers.systemd import SystemdProvider
from ..resources import AccountResource, ManagedResource, Which

_VERSION_OUTPUT_RE = re.compile(r"\bversion\s+v?(\d[\w.+-]*)")


class InstallError(ProvisionError):
    """Raised when an installer cannot complete."""


@dataclass(frozen=True, slots=True)
class ServiceDefinition:
    """Everything needed to render one supervisor unit."""

    name: str
    description: str
    binary: Path
    listen_address: str
    user: str
    exec_args: tuple[str, ...] = ()
    memory_limit: str | None = None
    restart: str = "on-failure"

    def unit_context(self) -> dict[str, object]:
        """Return the template context for ``systemd/service.j2``."""
        return {
            "description": self.description,
            "service_user": self.user,
            "service_group": self.user,
            "memory_limit": self.memory_limit,
            "restart": self.restart,
            "exec_start": str(self.binary),
            "exec_args": list(self.exec_args),
        }


@dataclass(slots=True)
class InstallContext:
    """Collaborators and settings shared by every installer in a run."""

    config: AppConfig
    logger: StructuredLogger
    runner: CommandRunner
    backups: BackupManager
    packages: AptPackageManager
    downloader: HttpDownloader
    extractor: TarExtractor
    supervisor: SystemdProvider
    workspace: Path
    which: Which = shutil.which


@dataclass(slots=True)
class InstallResult:
    """Outcome of one installer run."""

    component: str
    installed: bool
    service: ServiceDefinition | None = None
    backups: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class Installer:
    """Base class: wraps :meth:`_install` in a logged operation."""

    component: ClassVar[str]
    label: ClassVar[str]

    def __init__(self, context: InstallContext) -> None:
        """Bind the installer to the shared run *context*."""
        self.context = context
        self.config = context.config
        self.logger = context.logger

    def install(self) -> InstallResult:
        """Install the component unless it is already present."""
        result = InstallResult(component=self.component, installed=False)
        with self.logger.operation(f"install {self.component}") as op:
            self._install(op, result)
            if result.installed:
                op.success(
                    f"{self.label} installed.",
                    changed=1,
                    backups=result.backups,
                )
            elif result.warnings:
                op.warning(f"{self.label} already installed.", warnings=result.warnings)
            else:
                op.success(f"{self.label} already installed.", changed=0)
        return result

    def _install(self, op: OperationScope, result: InstallResult) -> None:
        raise NotImplementedError

    def _skip(self, op: OperationScope) -> None:
        self.logger.info(f"{self.label} already installed - skipping")
        op.add_step(f"{self.component}.install", status="skipped", detail="already installed")

    def _skip_if_present(self, op: OperationScope, *resources: ManagedResource) -> bool:
        """Record a skip and return True when any of *resources* exists."""
        if any(resource.exists() for resource in resources):
            self._skip(op)
            return True
        return False

    def _record_backup(self, result: InstallResult, backup: Path | None) -> None:
        if backup is not None:
            self.logger.info(f"Created backup of existing file: {backup}")
            result.backups.append(backup)

    def _ensure_account(self, op: OperationScope, name: str) -> None:
        self.logger.info(f"Creating {self.label} service user...")
        account = AccountResource(ServiceAccountSpec(name=name), self.context.runner)
        changed = account.ensure()
        for warning in account.warnings:
            self.logger.warning(warning)
        op.add_step(
            f"{self.component}.account",
            status="success" if changed else "skipped",
            detail=name,
        )


class ReleaseInstaller(Installer):
    """Installer for components shipped as upstream ``.tar.gz`` releases."""

    project: ClassVar[str]

    def release_name(self, version: str) -> str:
        """Return the archive stem, e.g. ``prometheus-2.51.0.linux-amd64``."""
        return f"{self.project}-{version}.{self.config.downloads.platform}"

    def release_url(self, version: str) -> str:
        """Return the download URL for *version*."""
        base = self.config.downloads.release_base_url
        return (
            f"{base}/{self.project}/releases/download/v{version}/"
            f"{self.release_name(version)}.tar.gz"
        )

    def fetch_release(self, op: OperationScope, version: str) -> Path:
        """Download and unpack *version*; return the extracted release directory."""
        name = self.release_name(version)
        url = self.release_url(version)
        self.logger.info(f"Downloading {self.label} v{version}...")
        archive = self.context.downloader.fetch(url, self.context.workspace / f"{name}.tar.gz")
        op.add_step(f"{self.component}.download", detail=url)
        self.context.extractor.extract(archive, self.context.workspace)
        release_dir = self.context.workspace / name
        if not release_dir.is_dir():
            raise InstallError(f"Release archive {archive.name} did not contain {name}/")
        op.add_step(f"{self.component}.extract", detail=str(release_dir))
        return release_dir

    def installed_version(self, binary: Path) -> str | None:
        """Return the version reported by ``<binary> --version``, if parseable."""
        try:
            result = self.context.runner.run([str(binary), "--version"], check=False)
        except CommandError:
            return None
        match = _VERSION_OUTPUT_RE.search(f"{result.stdout}\n{result.stderr}")
        return match.group(1) if match else None

    def check_drift(self, binary: Path, requested: str, result: InstallResult) -> None:
        """Warn when the installed version differs from *requested*.

        Existing installations are never upgraded; this only surfaces the gap.
        """
        installed = self.installed_version(binary)
        if installed is None or _same_version(installed, requested):
            return
        message = (
            f"{self.label} {installed} is installed but {requested} was requested; "
            "the existing installation is left unchanged"
        )
        self.logger.warning(message)
        result.warnings.append(message)


def _same_version(left: str, right: str) -> bool:
    try:
        return Version(left) == Version(right)
    except InvalidVersion:
        return left == right


__all__ = [
    "InstallContext",
    "InstallError",
    "InstallResult",
    "Installer",
    "ReleaseInstaller",
    "ServiceDefinition",
]
