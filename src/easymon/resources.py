"""Uniform existence checks for the resources an installer manages.

Each resource kind answers ``exists()`` and converges with ``ensure()``,
which returns ``True`` only when it changed the host. Existence is the sole
idempotency signal: an installed component is never compared against the
requested version here.
"""
from __future__ import annotations

import os
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .commands import CommandRunner
from .errors import ProvisionError
from .providers.accounts import (
    ServiceAccountSpec,
    apply_service_account_plan,
    inspect_service_account,
    plan_service_account,
)
from .providers.apt import AptPackageManager
from .providers.systemd import SystemdProvider

Which = Callable[[str], str | None]


class ResourceError(ProvisionError):
    """Raised when a resource cannot be brought into existence."""


class ManagedResource(Protocol):
    """Capability shared by every resource kind."""

    kind: str
    name: str

    def exists(self) -> bool:
        """Return True when the resource is already present."""

    def ensure(self) -> bool:
        """Create the resource if missing; return True when something changed."""


@dataclass(slots=True)
class PackageResource:
    """A Debian package tracked by dpkg."""

    packages: AptPackageManager
    name: str
    kind: str = "package"

    def exists(self) -> bool:
        """Return True when dpkg reports the package installed."""
        return self.packages.is_installed(self.name)

    def ensure(self) -> bool:
        if self.exists():
            return False
        self.packages.install([self.name])
        return True


@dataclass(slots=True)
class BinaryResource:
    """An executable resolvable on ``PATH``, installed from *source* when missing."""

    name: str
    bin_dir: Path
    source: Path | None = None
    which: Which = shutil.which
    kind: str = "binary"

    @property
    def target(self) -> Path:
        """Path the binary is installed to."""
        return self.bin_dir / self.name

    def resolve(self) -> Path | None:
        """Return the resolved executable path, if any."""
        found = self.which(self.name)
        return Path(found) if found else None

    def exists(self) -> bool:
        """Return True when the executable resolves on PATH."""
        return self.resolve() is not None

    def ensure(self) -> bool:
        if self.exists():
            return False
        self.install()
        return True

    def install(self) -> Path:
        """Copy *source* into ``bin_dir`` with mode 0755, replacing any old copy."""
        if self.source is None or not self.source.is_file():
            raise ResourceError(f"Cannot install {self.name}: source {self.source} is missing")
        self.bin_dir.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(self.source, self.target)
            os.chmod(self.target, 0o755)
        except OSError as exc:
            raise ResourceError(f"Failed to install {self.name} to {self.target}: {exc}") from exc
        return self.target


@dataclass(slots=True)
class ServiceUnitResource:
    """A systemd service unit rendered from the built-in template."""

    supervisor: SystemdProvider
    name: str
    context: Mapping[str, object] = field(default_factory=dict)
    kind: str = "service-unit"

    def exists(self) -> bool:
        """Return True when systemd already knows the unit."""
        return self.supervisor.unit_exists(self.name)

    def ensure(self) -> bool:
        if self.exists():
            return False
        self.render()
        return True

    def render(self) -> Path | None:
        """Write the unit unconditionally; return the backup path if any."""
        return self.supervisor.render_unit(self.name, self.context)


@dataclass(slots=True)
class AccountResource:
    """A non-login service account."""

    spec: ServiceAccountSpec
    runner: CommandRunner
    kind: str = "account"
    warnings: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.spec.name

    def exists(self) -> bool:
        """Return True when the account is present in the user database."""
        return inspect_service_account(self.spec).user_exists

    def ensure(self) -> bool:
        """Create the account if needed."""
        plan = plan_service_account(self.spec)
        self.warnings = list(plan.warnings)
        if not plan.actions:
            return False
        apply_service_account_plan(plan, self.runner)
        return True


__all__ = [
    "AccountResource",
    "BinaryResource",
    "ManagedResource",
    "PackageResource",
    "ResourceError",
    "ServiceUnitResource",
]
