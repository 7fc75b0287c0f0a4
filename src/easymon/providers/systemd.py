"""Systemd provider for rendering and starting service units."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from ..backups import BackupManager
from ..commands import CommandError, CommandRunner
from ..templates import TemplateEngine


class SystemdError(CommandError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Render and manage systemd service units for the monitoring stack."""

    templates: TemplateEngine
    backups: BackupManager
    runner: CommandRunner
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"

    def unit_name(self, service: str) -> str:
        """Return the systemd unit name for *service*."""
        if service.endswith(".service"):
            return service
        return f"{service}.service"

    def unit_path(self, service: str) -> Path:
        """Return the full path for the service unit file."""
        return self.systemd_dir / self.unit_name(service)

    def unit_exists(self, service: str) -> bool:
        """Return True when systemd already knows a unit for *service*."""
        if self.unit_path(service).exists():
            return True
        try:
            result = self._systemctl("list-unit-files", "--no-legend", "--no-pager", check=False)
        except SystemdError:
            # systemctl missing entirely: nothing can be registered.
            return False
        unit = self.unit_name(service)
        return any(line.split()[:1] == [unit] for line in result.stdout.splitlines())

    def render_unit(self, service: str, context: Mapping[str, object]) -> Path | None:
        """Render the unit file for *service*; return the backup path if one was taken."""
        content = self.templates.render_to_string("systemd/service.j2", context)
        return self.backups.write_text(self.unit_path(service), content, mode=0o644)

    def daemon_reload(self) -> subprocess.CompletedProcess[str]:
        """Reload systemd so new unit files are picked up."""
        return self._systemctl("daemon-reload")

    def enable_now(self, *services: str) -> subprocess.CompletedProcess[str]:
        """Enable and start *services* in a single systemctl call."""
        units = [self.unit_name(service) for service in services]
        return self._systemctl("enable", "--now", *units)

    def is_active(self, service: str) -> bool:
        """Return True when the unit reports ``active``."""
        result = self._systemctl("is-active", self.unit_name(service), check=False)
        return result.stdout.strip() == "active"

    # ------------------------------------------------------------------
    def _systemctl(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        return self.runner.run(
            [self.systemctl_bin, *args],
            check=check,
            error_cls=SystemdError,
        )


__all__ = ["SystemdError", "SystemdProvider"]
