"""Per-component installers, run in this order by the provisioner."""
from __future__ import annotations

from .base import (
    InstallContext,
    InstallError,
    Installer,
    InstallResult,
    ReleaseInstaller,
    ServiceDefinition,
)
from .grafana import GrafanaInstaller
from .node_exporter import NodeExporterInstaller
from .prometheus import PrometheusInstaller

INSTALLERS: tuple[type[Installer], ...] = (
    GrafanaInstaller,
    PrometheusInstaller,
    NodeExporterInstaller,
)

__all__ = [
    "GrafanaInstaller",
    "INSTALLERS",
    "InstallContext",
    "InstallError",
    "InstallResult",
    "Installer",
    "NodeExporterInstaller",
    "PrometheusInstaller",
    "ReleaseInstaller",
    "ServiceDefinition",
]
