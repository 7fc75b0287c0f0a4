"""Grafana installer (vendor apt repository)."""
from __future__ import annotations

import re

import yaml

from ..config import AppConfig
from ..logging import OperationScope
from ..resources import PackageResource
from .base import InstallError, Installer, InstallResult

PACKAGE_NAME = "grafana"
SERVICE_NAME = "grafana-server"

# Matches the packaged default (``;http_port = 3000``) and an explicit setting.
HTTP_PORT_PATTERN = re.compile(r"^[;#]?[ \t]*http_port[ \t]*=.*$", re.MULTILINE)


def render_datasource(config: AppConfig) -> str:
    """Return the provisioning document pointing Grafana at local Prometheus."""
    document = {
        "apiVersion": 1,
        "datasources": [
            {
                "name": "Prometheus",
                "type": "prometheus",
                "access": "proxy",
                "url": f"http://127.0.0.1:{config.ports.prometheus}",
                "isDefault": True,
                "editable": False,
            }
        ],
    }
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)


class GrafanaInstaller(Installer):
    """Install Grafana from its apt repository and wire up the datasource."""

    component = "grafana"
    label = "Grafana"

    def _install(self, op: OperationScope, result: InstallResult) -> None:
        context = self.context
        package = PackageResource(context.packages, PACKAGE_NAME)
        if self._skip_if_present(op, package):
            return

        self.logger.info("Adding Grafana repository...")
        sources = context.packages.add_repository(
            PACKAGE_NAME,
            key_url=self.config.downloads.grafana_key_url,
            repo=self.config.downloads.grafana_repo,
        )
        op.add_step("grafana.repository", detail=str(sources))

        self.logger.info("Updating package lists...")
        context.packages.update()

        self.logger.info("Installing Grafana...")
        package.ensure()
        op.add_step("grafana.package", detail=PACKAGE_NAME)
        result.installed = True

        self.logger.info("Configuring Grafana provisioning...")
        datasource_path = self.config.paths.grafana_ds_provision
        self._record_backup(
            result,
            context.backups.write_text(datasource_path, render_datasource(self.config)),
        )
        op.add_step("grafana.datasource", detail=str(datasource_path))

        self.logger.info("Updating Grafana port...")
        ini_path = self.config.paths.grafana_ini
        if not ini_path.is_file():
            raise InstallError(f"Grafana configuration {ini_path} is missing after install")
        count, backup = context.backups.substitute(
            ini_path,
            HTTP_PORT_PATTERN,
            f"http_port = {self.config.ports.grafana}",
        )
        self._record_backup(result, backup)
        if count == 0:
            message = f"No http_port setting found in {ini_path}; Grafana port left unchanged"
            self.logger.warning(message)
            result.warnings.append(message)
        op.add_step("grafana.port", detail=f"{ini_path}: {count} line(s)")


__all__ = ["GrafanaInstaller", "HTTP_PORT_PATTERN", "render_datasource"]
