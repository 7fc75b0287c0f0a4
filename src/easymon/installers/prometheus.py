"""Prometheus installer (upstream release tarball)."""
from __future__ import annotations

import shutil

import yaml

from ..config import AppConfig
from ..logging import OperationScope
from ..providers.accounts import chown_recursive
from ..resources import BinaryResource, ServiceUnitResource
from .base import InstallResult, ReleaseInstaller, ServiceDefinition

SERVICE_NAME = "prometheus"
EXECUTABLES = ("prometheus", "promtool")
CONSOLE_DIRS = ("consoles", "console_libraries")


def render_scrape_config(config: AppConfig) -> str:
    """Return ``prometheus.yml`` scraping the local node exporter."""
    document = {
        "global": {
            "scrape_interval": config.scrape.scrape_interval,
            "evaluation_interval": config.scrape.evaluation_interval,
        },
        "scrape_configs": [
            {
                "job_name": "node_exporter",
                "static_configs": [
                    {"targets": [f"127.0.0.1:{config.ports.node_exporter}"]},
                ],
            }
        ],
    }
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)


def prometheus_service(config: AppConfig) -> ServiceDefinition:
    """Return the unit definition for the Prometheus server."""
    paths = config.paths
    listen = f":{config.ports.prometheus}"
    return ServiceDefinition(
        name=SERVICE_NAME,
        description="Prometheus",
        binary=paths.bin_dir / "prometheus",
        listen_address=listen,
        user=config.accounts.prometheus,
        memory_limit=config.memory_limits.prometheus,
        exec_args=(
            f"--config.file={paths.prometheus_dir / 'prometheus.yml'}",
            f"--storage.tsdb.path={paths.prometheus_data_dir}",
            f"--web.listen-address={listen}",
        ),
    )


class PrometheusInstaller(ReleaseInstaller):
    """Install the Prometheus server and promtool from a release archive."""

    component = "prometheus"
    label = "Prometheus"
    project = "prometheus"

    def _install(self, op: OperationScope, result: InstallResult) -> None:
        context = self.context
        paths = self.config.paths
        version = self.config.versions.prometheus

        existing = BinaryResource("prometheus", paths.bin_dir, which=context.which).resolve()
        if existing is not None:
            self._skip(op)
            self.check_drift(existing, version, result)
            return

        release_dir = self.fetch_release(op, version)

        self.logger.info("Installing Prometheus...")
        for name in EXECUTABLES:
            target = BinaryResource(
                name, paths.bin_dir, source=release_dir / name, which=context.which
            ).install()
            op.add_step(f"prometheus.binary.{name}", detail=str(target))
        result.installed = True

        self.logger.info("Creating directories...")
        paths.prometheus_dir.mkdir(parents=True, exist_ok=True)
        paths.prometheus_data_dir.mkdir(parents=True, exist_ok=True)
        for name in CONSOLE_DIRS:
            source = release_dir / name
            if source.is_dir():
                shutil.copytree(source, paths.prometheus_dir / name, dirs_exist_ok=True)

        self.logger.info("Configuring Prometheus...")
        config_path = paths.prometheus_dir / "prometheus.yml"
        self._record_backup(
            result,
            context.backups.write_text(config_path, render_scrape_config(self.config)),
        )
        op.add_step("prometheus.config", detail=str(config_path))

        user = self.config.accounts.prometheus
        self._ensure_account(op, user)

        self.logger.info("Setting permissions...")
        chown_recursive([paths.prometheus_dir, paths.prometheus_data_dir], user, context.runner)

        service = prometheus_service(self.config)
        self.logger.info("Creating systemd service with resource limits...")
        unit = ServiceUnitResource(context.supervisor, service.name, service.unit_context())
        self._record_backup(result, unit.render())
        op.add_step("prometheus.unit", detail=str(context.supervisor.unit_path(service.name)))
        result.service = service


__all__ = ["PrometheusInstaller", "prometheus_service", "render_scrape_config"]
