"""Node Exporter installer (upstream release tarball)."""
from __future__ import annotations

from ..config import AppConfig
from ..logging import OperationScope
from ..resources import BinaryResource, ServiceUnitResource
from .base import InstallResult, ReleaseInstaller, ServiceDefinition

SERVICE_NAME = "node_exporter"
COLLECTORS = ("systemd", "textfile")


def node_exporter_service(config: AppConfig) -> ServiceDefinition:
    """Return the unit definition for the exporter, bound to loopback."""
    listen = f"127.0.0.1:{config.ports.node_exporter}"
    return ServiceDefinition(
        name=SERVICE_NAME,
        description="Node Exporter",
        binary=config.paths.bin_dir / "node_exporter",
        listen_address=listen,
        user=config.accounts.node_exporter,
        memory_limit=config.memory_limits.node_exporter,
        exec_args=(
            f"--web.listen-address={listen}",
            *(f"--collector.{name}" for name in COLLECTORS),
        ),
    )


class NodeExporterInstaller(ReleaseInstaller):
    """Install node_exporter; skipped if either the binary or its unit exists."""

    component = "node_exporter"
    label = "Node Exporter"
    project = "node_exporter"

    def _install(self, op: OperationScope, result: InstallResult) -> None:
        context = self.context
        paths = self.config.paths
        version = self.config.versions.node_exporter
        service = node_exporter_service(self.config)

        binary = BinaryResource("node_exporter", paths.bin_dir, which=context.which)
        unit = ServiceUnitResource(context.supervisor, service.name, service.unit_context())
        if self._skip_if_present(op, binary, unit):
            existing = binary.resolve()
            if existing is not None:
                self.check_drift(existing, version, result)
            return

        release_dir = self.fetch_release(op, version)

        self.logger.info("Installing Node Exporter...")
        binary.source = release_dir / "node_exporter"
        op.add_step("node_exporter.binary", detail=str(binary.install()))
        result.installed = True

        self._ensure_account(op, self.config.accounts.node_exporter)

        self.logger.info("Creating systemd service...")
        self._record_backup(result, unit.render())
        op.add_step("node_exporter.unit", detail=str(context.supervisor.unit_path(service.name)))
        result.service = service


__all__ = ["NodeExporterInstaller", "node_exporter_service"]
