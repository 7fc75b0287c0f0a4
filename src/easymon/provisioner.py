"""Orchestrates a complete monitoring-stack provisioning run.

The run is strictly sequential: preflight, workspace, system update,
firewall, the three installers, then service start-up and a summary. Any
:class:`~easymon.errors.ProvisionError` aborts the run immediately; files
already written stay in place. The workspace is removed and a completion line
is logged on every exit path.
"""
from __future__ import annotations

import ipaddress
import shutil
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .backups import BackupManager
from .commands import CommandRunner
from .config import AppConfig
from .installers import INSTALLERS, InstallContext, Installer, InstallResult
from .installers.grafana import SERVICE_NAME as GRAFANA_SERVICE
from .installers.node_exporter import SERVICE_NAME as NODE_EXPORTER_SERVICE
from .installers.prometheus import SERVICE_NAME as PROMETHEUS_SERVICE
from .logging import StructuredLogger
from .preflight import PreflightChecker
from .providers.apt import AptPackageManager
from .providers.downloads import DownloadError, HttpDownloader, TarExtractor
from .providers.firewall import UfwFirewall
from .providers.systemd import SystemdProvider
from .resources import Which
from .templates import TemplateEngine
from .workspace import workspace

SERVICES = (GRAFANA_SERVICE, PROMETHEUS_SERVICE, NODE_EXPORTER_SERVICE)


@dataclass(slots=True)
class ProvisionSummary:
    """What a successful run produced."""

    endpoints: dict[str, str]
    log_file: Path
    results: list[InstallResult] = field(default_factory=list)
    backups: list[Path] = field(default_factory=list)
    inactive: list[str] = field(default_factory=list)


class Provisioner:
    """Bring a host from an unknown state to a running monitoring stack.

    Every collaborator can be injected; the defaults drive the real host
    tools (apt, tar, ufw, systemctl) through one shared :class:`CommandRunner`.
    """

    def __init__(
        self,
        config: AppConfig,
        logger: StructuredLogger,
        *,
        runner: CommandRunner | None = None,
        backups: BackupManager | None = None,
        templates: TemplateEngine | None = None,
        downloader: HttpDownloader | None = None,
        packages: AptPackageManager | None = None,
        extractor: TarExtractor | None = None,
        firewall: UfwFirewall | None = None,
        supervisor: SystemdProvider | None = None,
        preflight: PreflightChecker | None = None,
        which: Which = shutil.which,
        installers: Sequence[type[Installer]] = INSTALLERS,
    ) -> None:
        """Wire the collaborators, building defaults from *config*."""
        paths = config.paths
        self.config = config
        self.logger = logger
        self.runner = runner or CommandRunner(logger=logger)
        self.backups = backups or BackupManager()
        self.templates = templates or TemplateEngine.with_overrides(paths.templates_dir)
        self.downloader = downloader or HttpDownloader(timeout=config.downloads.timeout)
        self.packages = packages or AptPackageManager(
            runner=self.runner,
            backups=self.backups,
            downloader=self.downloader,
            keyring_dir=paths.apt_keyring_dir,
            sources_dir=paths.apt_sources_dir,
            lock_path=paths.apt_lock,
        )
        self.extractor = extractor or TarExtractor(self.runner)
        self.firewall = firewall or UfwFirewall(self.runner)
        self.supervisor = supervisor or SystemdProvider(
            templates=self.templates,
            backups=self.backups,
            runner=self.runner,
            systemd_dir=paths.systemd_dir,
        )
        self.preflight = preflight or PreflightChecker(lock_held=self.packages.lock_held)
        self.which = which
        self.installers = tuple(installers)

    def run(self) -> ProvisionSummary:
        """Execute the full provisioning flow and return its summary."""
        self.logger.info("=== Installation started ===")
        with self.logger.operation("preflight") as op:
            self.preflight.check()
            op.success("Preflight checks passed.")
        # Nothing touches the filesystem before this point.
        self.logger.attach()

        with workspace(self.config.paths.workdir, self.logger) as work:
            self._update_system()
            self._configure_firewall()
            results = self._install_components(work)
            self._start_services()
            summary = self._summarise(results)
            self._report(summary)
        return summary

    def finish(self) -> None:
        """Log the completion banner; called last on every exit path."""
        self.logger.info(f"=== Installation completed at {self.logger.now():%c} ===")

    # ------------------------------------------------------------------
    def _update_system(self) -> None:
        with self.logger.operation("system update") as op:
            self.logger.info("Starting system update...")
            self.packages.update()
            op.add_step("apt.update")
            self.packages.upgrade()
            op.add_step("apt.upgrade")
            self.packages.install(self.config.base_packages)
            op.add_step("apt.install", detail=" ".join(self.config.base_packages))

    def _configure_firewall(self) -> None:
        ports = self.config.ports.as_tuple()
        with self.logger.operation("firewall", args={"ports": list(ports)}) as op:
            self.logger.info("Configuring firewall...")
            for command in self.firewall.configure(ports):
                op.add_step("ufw", detail=" ".join(command[1:]))

    def _install_components(self, work: Path) -> list[InstallResult]:
        context = InstallContext(
            config=self.config,
            logger=self.logger,
            runner=self.runner,
            backups=self.backups,
            packages=self.packages,
            downloader=self.downloader,
            extractor=self.extractor,
            supervisor=self.supervisor,
            workspace=work,
            which=self.which,
        )
        return [installer(context).install() for installer in self.installers]

    def _start_services(self) -> None:
        with self.logger.operation("start services", args={"services": list(SERVICES)}) as op:
            self.logger.info("Reloading systemd and starting services...")
            self.supervisor.daemon_reload()
            op.add_step("systemd.daemon-reload")
            self.supervisor.enable_now(*SERVICES)
            op.add_step("systemd.enable", detail=" ".join(SERVICES))

    def _summarise(self, results: list[InstallResult]) -> ProvisionSummary:
        ports = self.config.ports
        host = self._public_address()
        endpoints = {
            "grafana": f"http://{host}:{ports.grafana}",
            "prometheus": f"http://127.0.0.1:{ports.prometheus}",
            "node_exporter": f"http://127.0.0.1:{ports.node_exporter}/metrics",
        }
        inactive = [service for service in SERVICES if not self.supervisor.is_active(service)]
        return ProvisionSummary(
            endpoints=endpoints,
            log_file=self.config.paths.log_file,
            results=results,
            backups=list(self.backups.created),
            inactive=inactive,
        )

    def _public_address(self) -> str:
        url = self.config.downloads.ip_lookup_url
        try:
            address = ipaddress.ip_address(self.downloader.fetch_text(url).strip())
        except (DownloadError, ValueError) as exc:
            self.logger.warning(f"Public IP lookup via {url} failed ({exc}); using 127.0.0.1")
            return "127.0.0.1"
        if address.version == 6:
            return f"[{address}]"
        return str(address)

    def _report(self, summary: ProvisionSummary) -> None:
        for service in summary.inactive:
            self.logger.warning(f"Service {service} is not active after start-up")
        self.logger.info("Installation complete")
        self.logger.info(f"Grafana URL: {summary.endpoints['grafana']}")
        self.logger.info(f"Prometheus URL: {summary.endpoints['prometheus']}")
        self.logger.info(f"Node Exporter metrics: {summary.endpoints['node_exporter']}")
        self.logger.info(f"Full log available at: {summary.log_file}")


__all__ = ["Provisioner", "ProvisionSummary", "SERVICES"]
