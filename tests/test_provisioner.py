"""End-to-end provisioning runs against fake host collaborators."""
from __future__ import annotations

from collections.abc import Callable

import pytest
from conftest import (
    FakeDownloader,
    FakeExtractor,
    FakeRunner,
    console_output,
    default_texts,
    make_logger,
    which_in,
)

from easymon.backups import BackupManager
from easymon.config import AppConfig
from easymon.logging import StructuredLogger
from easymon.preflight import PreflightChecker, PreflightError
from easymon.providers.apt import AptError, AptPackageManager
from easymon.providers.firewall import UfwFirewall
from easymon.providers.systemd import SystemdProvider
from easymon.provisioner import SERVICES, Provisioner
from easymon.templates import TemplateEngine
from easymon.workspace import WorkspaceError


class Host:
    """Bundle the fakes that stand in for one machine."""

    def __init__(self, config: AppConfig) -> None:
        """Seed the files a Grafana package would install."""
        self.config = config
        self.runner = FakeRunner()
        self.runner.respond(["dpkg-query"], returncode=1)
        self.runner.respond(["systemctl", "is-active"], stdout="active\n")
        self.downloader = FakeDownloader(default_texts(config))
        self.extractor = FakeExtractor()
        self.geteuid: Callable[[], int] = lambda: 0
        self.lock_held: Callable[[], bool] = lambda: False
        ini = config.paths.grafana_ini
        ini.parent.mkdir(parents=True, exist_ok=True)
        ini.write_text("[server]\n;http_port = 3000\n")

    def mark_grafana_installed(self) -> None:
        """Make dpkg report the grafana package as installed."""
        self.runner.respond(["dpkg-query"], stdout="install ok installed")

    def provisioner(self, logger: StructuredLogger) -> Provisioner:
        """Return a provisioner wired to this host's fakes."""
        paths = self.config.paths
        backups = BackupManager(clock=lambda: 1_700_000_000)
        templates = TemplateEngine.with_overrides(paths.templates_dir)
        packages = AptPackageManager(
            runner=self.runner,  # type: ignore[arg-type]
            backups=backups,
            downloader=self.downloader,  # type: ignore[arg-type]
            keyring_dir=paths.apt_keyring_dir,
            sources_dir=paths.apt_sources_dir,
            lock_path=paths.apt_lock,
        )
        return Provisioner(
            self.config,
            logger,
            runner=self.runner,  # type: ignore[arg-type]
            backups=backups,
            templates=templates,
            downloader=self.downloader,  # type: ignore[arg-type]
            packages=packages,
            extractor=self.extractor,  # type: ignore[arg-type]
            firewall=UfwFirewall(self.runner),  # type: ignore[arg-type]
            supervisor=SystemdProvider(
                templates=templates,
                backups=backups,
                runner=self.runner,  # type: ignore[arg-type]
                systemd_dir=paths.systemd_dir,
            ),
            preflight=PreflightChecker(
                lock_held=lambda: self.lock_held(),
                geteuid=lambda: self.geteuid(),
            ),
            which=which_in(paths.bin_dir),
        )


@pytest.fixture
def host(config: AppConfig, no_accounts: None) -> Host:
    """Return a fresh fake host."""
    return Host(config)


def _index(calls: list[list[str]], command: list[str]) -> int:
    return calls.index(command)


def test_full_run_installs_everything_in_order(
    host: Host,
    config: AppConfig,
    logger: StructuredLogger,
) -> None:
    """A fresh host ends with all services configured and started."""
    summary = host.provisioner(logger).run()

    calls = host.runner.calls
    update = _index(calls, ["apt-get", "update", "-qq"])
    upgrade = _index(calls, ["apt-get", "upgrade", "-y", "-qq"])
    base = _index(calls, ["apt-get", "install", "-y", "-qq", "curl", "wget", "tar", "ufw"])
    enable_fw = _index(calls, ["ufw", "--force", "enable"])
    grafana = _index(calls, ["apt-get", "install", "-y", "-qq", "grafana"])
    reload = _index(calls, ["systemctl", "daemon-reload"])
    start = _index(
        calls,
        [
            "systemctl",
            "enable",
            "--now",
            "grafana-server.service",
            "prometheus.service",
            "node_exporter.service",
        ],
    )
    assert update < upgrade < base < enable_fw < grafana < reload < start

    assert summary.endpoints == {
        "grafana": "http://203.0.113.5:3000",
        "prometheus": "http://127.0.0.1:9090",
        "node_exporter": "http://127.0.0.1:9100/metrics",
    }
    assert summary.inactive == []
    assert [result.installed for result in summary.results] == [True, True, True]
    assert (config.paths.systemd_dir / "prometheus.service").is_file()
    assert (config.paths.systemd_dir / "node_exporter.service").is_file()
    assert not config.paths.workdir.exists()

    log_text = config.paths.log_file.read_text()
    assert "=== Installation started ===" in log_text
    assert "Grafana URL: http://203.0.113.5:3000" in log_text
    assert f"Full log available at: {config.paths.log_file}" in log_text
    assert "=== Installation completed at" not in log_text


def test_second_run_does_not_reinstall(
    host: Host,
    config: AppConfig,
    logger: StructuredLogger,
) -> None:
    """Installed components, accounts and units are left alone on re-run."""
    host.provisioner(logger).run()
    host.mark_grafana_installed()
    fetched_before = list(host.downloader.fetched)
    extracted_before = list(host.extractor.extracted)
    calls_before = len(host.runner.calls)
    unit = config.paths.systemd_dir / "prometheus.service"
    unit_before = unit.read_text()

    summary = host.provisioner(logger).run()

    second = host.runner.calls[calls_before:]
    assert [result.installed for result in summary.results] == [False, False, False]
    assert host.extractor.extracted == extracted_before
    assert host.downloader.fetched[len(fetched_before):] == [config.downloads.ip_lookup_url]
    assert not [call for call in second if call[0] in {"useradd", "gpg", "chown"}]
    assert ["apt-get", "install", "-y", "-qq", "grafana"] not in second
    assert ["systemctl", "daemon-reload"] in second
    assert unit.read_text() == unit_before
    assert not list(config.paths.systemd_dir.glob("*.bak-*"))


def test_non_root_stops_before_touching_the_host(
    host: Host,
    config: AppConfig,
    logger: StructuredLogger,
) -> None:
    """No package operation or file write happens without root."""
    host.geteuid = lambda: 1000

    with pytest.raises(PreflightError, match="must be run as root"):
        host.provisioner(logger).run()

    assert host.runner.calls == []
    assert host.downloader.fetched == []
    assert not config.paths.log_file.exists()
    assert not config.paths.log_file.parent.exists()
    assert not config.paths.workdir.exists()


def test_locked_apt_stops_before_touching_the_host(
    host: Host,
    config: AppConfig,
    logger: StructuredLogger,
) -> None:
    """A busy package manager aborts before any change."""
    host.lock_held = lambda: True

    with pytest.raises(PreflightError, match="APT system is locked"):
        host.provisioner(logger).run()

    assert host.runner.calls == []
    assert not config.paths.log_file.exists()


def test_failure_mid_run_still_cleans_up(
    host: Host,
    config: AppConfig,
    logger: StructuredLogger,
) -> None:
    """A failing step aborts the run and the workspace is removed."""
    host.runner.respond(["apt-get", "upgrade"], returncode=100, stderr="E: broken packages")

    with pytest.raises(AptError, match="broken packages"):
        host.provisioner(logger).run()

    assert host.runner.commands_starting_with("ufw") == []
    assert not config.paths.workdir.exists()
    log_text = config.paths.log_file.read_text()
    assert "Cleaning temporary files..." in log_text


def test_existing_workdir_is_refused(
    host: Host,
    config: AppConfig,
    logger: StructuredLogger,
) -> None:
    """A pre-existing work directory aborts before package operations."""
    config.paths.workdir.mkdir(parents=True)

    with pytest.raises(WorkspaceError):
        host.provisioner(logger).run()

    assert host.runner.calls == []
    assert config.paths.workdir.is_dir()


def test_public_ip_lookup_falls_back_to_loopback(
    host: Host,
    config: AppConfig,
    logger: StructuredLogger,
) -> None:
    """An unreachable lookup service does not fail the run."""
    del host.downloader.texts[config.downloads.ip_lookup_url]

    summary = host.provisioner(logger).run()

    assert summary.endpoints["grafana"] == "http://127.0.0.1:3000"
    assert "WARNING: Public IP lookup" in console_output(logger)


def test_garbage_ip_response_falls_back_to_loopback(
    host: Host,
    config: AppConfig,
    logger: StructuredLogger,
) -> None:
    """Only a literal IP address is trusted from the lookup service."""
    host.downloader.texts[config.downloads.ip_lookup_url] = "<html>rate limited</html>"

    summary = host.provisioner(logger).run()

    assert summary.endpoints["grafana"] == "http://127.0.0.1:3000"


def test_inactive_services_are_reported(
    host: Host,
    logger: StructuredLogger,
) -> None:
    """Services that did not come up produce a warning."""
    host.runner.respond(
        ["systemctl", "is-active", "node_exporter.service"], returncode=3, stdout="failed\n"
    )

    summary = host.provisioner(logger).run()

    assert summary.inactive == ["node_exporter"]
    assert "WARNING: Service node_exporter is not active" in console_output(logger)


def test_services_constant_matches_start_order() -> None:
    """Grafana, Prometheus and Node Exporter are started together."""
    assert SERVICES == ("grafana-server", "prometheus", "node_exporter")


def test_custom_ports_reach_firewall_and_endpoints(
    make_config: Callable[..., AppConfig],
    no_accounts: None,
) -> None:
    """Port overrides drive both the firewall rules and the summary."""
    config = make_config({"ports": {"grafana": 3300, "prometheus": 9190, "node_exporter": 9200}})
    host = Host(config)

    summary = host.provisioner(make_logger(config.paths.log_file)).run()

    rules = [call[2] for call in host.runner.commands_starting_with("ufw", "allow")]
    assert rules == ["3300/tcp", "9190/tcp", "9200/tcp"]
    assert summary.endpoints["prometheus"] == "http://127.0.0.1:9190"
    assert summary.endpoints["node_exporter"] == "http://127.0.0.1:9200/metrics"


def test_finish_logs_completion_banner(
    host: Host,
    config: AppConfig,
    logger: StructuredLogger,
) -> None:
    """The completion banner is written separately from the run itself."""
    provisioner = host.provisioner(logger)
    provisioner.run()

    provisioner.finish()

    assert "=== Installation completed at" in config.paths.log_file.read_text()
