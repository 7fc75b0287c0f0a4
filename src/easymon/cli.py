"""Typer-powered command line entry point for ``easymon``.

A single command provisions Grafana, Prometheus and Node Exporter on the
local host. Settings resolve as CLI flag, then environment variable, then the
optional YAML config file, then the built-in default. Any failure prints a
``CRITICAL ERROR`` line and exits with status 1.
"""
from __future__ import annotations

import signal
import textwrap
from collections.abc import Mapping, Sequence
from pathlib import Path
from types import FrameType
from typing import NoReturn

import typer
from rich.console import Console

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import ProvisionError
from .exit_codes import ExitCode
from .logging import StructuredLogger
from .provisioner import Provisioner

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"easymon {__version__}")
        raise typer.Exit(code=ExitCode.OK)


GRAFANA_PORT_OPTION = typer.Option(
    None,
    "--grafana-port",
    metavar="PORT",
    help="Grafana HTTP port [env: GRAFANA_PORT, default: 3000].",
)
PROMETHEUS_PORT_OPTION = typer.Option(
    None,
    "--prometheus-port",
    metavar="PORT",
    help="Prometheus listen port [env: PROMETHEUS_PORT, default: 9090].",
)
NODE_EXPORTER_PORT_OPTION = typer.Option(
    None,
    "--node-exporter-port",
    metavar="PORT",
    help="Node Exporter listen port [env: NODE_EXPORTER_PORT, default: 9100].",
)
PROMETHEUS_VERSION_OPTION = typer.Option(
    None,
    "--prometheus-version",
    metavar="VER",
    help="Prometheus release to install [env: PROMETHEUS_VERSION, default: 2.51.0].",
)
NODE_EXPORTER_VERSION_OPTION = typer.Option(
    None,
    "--node-exporter-version",
    metavar="VER",
    help="Node Exporter release to install [env: NODE_EXPORTER_VERSION, default: 1.7.0].",
)
MEMORY_LIMIT_OPTION = typer.Option(
    None,
    "--memory-limit",
    metavar="SIZE",
    help=(
        "MemoryMax for the Prometheus service, e.g. 2G; an empty value disables "
        "the limit [env: PROMETHEUS_MEMORY_LIMIT, default: 2G]."
    ),
)
NODE_EXPORTER_MEMORY_LIMIT_OPTION = typer.Option(
    None,
    "--node-exporter-memory-limit",
    metavar="SIZE",
    help="MemoryMax for the Node Exporter service [env: NODE_EXPORTER_MEMORY_LIMIT].",
)
WORKDIR_OPTION = typer.Option(
    None,
    "--workdir",
    file_okay=False,
    help="Temporary download directory; must not exist yet [env: WORKDIR].",
)
LOG_FILE_OPTION = typer.Option(
    None,
    "--log-file",
    dir_okay=False,
    help="Log file path [env: LOG_FILE, default: /var/log/easy_monitoring.log].",
)
GRAFANA_DS_PROVISION_OPTION = typer.Option(
    None,
    "--grafana-ds-provision",
    dir_okay=False,
    help="Grafana datasource provisioning file [env: GRAFANA_DS_PROVISION].",
)
CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Optional YAML config file [env: EASYMON_CONFIG_FILE].",
)
VERSION_OPTION = typer.Option(
    False,
    "--version",
    "-V",
    callback=_version_callback,
    is_eager=True,
    help="Show the easymon version and exit.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Install and configure a Grafana + Prometheus + Node Exporter stack.

        Must be run as root on a Debian-family host with systemd and ufw.
        Components that are already installed are left untouched.
        """
    ).strip(),
)


@app.command()
def install(
    grafana_port: int | None = GRAFANA_PORT_OPTION,
    prometheus_port: int | None = PROMETHEUS_PORT_OPTION,
    node_exporter_port: int | None = NODE_EXPORTER_PORT_OPTION,
    prometheus_version: str | None = PROMETHEUS_VERSION_OPTION,
    node_exporter_version: str | None = NODE_EXPORTER_VERSION_OPTION,
    memory_limit: str | None = MEMORY_LIMIT_OPTION,
    node_exporter_memory_limit: str | None = NODE_EXPORTER_MEMORY_LIMIT_OPTION,
    workdir: Path | None = WORKDIR_OPTION,
    log_file: Path | None = LOG_FILE_OPTION,
    grafana_ds_provision: Path | None = GRAFANA_DS_PROVISION_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    version: bool = VERSION_OPTION,
) -> None:
    """Install and configure Grafana, Prometheus and Node Exporter."""
    overrides = _build_overrides(
        {
            "ports": {
                "grafana": grafana_port,
                "prometheus": prometheus_port,
                "node_exporter": node_exporter_port,
            },
            "versions": {
                "prometheus": prometheus_version,
                "node_exporter": node_exporter_version,
            },
            "memory_limits": {
                "prometheus": memory_limit,
                "node_exporter": node_exporter_memory_limit,
            },
            "paths": {
                "workdir": workdir,
                "log_file": log_file,
                "grafana_ds_provision": grafana_ds_provision,
            },
        }
    )
    try:
        config = load_config(config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(
            f"CRITICAL ERROR: {exc}",
            style="bold red",
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
        raise typer.Exit(code=ExitCode.FAILURE) from exc

    logger = StructuredLogger(config.paths.log_file, console=console)
    provisioner = Provisioner(config, logger)

    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        provisioner.run()
    except (ProvisionError, OSError) as exc:
        _critical(logger, config, str(exc))
    except KeyboardInterrupt:
        _critical(logger, config, "Installation interrupted")
    finally:
        provisioner.finish()
        signal.signal(signal.SIGTERM, previous)


def _build_overrides(
    sections: Mapping[str, Mapping[str, object | None]],
) -> dict[str, object]:
    """Drop unset flags so lower-precedence sources still apply."""
    overrides: dict[str, object] = {}
    for section, values in sections.items():
        provided = {key: value for key, value in values.items() if value is not None}
        if provided:
            overrides[section] = provided
    return overrides


def _raise_interrupt(signum: int, frame: FrameType | None) -> NoReturn:
    raise KeyboardInterrupt


def _critical(logger: StructuredLogger, config: AppConfig, message: str) -> NoReturn:
    logger.error(f"CRITICAL ERROR: {message}")
    logger.error(f"Check {config.paths.log_file} for details")
    raise typer.Exit(code=ExitCode.FAILURE)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return its exit status.

    Usage errors exit with status 2 in standalone mode; ``easymon`` folds every
    failure, including an unknown flag, into status 1.
    """
    try:
        app(args=list(argv) if argv is not None else None, prog_name="easymon")
    except SystemExit as exc:
        return ExitCode.OK if exc.code in (None, 0) else ExitCode.FAILURE
    return ExitCode.OK


def run() -> NoReturn:
    """Console script entry point."""
    raise SystemExit(main())


__all__ = ["app", "install", "main", "run"]
