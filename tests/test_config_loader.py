"""Configuration loader tests."""
from __future__ import annotations

import re
from pathlib import Path

import pytest

from easymon.config import AppConfig, ConfigError, load_config


def test_load_config_defaults() -> None:
    """Built-in defaults apply when nothing else is provided."""
    config = load_config(env={})

    assert isinstance(config, AppConfig)
    assert config.config_file is None
    assert config.ports.as_tuple() == (3000, 9090, 9100)
    assert config.versions.prometheus == "2.51.0"
    assert config.versions.node_exporter == "1.7.0"
    assert config.memory_limits.prometheus == "2G"
    assert config.memory_limits.node_exporter is None
    assert config.paths.log_file == Path("/var/log/easy_monitoring.log")
    assert config.paths.grafana_ds_provision == Path(
        "/etc/grafana/provisioning/datasources/prometheus.yml"
    )
    assert re.fullmatch(r"monitoring-\d+", config.paths.workdir.name)
    assert config.base_packages == ("curl", "wget", "tar", "ufw")


def test_env_overrides_defaults(tmp_path: Path) -> None:
    """Environment variables replace defaults."""
    env = {
        "GRAFANA_PORT": "3300",
        "PROMETHEUS_PORT": "9190",
        "NODE_EXPORTER_PORT": "9200",
        "PROMETHEUS_VERSION": "v2.52.0",
        "NODE_EXPORTER_VERSION": "1.8.1",
        "PROMETHEUS_MEMORY_LIMIT": "1G",
        "NODE_EXPORTER_MEMORY_LIMIT": "128M",
        "WORKDIR": str(tmp_path / "work"),
        "LOG_FILE": str(tmp_path / "easy.log"),
        "GRAFANA_DS_PROVISION": str(tmp_path / "ds.yml"),
    }

    config = load_config(env=env)

    assert config.ports.as_tuple() == (3300, 9190, 9200)
    assert config.versions.prometheus == "2.52.0"
    assert config.versions.node_exporter == "1.8.1"
    assert config.memory_limits.prometheus == "1G"
    assert config.memory_limits.node_exporter == "128M"
    assert config.paths.workdir == tmp_path / "work"
    assert config.paths.log_file == tmp_path / "easy.log"
    assert config.paths.grafana_ds_provision == tmp_path / "ds.yml"


def test_flag_overrides_env_and_env_overrides_default() -> None:
    """Precedence is flag, then environment, then default."""
    config = load_config(
        env={"GRAFANA_PORT": "4000", "PROMETHEUS_PORT": "9191"},
        overrides={"ports": {"grafana": 5000}},
    )

    assert config.ports.grafana == 5000
    assert config.ports.prometheus == 9191
    assert config.ports.node_exporter == 9100


def test_config_file_sits_between_defaults_and_env(tmp_path: Path) -> None:
    """A YAML config file overrides defaults but not the environment."""
    cfg = tmp_path / "easymon.yml"
    cfg.write_text(
        "ports:\n"
        "  grafana: 3100\n"
        "  prometheus: 9095\n"
        "versions:\n"
        "  prometheus: '2.50.1'\n"
        "memory_limits:\n"
        "  prometheus: 512M\n"
    )

    config = load_config(config_file=cfg, env={"PROMETHEUS_PORT": "9096"})

    assert config.config_file == cfg
    assert config.ports.grafana == 3100
    assert config.ports.prometheus == 9096
    assert config.versions.prometheus == "2.50.1"
    assert config.memory_limits.prometheus == "512M"


def test_config_file_from_env_var(tmp_path: Path) -> None:
    """``EASYMON_CONFIG_FILE`` selects the config file."""
    cfg = tmp_path / "from-env.yml"
    cfg.write_text("ports:\n  node_exporter: 9300\n")

    config = load_config(env={"EASYMON_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.ports.node_exporter == 9300


def test_missing_config_file_is_an_error(tmp_path: Path) -> None:
    """An explicitly named config file must exist."""
    with pytest.raises(ConfigError, match="does not exist"):
        load_config(config_file=tmp_path / "absent.yml", env={})


def test_unknown_keys_rejected(tmp_path: Path) -> None:
    """Typos in the config file are reported instead of ignored."""
    cfg = tmp_path / "easymon.yml"
    cfg.write_text("ports:\n  grafanna: 3100\n")

    with pytest.raises(ConfigError, match="grafanna"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize("value", ["0", "65536", "http", "-1"])
def test_invalid_port_rejected(value: str) -> None:
    """Ports must be integers within 1..65535."""
    with pytest.raises(ConfigError, match="ports.grafana"):
        load_config(env={"GRAFANA_PORT": value})


def test_duplicate_ports_rejected() -> None:
    """The three services cannot share a port."""
    with pytest.raises(ConfigError, match="distinct"):
        load_config(env={"GRAFANA_PORT": "9090"})


@pytest.mark.parametrize("value", ["latest", "2.51.0; rm -rf /", "2.x"])
def test_invalid_version_rejected(value: str) -> None:
    """Versions must look like release numbers."""
    with pytest.raises(ConfigError, match="versions.prometheus"):
        load_config(env={"PROMETHEUS_VERSION": value})


def test_unquoted_yaml_version_rejected(tmp_path: Path) -> None:
    """A YAML float such as ``2.5`` is not silently accepted as a version."""
    cfg = tmp_path / "easymon.yml"
    cfg.write_text("versions:\n  node_exporter: 1.7\n")

    with pytest.raises(ConfigError, match="quoted version"):
        load_config(config_file=cfg, env={})


def test_invalid_memory_limit_rejected() -> None:
    """Memory limits use systemd size syntax."""
    with pytest.raises(ConfigError, match="memory_limits.prometheus"):
        load_config(env={"PROMETHEUS_MEMORY_LIMIT": "two gigs"})


def test_empty_memory_limit_disables_limit() -> None:
    """An empty memory limit removes ``MemoryMax`` for the service."""
    config = load_config(env={}, overrides={"memory_limits": {"prometheus": ""}})

    assert config.memory_limits.prometheus is None


def test_to_dict_round_trips_paths(tmp_path: Path) -> None:
    """``to_dict`` exposes plain strings suitable for logging."""
    config = load_config(env={"WORKDIR": str(tmp_path / "w")})

    data = config.to_dict()

    assert data["ports"] == {"grafana": 3000, "prometheus": 9090, "node_exporter": 9100}
    assert data["paths"]["workdir"] == str(tmp_path / "w")  # type: ignore[index]


def test_empty_env_value_counts_as_unset() -> None:
    """An exported but empty variable falls back to the default."""
    config = load_config(env={"GRAFANA_PORT": "", "PROMETHEUS_MEMORY_LIMIT": "  "})

    assert config.ports.grafana == 3000
    assert config.memory_limits.prometheus == "2G"
