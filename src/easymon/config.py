"""Configuration loader for easymon.

Configuration values are merged from several sources, lowest precedence
first:

1. Built-in defaults.
2. An optional YAML file (``--config-file`` or ``EASYMON_CONFIG_FILE``).
3. Environment variables (``GRAFANA_PORT``, ``PROMETHEUS_VERSION``, ...).
4. Explicit overrides supplied programmatically (CLI flags).

Environment values are kept as strings and validated like every other
source, so ``PROMETHEUS_VERSION=2.10`` stays ``"2.10"`` rather than becoming a
float. The merged result is exposed as frozen ``dataclasses`` and never
changes for the rest of the run.
"""
from __future__ import annotations

import os
import re
import tempfile
import time
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except ImportError as exc:  # pragma: no cover
    raise RuntimeError(
        "PyYAML is required to load easymon configuration. Install with "
        "`pip install easymon` or ensure PyYAML>=6.0 is available."
    ) from exc

from .errors import ProvisionError

CONFIG_ENV_VAR = "EASYMON_CONFIG_FILE"

ENV_VARS: dict[str, tuple[str, str]] = {
    "GRAFANA_PORT": ("ports", "grafana"),
    "PROMETHEUS_PORT": ("ports", "prometheus"),
    "NODE_EXPORTER_PORT": ("ports", "node_exporter"),
    "PROMETHEUS_VERSION": ("versions", "prometheus"),
    "NODE_EXPORTER_VERSION": ("versions", "node_exporter"),
    "PROMETHEUS_MEMORY_LIMIT": ("memory_limits", "prometheus"),
    "NODE_EXPORTER_MEMORY_LIMIT": ("memory_limits", "node_exporter"),
    "WORKDIR": ("paths", "workdir"),
    "LOG_FILE": ("paths", "log_file"),
    "GRAFANA_DS_PROVISION": ("paths", "grafana_ds_provision"),
}

_VERSION_RE = re.compile(r"^\d+(?:\.\d+)*(?:[-+][0-9A-Za-z.-]+)?$")
_MEMORY_RE = re.compile(r"^(?:\d+(?:\.\d+)?[KMGTP]?|\d+(?:\.\d+)?%|infinity)$")


class ConfigError(ProvisionError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PortsConfig:
    """Listening ports for the three services."""

    grafana: int = 3000
    prometheus: int = 9090
    node_exporter: int = 9100

    def as_tuple(self) -> tuple[int, int, int]:
        """Return the ports in firewall order."""
        return (self.grafana, self.prometheus, self.node_exporter)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "grafana": self.grafana,
            "prometheus": self.prometheus,
            "node_exporter": self.node_exporter,
        }


@dataclass(frozen=True)
class VersionsConfig:
    """Upstream release versions for tarball-installed components."""

    prometheus: str = "2.51.0"
    node_exporter: str = "1.7.0"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"prometheus": self.prometheus, "node_exporter": self.node_exporter}


@dataclass(frozen=True)
class MemoryLimitsConfig:
    """Per-service memory ceilings; ``None`` leaves the unit unbounded."""

    prometheus: str | None = "2G"
    node_exporter: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"prometheus": self.prometheus, "node_exporter": self.node_exporter}


@dataclass(frozen=True)
class PathsConfig:
    """Filesystem locations read or written during provisioning."""

    workdir: Path
    log_file: Path = Path("/var/log/easy_monitoring.log")
    grafana_ds_provision: Path = Path("/etc/grafana/provisioning/datasources/prometheus.yml")
    grafana_ini: Path = Path("/etc/grafana/grafana.ini")
    prometheus_dir: Path = Path("/etc/prometheus")
    prometheus_data_dir: Path = Path("/var/lib/prometheus")
    bin_dir: Path = Path("/usr/local/bin")
    systemd_dir: Path = Path("/etc/systemd/system")
    apt_keyring_dir: Path = Path("/etc/apt/trusted.gpg.d")
    apt_sources_dir: Path = Path("/etc/apt/sources.list.d")
    apt_lock: Path = Path("/var/lib/apt/lists/lock")
    templates_dir: Path = Path("/etc/easymon/templates")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "workdir": str(self.workdir),
            "log_file": str(self.log_file),
            "grafana_ds_provision": str(self.grafana_ds_provision),
            "grafana_ini": str(self.grafana_ini),
            "prometheus_dir": str(self.prometheus_dir),
            "prometheus_data_dir": str(self.prometheus_data_dir),
            "bin_dir": str(self.bin_dir),
            "systemd_dir": str(self.systemd_dir),
            "apt_keyring_dir": str(self.apt_keyring_dir),
            "apt_sources_dir": str(self.apt_sources_dir),
            "apt_lock": str(self.apt_lock),
            "templates_dir": str(self.templates_dir),
        }


@dataclass(frozen=True)
class AccountsConfig:
    """Dedicated service account names."""

    prometheus: str = "prometheus"
    node_exporter: str = "node_exporter"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"prometheus": self.prometheus, "node_exporter": self.node_exporter}


@dataclass(frozen=True)
class DownloadsConfig:
    """Remote locations used by the installers."""

    release_base_url: str = "https://github.com/prometheus"
    platform: str = "linux-amd64"
    grafana_key_url: str = "https://packages.grafana.com/gpg.key"
    grafana_repo: str = "https://packages.grafana.com/oss/deb stable main"
    ip_lookup_url: str = "https://icanhazip.com"
    timeout: float = 60.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "release_base_url": self.release_base_url,
            "platform": self.platform,
            "grafana_key_url": self.grafana_key_url,
            "grafana_repo": self.grafana_repo,
            "ip_lookup_url": self.ip_lookup_url,
            "timeout": self.timeout,
        }


@dataclass(frozen=True)
class ScrapeConfig:
    """Global Prometheus intervals."""

    scrape_interval: str = "15s"
    evaluation_interval: str = "15s"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "scrape_interval": self.scrape_interval,
            "evaluation_interval": self.evaluation_interval,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for a provisioning run."""

    config_file: Path | None
    ports: PortsConfig
    versions: VersionsConfig
    memory_limits: MemoryLimitsConfig
    paths: PathsConfig
    accounts: AccountsConfig
    downloads: DownloadsConfig
    scrape: ScrapeConfig
    base_packages: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file) if self.config_file else None,
            "ports": self.ports.to_dict(),
            "versions": self.versions.to_dict(),
            "memory_limits": self.memory_limits.to_dict(),
            "paths": self.paths.to_dict(),
            "accounts": self.accounts.to_dict(),
            "downloads": self.downloads.to_dict(),
            "scrape": self.scrape.to_dict(),
            "base_packages": list(self.base_packages),
        }


DEFAULTS: dict[str, object] = {
    "ports": {
        "grafana": 3000,
        "prometheus": 9090,
        "node_exporter": 9100,
    },
    "versions": {
        "prometheus": "2.51.0",
        "node_exporter": "1.7.0",
    },
    "memory_limits": {
        "prometheus": "2G",
        "node_exporter": None,
    },
    "paths": {
        "workdir": None,  # derived from the current time when absent
        "log_file": "/var/log/easy_monitoring.log",
        "grafana_ds_provision": "/etc/grafana/provisioning/datasources/prometheus.yml",
        "grafana_ini": "/etc/grafana/grafana.ini",
        "prometheus_dir": "/etc/prometheus",
        "prometheus_data_dir": "/var/lib/prometheus",
        "bin_dir": "/usr/local/bin",
        "systemd_dir": "/etc/systemd/system",
        "apt_keyring_dir": "/etc/apt/trusted.gpg.d",
        "apt_sources_dir": "/etc/apt/sources.list.d",
        "apt_lock": "/var/lib/apt/lists/lock",
        "templates_dir": "/etc/easymon/templates",
    },
    "accounts": {
        "prometheus": "prometheus",
        "node_exporter": "node_exporter",
    },
    "downloads": {
        "release_base_url": "https://github.com/prometheus",
        "platform": "linux-amd64",
        "grafana_key_url": "https://packages.grafana.com/gpg.key",
        "grafana_repo": "https://packages.grafana.com/oss/deb stable main",
        "ip_lookup_url": "https://icanhazip.com",
        "timeout": 60.0,
    },
    "scrape": {
        "scrape_interval": "15s",
        "evaluation_interval": "15s",
    },
    "base_packages": ["curl", "wget", "tar", "ufw"],
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_path = _determine_config_path(config_file, resolved_env)
    if config_path is not None:
        file_values = _load_yaml_file(config_path)
        _validate_structure(file_values, DEFAULTS, f"file:{config_path}")
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        override_values = _as_dict(overrides, "overrides")
        _validate_structure(override_values, DEFAULTS, "overrides")
        _deep_merge(merged, override_values)

    return _build_app_config(merged, config_path)


def _determine_config_path(
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path | None:
    if cli_override:
        return Path(cli_override).expanduser()
    value = env.get(CONFIG_ENV_VAR, "").strip()
    if value:
        return Path(value).expanduser()
    return None


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        raise ConfigError(f"Config file {path} does not exist.")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, (section, field) in ENV_VARS.items():
        value = env.get(key, "").strip()
        # Empty counts as unset, as with a shell default.
        if not value:
            continue
        _assign_nested(overrides, [section, field], value)
    return overrides


def _validate_structure(
    raw: Mapping[str, object],
    schema: Mapping[str, object],
    label: str,
) -> None:
    unknown = set(raw.keys()) - set(schema.keys())
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown configuration keys in {label}: {joined}.")
    for key, value in raw.items():
        nested = schema[key]
        if isinstance(nested, Mapping) and value is not None:
            _validate_structure(_as_dict(value, f"{label}.{key}"), nested, f"{label}.{key}")


def _build_app_config(raw: Mapping[str, object], config_path: Path | None) -> AppConfig:
    ports_map = _as_dict(raw.get("ports"), "ports")
    ports = PortsConfig(
        grafana=_expect_port(ports_map.get("grafana"), "ports.grafana", default=3000),
        prometheus=_expect_port(ports_map.get("prometheus"), "ports.prometheus", default=9090),
        node_exporter=_expect_port(
            ports_map.get("node_exporter"), "ports.node_exporter", default=9100
        ),
    )
    if len(set(ports.as_tuple())) != len(ports.as_tuple()):
        raise ConfigError(
            "ports.grafana, ports.prometheus and ports.node_exporter must be distinct. "
            f"Got {ports.grafana}, {ports.prometheus}, {ports.node_exporter}."
        )

    versions_map = _as_dict(raw.get("versions"), "versions")
    versions = VersionsConfig(
        prometheus=_expect_version(versions_map.get("prometheus"), "versions.prometheus"),
        node_exporter=_expect_version(
            versions_map.get("node_exporter"), "versions.node_exporter"
        ),
    )

    limits_map = _as_dict(raw.get("memory_limits"), "memory_limits")
    memory_limits = MemoryLimitsConfig(
        prometheus=_expect_memory_limit(limits_map.get("prometheus"), "memory_limits.prometheus"),
        node_exporter=_expect_memory_limit(
            limits_map.get("node_exporter"), "memory_limits.node_exporter"
        ),
    )

    paths_map = _as_dict(raw.get("paths"), "paths")
    workdir_value = paths_map.get("workdir")
    workdir = (
        _to_path(workdir_value)
        if workdir_value
        else Path(tempfile.gettempdir()) / f"monitoring-{int(time.time())}"
    )
    default_paths = _as_dict(DEFAULTS["paths"], "paths")

    def path_for(key: str) -> Path:
        value = paths_map.get(key)
        return _to_path(value if value else default_paths[key])

    paths = PathsConfig(
        workdir=workdir,
        log_file=path_for("log_file"),
        grafana_ds_provision=path_for("grafana_ds_provision"),
        grafana_ini=path_for("grafana_ini"),
        prometheus_dir=path_for("prometheus_dir"),
        prometheus_data_dir=path_for("prometheus_data_dir"),
        bin_dir=path_for("bin_dir"),
        systemd_dir=path_for("systemd_dir"),
        apt_keyring_dir=path_for("apt_keyring_dir"),
        apt_sources_dir=path_for("apt_sources_dir"),
        apt_lock=path_for("apt_lock"),
        templates_dir=path_for("templates_dir"),
    )

    accounts_map = _as_dict(raw.get("accounts"), "accounts")
    accounts = AccountsConfig(
        prometheus=_expect_name(accounts_map.get("prometheus"), "accounts.prometheus"),
        node_exporter=_expect_name(accounts_map.get("node_exporter"), "accounts.node_exporter"),
    )

    downloads_map = _as_dict(raw.get("downloads"), "downloads")
    downloads = DownloadsConfig(
        release_base_url=_expect_str(
            downloads_map.get("release_base_url"), "downloads.release_base_url"
        ).rstrip("/"),
        platform=_expect_str(downloads_map.get("platform"), "downloads.platform"),
        grafana_key_url=_expect_str(
            downloads_map.get("grafana_key_url"), "downloads.grafana_key_url"
        ),
        grafana_repo=_expect_str(downloads_map.get("grafana_repo"), "downloads.grafana_repo"),
        ip_lookup_url=_expect_str(downloads_map.get("ip_lookup_url"), "downloads.ip_lookup_url"),
        timeout=_expect_positive_float(
            downloads_map.get("timeout"), "downloads.timeout", default=60.0
        ),
    )

    scrape_map = _as_dict(raw.get("scrape"), "scrape")
    scrape = ScrapeConfig(
        scrape_interval=_expect_str(scrape_map.get("scrape_interval"), "scrape.scrape_interval"),
        evaluation_interval=_expect_str(
            scrape_map.get("evaluation_interval"), "scrape.evaluation_interval"
        ),
    )

    base_packages = tuple(
        _expect_name(item, f"base_packages[{index}]")
        for index, item in enumerate(_as_sequence(raw.get("base_packages"), "base_packages"))
    )

    return AppConfig(
        config_file=config_path,
        ports=ports,
        versions=versions,
        memory_limits=memory_limits,
        paths=paths,
        accounts=accounts,
        downloads=downloads,
        scrape=scrape,
        base_packages=base_packages,
    )


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        child = current.setdefault(segment, {})
        if not isinstance(child, MutableMapping):
            raise ConfigError(
                "Environment overrides conflict with existing scalar value at "
                f"{'.'.join(path)}"
            )
        current = child
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, str):
        return value.split()
    if not isinstance(value, Sequence) or isinstance(value, bytes):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _to_path(value: object) -> Path:
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str) and value.strip():
        return Path(value.strip()).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_port(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        port = value
    elif isinstance(value, str):
        try:
            port = int(value.strip(), 10)
        except ValueError as exc:
            raise ConfigError(f"Invalid port for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")
    if not 1 <= port <= 65535:
        raise ConfigError(f"{label} must be between 1 and 65535. Got {port}.")
    return port


def _expect_version(value: object | None, label: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(
            f"Expected {label} to be a quoted version string. Got {value!r}."
        )
    version = value.strip().removeprefix("v")
    if not _VERSION_RE.match(version):
        raise ConfigError(f"Invalid version for {label}: {value!r}.")
    return version


def _expect_memory_limit(value: object | None, label: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ConfigError(f"Expected {label} to be a size such as '2G'. Got {value!r}.")
    text = str(value).strip()
    if not text:
        return None
    if not _MEMORY_RE.match(text):
        raise ConfigError(f"Invalid memory limit for {label}: {value!r}.")
    return text


def _expect_name(value: object | None, label: str) -> str:
    text = _expect_str(value, label)
    if any(char.isspace() for char in text):
        raise ConfigError(f"{label} must not contain whitespace. Got {text!r}.")
    return text


def _expect_str(value: object | None, label: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ConfigError(f"Expected {label} to be a non-empty string. Got {value!r}.")


def _expect_positive_float(value: object | None, label: str, *, default: float) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


__all__ = [
    "AccountsConfig",
    "AppConfig",
    "ConfigError",
    "DownloadsConfig",
    "ENV_VARS",
    "MemoryLimitsConfig",
    "PathsConfig",
    "PortsConfig",
    "ScrapeConfig",
    "VersionsConfig",
    "load_config",
]
