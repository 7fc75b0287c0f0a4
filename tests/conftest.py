"""Shared fakes and fixtures for the easymon test suite."""

from __future__ import annotations

import io
import pwd
import subprocess
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

import pytest
from rich.console import Console

from easymon.commands import CommandError
from easymon.config import AppConfig, load_config
from easymon.logging import StructuredLogger
from easymon.providers.downloads import DownloadError


class FakeRunner:
    """Record commands instead of executing them.

    Responses are matched by argv prefix; the most recently registered match
    wins. Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        """Start with no recorded calls and no canned responses."""
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self.envs: list[dict[str, str]] = []
        self.missing: set[str] = set()
        self._responses: list[tuple[tuple[str, ...], int, str, str]] = []

    def respond(
        self,
        prefix: Sequence[str],
        *,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Return the given result for commands starting with *prefix*."""
        self._responses.append((tuple(prefix), returncode, stdout, stderr))

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        input: str | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        error_cls: type[CommandError] = CommandError,
    ) -> subprocess.CompletedProcess[str]:
        """Record *args* and return the matching canned result."""
        command = [str(arg) for arg in args]
        self.calls.append(command)
        self.inputs.append(input)
        self.envs.append(dict(env or {}))
        if command[0] in self.missing:
            raise error_cls(f"Command failed: {command[0]} not found", command=command)
        returncode, stdout, stderr = 0, "", ""
        for prefix, *response in reversed(self._responses):
            if tuple(command[: len(prefix)]) == prefix:
                returncode, stdout, stderr = response
                break
        if check and returncode != 0:
            raise error_cls(
                f"Command failed: {' '.join(command)} (exit {returncode}): {stderr}",
                command=command,
                returncode=returncode,
                output=stderr,
            )
        return subprocess.CompletedProcess(command, returncode, stdout, stderr)

    def commands_starting_with(self, *prefix: str) -> list[list[str]]:
        """Return recorded commands beginning with *prefix*."""
        return [call for call in self.calls if tuple(call[: len(prefix)]) == prefix]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Return a fresh :class:`FakeRunner`."""
    return FakeRunner()


def _tmp_paths(root: Path) -> dict[str, object]:
    return {
        "workdir": str(root / "work"),
        "log_file": str(root / "log" / "easy_monitoring.log"),
        "grafana_ds_provision": str(
            root / "etc" / "grafana" / "provisioning" / "datasources" / "prometheus.yml"
        ),
        "grafana_ini": str(root / "etc" / "grafana" / "grafana.ini"),
        "prometheus_dir": str(root / "etc" / "prometheus"),
        "prometheus_data_dir": str(root / "var" / "lib" / "prometheus"),
        "bin_dir": str(root / "usr" / "local" / "bin"),
        "systemd_dir": str(root / "etc" / "systemd" / "system"),
        "apt_keyring_dir": str(root / "etc" / "apt" / "trusted.gpg.d"),
        "apt_sources_dir": str(root / "etc" / "apt" / "sources.list.d"),
        "apt_lock": str(root / "var" / "lib" / "apt" / "lists" / "lock"),
        "templates_dir": str(root / "templates"),
    }


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., AppConfig]:
    """Return a factory building configs whose paths all live under ``tmp_path``."""

    def factory(
        overrides: Mapping[str, object] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> AppConfig:
        merged: dict[str, object] = {"paths": _tmp_paths(tmp_path)}
        for section, values in (overrides or {}).items():
            if isinstance(values, Mapping) and isinstance(merged.get(section), dict):
                merged[section] = {**merged[section], **values}  # type: ignore[dict-item]
            else:
                merged[section] = values
        return load_config(env=dict(env or {}), overrides=merged)

    return factory


@pytest.fixture
def config(make_config: Callable[..., AppConfig]) -> AppConfig:
    """Return the default configuration rooted under ``tmp_path``."""
    return make_config()


def make_logger(log_file: Path | None) -> StructuredLogger:
    """Return a logger whose terminal output is captured in memory."""
    console = Console(file=io.StringIO(), width=200, color_system=None)
    return StructuredLogger(log_file, console=console)


def console_output(logger: StructuredLogger) -> str:
    """Return everything *logger* printed to its terminal."""
    stream = logger.console.file
    assert isinstance(stream, io.StringIO)
    return stream.getvalue()


@pytest.fixture
def logger(config: AppConfig) -> StructuredLogger:
    """Return a captured logger writing to the configured log file."""
    return make_logger(config.paths.log_file)


class FakeDownloader:
    """Serve canned text bodies and write placeholder archives."""

    def __init__(self, texts: Mapping[str, str] | None = None) -> None:
        """Remember *texts* keyed by URL; unknown text URLs fail."""
        self.texts = dict(texts or {})
        self.fetched: list[str] = []

    def fetch(self, url: str, destination: Path) -> Path:
        """Pretend to download *url* into *destination*."""
        self.fetched.append(url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"archive")
        return destination

    def fetch_text(self, url: str) -> str:
        """Return the canned body for *url*."""
        self.fetched.append(url)
        if url not in self.texts:
            raise DownloadError(f"Download failed: {url}: unreachable", command=["GET", url])
        return self.texts[url]


class FakeExtractor:
    """Materialise a release directory instead of running ``tar``."""

    def __init__(self) -> None:
        """Start with no extracted archives."""
        self.extracted: list[Path] = []

    def extract(self, archive: Path, destination: Path) -> Path:
        """Create ``<destination>/<archive stem>/`` with stub executables."""
        self.extracted.append(archive)
        release = destination / archive.name.removesuffix(".tar.gz")
        release.mkdir(parents=True, exist_ok=True)
        for name in ("prometheus", "promtool", "node_exporter"):
            (release / name).write_text("#!/bin/sh\n")
        (release / "consoles").mkdir(exist_ok=True)
        (release / "consoles" / "index.html.example").write_text("<html/>\n")
        return destination


def which_in(directory: Path) -> Callable[[str], str | None]:
    """Return a ``shutil.which`` stand-in that only searches *directory*."""

    def which(name: str) -> str | None:
        candidate = directory / name
        return str(candidate) if candidate.is_file() else None

    return which


@pytest.fixture
def no_accounts(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pretend no service accounts exist on the host."""

    def getpwnam(name: str) -> object:
        raise KeyError(name)

    monkeypatch.setattr(pwd, "getpwnam", getpwnam)


def default_texts(config: AppConfig) -> dict[str, str]:
    """Return canned responses for the Grafana key and public IP lookups."""
    return {
        config.downloads.grafana_key_url: "-----BEGIN PGP PUBLIC KEY BLOCK-----\n",
        config.downloads.ip_lookup_url: "203.0.113.5\n",
    }
