"""Network downloads and archive extraction."""
from __future__ import annotations

import http.client
import shutil
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path

from .. import __version__
from ..commands import CommandError, CommandRunner


class DownloadError(CommandError):
    """Raised when a remote resource cannot be fetched."""


class ExtractError(CommandError):
    """Raised when an archive cannot be unpacked."""


@dataclass(slots=True)
class HttpDownloader:
    """Fetch HTTP(S) resources with a fixed timeout."""

    timeout: float = 60.0
    user_agent: str = f"easymon/{__version__}"

    def fetch(self, url: str, destination: Path) -> Path:
        """Stream *url* into *destination* and return the path."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._open(url) as response, destination.open("wb") as handle:
                shutil.copyfileobj(response, handle, length=1024 * 1024)
        except (OSError, ValueError, http.client.HTTPException) as exc:
            destination.unlink(missing_ok=True)
            raise DownloadError(f"Download failed: {url}: {exc}", command=["GET", url]) from exc
        return destination

    def fetch_text(self, url: str) -> str:
        """Return the body of *url* decoded as UTF-8."""
        try:
            with self._open(url) as response:
                return response.read().decode("utf-8")
        except (OSError, ValueError, http.client.HTTPException) as exc:
            raise DownloadError(f"Download failed: {url}: {exc}", command=["GET", url]) from exc

    def _open(self, url: str):  # noqa: ANN202 - urllib response type is private
        request = urllib.request.Request(url, headers={"User-Agent": self.user_agent})
        return urllib.request.urlopen(request, timeout=self.timeout)  # noqa: S310


@dataclass(slots=True)
class TarExtractor:
    """Unpack gzip-compressed tarballs with the system ``tar``."""

    runner: CommandRunner
    tar_bin: str = "tar"

    def extract(self, archive: Path, destination: Path) -> Path:
        """Extract *archive* into *destination* and return the destination."""
        destination.mkdir(parents=True, exist_ok=True)
        self.runner.run(
            [self.tar_bin, "-xzf", str(archive), "-C", str(destination)],
            error_cls=ExtractError,
        )
        return destination


__all__ = ["DownloadError", "ExtractError", "HttpDownloader", "TarExtractor"]
