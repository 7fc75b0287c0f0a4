"""Provider interfaces wrapping the host tools easymon drives."""
from __future__ import annotations

from .accounts import AccountError, ServiceAccountSpec
from .apt import AptError, AptPackageManager
from .downloads import DownloadError, ExtractError, HttpDownloader, TarExtractor
from .firewall import FirewallError, UfwFirewall
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "AccountError",
    "AptError",
    "AptPackageManager",
    "DownloadError",
    "ExtractError",
    "FirewallError",
    "HttpDownloader",
    "ServiceAccountSpec",
    "SystemdError",
    "SystemdProvider",
    "TarExtractor",
    "UfwFirewall",
]
