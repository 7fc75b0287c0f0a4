"""Base exception shared by every provisioning failure."""
from __future__ import annotations


class ProvisionError(RuntimeError):
    """Raised when a provisioning step cannot complete.

    Subclasses describe the failure family (configuration, preflight, external
    command, installer). The CLI treats every subclass as fatal.
    """


__all__ = ["ProvisionError"]
