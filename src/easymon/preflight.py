"""Preconditions that must hold before the host is touched."""
from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass

from .errors import ProvisionError


class PreflightError(ProvisionError):
    """Raised when a precondition for provisioning is not met."""


@dataclass(slots=True)
class PreflightChecker:
    """Verify privilege and package-manager availability.

    Only these two conditions are checked; disk space and connectivity are
    left to the steps that need them.
    """

    lock_held: Callable[[], bool]
    geteuid: Callable[[], int] = os.geteuid

    def check(self) -> None:
        """Raise :class:`PreflightError` unless provisioning may proceed."""
        if self.geteuid() != 0:
            raise PreflightError("This script must be run as root")
        if self.lock_held():
            raise PreflightError(
                "APT system is locked - ensure no other package operations are running"
            )


__all__ = ["PreflightChecker", "PreflightError"]
