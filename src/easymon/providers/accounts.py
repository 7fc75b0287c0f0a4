"""Inspect, plan and create the unprivileged service accounts."""
from __future__ import annotations

import pwd
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from ..commands import CommandError, CommandRunner

NOLOGIN_SHELL = "/bin/false"


class AccountError(CommandError):
    """Raised when useradd or chown fail."""


@dataclass(slots=True)
class ServiceAccountSpec:
    """Desired attributes for a daemon's service account."""

    name: str


@dataclass(slots=True)
class ServiceAccountStatus:
    """Current state of the service account on the host."""

    user_exists: bool
    uid: int | None = None
    gid: int | None = None
    shell: str | None = None


@dataclass(slots=True)
class ServiceAccountAction:
    """Single remediation step required to satisfy the desired state."""

    kind: Literal["create-user"]
    description: str
    command: list[str]


@dataclass(slots=True)
class ServiceAccountPlan:
    """Aggregated actions and warnings for one account."""

    spec: ServiceAccountSpec
    status: ServiceAccountStatus
    actions: list[ServiceAccountAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def inspect_service_account(spec: ServiceAccountSpec) -> ServiceAccountStatus:
    """Return the current status for *spec* from the passwd database."""
    try:
        pw_entry = pwd.getpwnam(spec.name)
    except KeyError:
        return ServiceAccountStatus(user_exists=False)
    return ServiceAccountStatus(
        user_exists=True,
        uid=pw_entry.pw_uid,
        gid=pw_entry.pw_gid,
        shell=pw_entry.pw_shell,
    )


def plan_service_account(spec: ServiceAccountSpec) -> ServiceAccountPlan:
    """Return a plan describing how to satisfy *spec* on the current host."""
    status = inspect_service_account(spec)
    plan = ServiceAccountPlan(spec=spec, status=status)

    if not status.user_exists:
        plan.actions.append(
            ServiceAccountAction(
                kind="create-user",
                description=f"Create service user '{spec.name}'.",
                command=["useradd", "--no-create-home", "--shell", NOLOGIN_SHELL, spec.name],
            )
        )
    elif status.shell and status.shell != NOLOGIN_SHELL:
        plan.warnings.append(
            f"User '{spec.name}' shell '{status.shell}' differs from desired '{NOLOGIN_SHELL}'."
        )
    return plan


def apply_service_account_plan(plan: ServiceAccountPlan, runner: CommandRunner) -> None:
    """Execute the commands described by *plan*."""
    for action in plan.actions:
        runner.run(action.command, error_cls=AccountError)


def chown_recursive(
    paths: Sequence[Path],
    owner: str,
    runner: CommandRunner,
) -> None:
    """Hand *paths* and everything below them to *owner* and its group."""
    if not paths:
        return
    runner.run(
        ["chown", "-R", f"{owner}:{owner}", *(str(path) for path in paths)],
        error_cls=AccountError,
    )


__all__ = [
    "NOLOGIN_SHELL",
    "AccountError",
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "apply_service_account_plan",
    "chown_recursive",
    "inspect_service_account",
    "plan_service_account",
]
