"""UFW provider for inbound port rules."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ..commands import CommandError, CommandRunner


class FirewallError(CommandError):
    """Raised when ufw invocations fail."""


@dataclass(slots=True)
class UfwFirewall:
    """Stage default policies and port rules, then turn enforcement on."""

    runner: CommandRunner
    ufw_bin: str = "ufw"

    def configure(self, ports: Iterable[int]) -> list[list[str]]:
        """Deny inbound by default and allow *ports* over TCP.

        ``ufw --force enable`` runs last so enforcement never starts before the
        allow rules exist. Returns the executed commands in order.
        """
        commands: list[list[str]] = [
            [self.ufw_bin, "default", "deny", "incoming"],
            [self.ufw_bin, "default", "allow", "outgoing"],
        ]
        seen: set[int] = set()
        for port in ports:
            if port in seen:
                continue
            seen.add(port)
            commands.append([self.ufw_bin, "allow", f"{port}/tcp"])
        commands.append([self.ufw_bin, "--force", "enable"])

        for command in commands:
            self.runner.run(command, error_cls=FirewallError)
        return commands


__all__ = ["FirewallError", "UfwFirewall"]
