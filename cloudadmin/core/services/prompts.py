"""
Operator prompts — blocking notifications and the install confirmation step.

Core services never talk to a terminal directly.  They call a
``Prompter``; the CLI supplies an interactive one, tests and ``--yes``
runs supply ``AutoPrompter``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from cloudadmin.core.models.availability import ModuleAvailability


class Prompter(Protocol):
    def notify(self, title: str, message: str) -> None:
        """Show *message* and wait until the operator has seen it."""
        ...

    def report_error(self, title: str, message: str) -> None:
        """Show an error the operator should know about."""
        ...

    def confirm_installs(self, availability: ModuleAvailability) -> list[str]:
        """Show every module with its status; return the missing ones to install."""
        ...


@dataclass
class AutoPrompter:
    """Non-interactive prompter that records what it was shown.

    Args:
        install: Accept every missing module (the pre-checked default)
            or decline all of them.
    """

    install: bool = True
    notifications: list[tuple[str, str]] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)
    confirmations: list[ModuleAvailability] = field(default_factory=list)

    def notify(self, title: str, message: str) -> None:
        self.notifications.append((title, message))

    def report_error(self, title: str, message: str) -> None:
        self.errors.append((title, message))

    def confirm_installs(self, availability: ModuleAvailability) -> list[str]:
        self.confirmations.append(availability)
        return list(availability.missing) if self.install else []
