"""
Terminal prompter — notices and the install confirmation step via click.
"""

from __future__ import annotations

import click

from cloudadmin.core.models.availability import ModuleAvailability


class ClickPrompter:
    """Interactive ``Prompter``.

    Args:
        assume_yes: Install every missing module without asking.
        no_install: Show the list but install nothing.
    """

    def __init__(self, assume_yes: bool = False, no_install: bool = False):
        self.assume_yes = assume_yes
        self.no_install = no_install

    def notify(self, title: str, message: str) -> None:
        click.secho(f"\n🔔 {title}", fg="yellow", bold=True, err=True)
        click.echo(f"   {message}", err=True)

    def report_error(self, title: str, message: str) -> None:
        click.secho(f"❌ {title}: {message}", fg="red", err=True)

    def confirm_installs(self, availability: ModuleAvailability) -> list[str]:
        click.secho("\n📦 PowerShell modules", fg="cyan", bold=True, err=True)
        for name, installed in availability.items():
            if installed:
                click.secho(f"   ✓ {name}", fg="green", err=True)
            else:
                click.secho(f"   ✗ {name} (not installed)", fg="yellow", err=True)

        missing = availability.missing
        if not missing or self.no_install:
            return []
        if self.assume_yes:
            return list(missing)
        return [
            name for name in missing
            if click.confirm(f"   Install {name}?", default=True, err=True)
        ]
