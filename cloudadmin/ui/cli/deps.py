"""
CLI commands for PowerShell module dependencies.

Thin wrappers over ``cloudadmin.core.services.dependency_resolver``.
"""

from __future__ import annotations

import asyncio
import json
import sys

import click

from cloudadmin.adapters.shell.runner import run_bounded
from cloudadmin.core.engine.errors import CloudAdminError
from cloudadmin.core.services.capabilities import CapabilityRegistry
from cloudadmin.core.services.catalog import register_all
from cloudadmin.core.services.dependency_resolver import DependencyResolver
from cloudadmin.ui.cli.prompts import ClickPrompter


@click.group()
def deps() -> None:
    """Dependencies — check and install the PowerShell modules capabilities need."""


@deps.command()
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Install missing modules without asking.")
@click.option("--no-install", is_flag=True, help="Report only; install nothing.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def check(ctx: click.Context, assume_yes: bool, no_install: bool, as_json: bool) -> None:
    """Check the runtime and every module the capabilities require."""
    from cloudadmin.main import load_context_settings

    settings = load_context_settings(ctx)
    registry = register_all(CapabilityRegistry())
    resolver = DependencyResolver(
        ClickPrompter(assume_yes=assume_yes, no_install=no_install),
        settings.resolver,
        runner=run_bounded,
    )

    try:
        availability = asyncio.run(resolver.resolve(registry.descriptors))
    except CloudAdminError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(availability.to_dict(), indent=2))
        return

    click.echo()
    for name, installed in availability.items():
        if installed:
            click.secho(f"   ✅ {name}", fg="green")
        else:
            click.secho(f"   ❌ {name}", fg="red")

    if not availability.all_installed:
        click.secho(
            f"\n   {len(availability.missing)} module(s) missing; "
            "capabilities that need them will not work.",
            fg="yellow",
        )
        sys.exit(1)
