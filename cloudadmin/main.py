"""
cloudadmin — CLI entrypoint.

Usage:
    cloudadmin --help
    cloudadmin capabilities
    cloudadmin deps check
    cloudadmin exec Get-Mailbox -p Identity=room1@contoso.com
    cloudadmin exec Get-MgUser -p All --graph
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

import click
import yaml

from cloudadmin import __version__
from cloudadmin.adapters.shell.pwsh import pwsh_session_factory
from cloudadmin.core.engine.errors import CloudAdminError
from cloudadmin.core.models.settings import Settings
from cloudadmin.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="cloudadmin")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to cloudadmin.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """cloudadmin — Exchange Online and Microsoft Graph administration."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("CLOUDADMIN_LOG_LEVEL", "WARNING")

    if not setup_logging(
        level=level,
        log_file=os.environ.get("CLOUDADMIN_LOG_FILE"),
        log_file_level=os.environ.get("CLOUDADMIN_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    ):
        click.secho("⚠️  Log file could not be opened; logging to stderr only.", fg="yellow", err=True)


def load_context_settings(ctx: click.Context) -> Settings:
    """Settings for this invocation, loaded once.  Exits 1 on a bad config."""
    from cloudadmin.core.config.loader import load_settings

    obj = ctx.find_root().ensure_object(dict)
    if "settings" not in obj:
        try:
            obj["settings"] = load_settings(obj.get("config_path"))
        except CloudAdminError as e:
            click.secho(f"❌ {e}", fg="red", err=True)
            sys.exit(1)
    return obj["settings"]


def parse_param(item: str) -> tuple[str, Any]:
    """``KEY=VALUE`` → typed value; a bare ``KEY`` is a switch."""
    key, sep, value = item.partition("=")
    key = key.strip().lstrip("-")
    if not key:
        raise click.BadParameter(f"Invalid parameter: {item!r}")
    if not sep:
        return key, None
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return key, value
    if isinstance(parsed, (str, int, float, bool)):
        return key, parsed
    return key, value


@cli.command()
@click.option("--category", default=None, help="Only list capabilities in this category.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def capabilities(category: str | None, as_json: bool) -> None:
    """List the built-in capabilities and what they require."""
    from cloudadmin.core.services.capabilities import CapabilityRegistry
    from cloudadmin.core.services.catalog import register_all

    registry = register_all(CapabilityRegistry())
    items = registry.by_category(category) if category else registry.list_all()

    if as_json:
        click.echo(json.dumps([c.model_dump(mode="json") for c in items], indent=2))
        return

    if not items:
        click.secho(f"No capabilities in category '{category}'.", fg="yellow")
        return

    current = None
    for cap in items:
        if cap.category != current:
            current = cap.category
            click.secho(f"\n📋 {current}", fg="cyan", bold=True)
        click.echo(f"   • {cap.id:<22} {cap.display_name}")
        click.echo(f"     modules: {', '.join(cap.required_modules)}")
        click.echo(f"     scopes:  {', '.join(cap.required_scopes)}")


@cli.command("exec")
@click.argument("name")
@click.option("--param", "-p", "params", multiple=True, help="KEY=VALUE (bare KEY for a switch).")
@click.option("--raw", is_flag=True, help="Do not connect to Exchange Online first.")
@click.option("--graph", is_flag=True, help="Run through Microsoft Graph (Connect-MgGraph) instead.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def exec_command(
    ctx: click.Context,
    name: str,
    params: tuple[str, ...],
    raw: bool,
    graph: bool,
    as_json: bool,
) -> None:
    """Run one PowerShell command through the engine.

    Examples:

        cloudadmin exec Get-Mailbox -p Identity=room1@contoso.com

        cloudadmin exec Get-Module -p ListAvailable --raw

        cloudadmin exec Get-MgUser -p All --graph
    """
    from cloudadmin.core.engine.executor import CommandEngine
    from cloudadmin.core.services.auth import StaticAuthProvider
    from cloudadmin.core.services.graph import GraphChannel
    from cloudadmin.ui.cli.prompts import ClickPrompter

    if raw and graph:
        raise click.UsageError("--raw and --graph are mutually exclusive.")

    settings = load_context_settings(ctx)
    parameters = dict(parse_param(p) for p in params)

    auth = StaticAuthProvider(settings.auth.user_principal_name, settings.auth.tokens)
    engine = CommandEngine(
        auth,
        settings=settings.engine,
        session_factory=pwsh_session_factory,
        prompter=ClickPrompter(),
    )

    async def _run():
        async with engine:
            if graph:
                return await GraphChannel(engine, auth).run(name, parameters)
            if raw:
                return await engine.execute_raw_command(name, parameters)
            return await engine.execute_command(name, parameters)

    try:
        result = asyncio.run(_run())
    except CloudAdminError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2, default=str))
        return

    if not result.records:
        click.secho(f"✓ {result.command} completed (no output).", fg="green")
        return
    for index, record in enumerate(result.records):
        if index:
            click.echo()
        for key, value in record.items():
            click.echo(f"{key}: {value}")


# ── Register sub-command groups from cloudadmin/ui/cli/ ───────────

from cloudadmin.ui.cli.deps import deps  # noqa: E402

cli.add_command(deps)


if __name__ == "__main__":
    cli()
