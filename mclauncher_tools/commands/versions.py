"""Version list commands."""

from __future__ import annotations

import json
import sys

import click
import structlog
from rich.table import Table

from mclauncher_tools.commands.common import _get_context_objects, load_catalog
from mclauncher_tools.core.errors import LauncherError

logger = structlog.get_logger()


@click.group("versions", short_help="List and refresh known versions.")
def versions_group() -> None:
    """List and refresh the versions known to the launcher.

    The version lists are downloaded on refresh and cached in the data
    directory, so listing works offline.
    """
    pass


@versions_group.command("list")
@click.option("--betas/--no-betas", default=True, help="Include beta versions")
@click.option("--installed-only", is_flag=True, help="Only list installed versions")
@click.pass_context
def list_versions(ctx: click.Context, betas: bool, installed_only: bool) -> None:
    """List versions from the cached version lists."""
    config, console, verbose, _ = _get_context_objects(ctx)

    catalog = load_catalog(config)
    versions = catalog.filtered(
        show_betas=betas and config.show_betas,
        installed_only=installed_only or config.show_installed_only,
    )

    if config.output_format == "json":
        data = [
            {
                "name": v.name,
                "uuid": v.uuid,
                "format": v.format.value,
                "channel": v.channel.name.lower(),
                "installed": v.is_installed,
                "directory": str(v.game_directory),
            }
            for v in versions
        ]
        print(json.dumps(data, indent=2))
        return

    if not versions:
        console.print("[yellow]No versions found. Run 'mclauncher-tools versions refresh'.[/yellow]")
        return

    table = Table(title=f"Versions ({len(versions)})")
    table.add_column("Name", style="cyan")
    table.add_column("Channel", style="green")
    table.add_column("Format")
    table.add_column("Status")
    if verbose:
        table.add_column("Directory", style="dim")

    for v in versions:
        row = [v.display_name, v.channel.name.lower(), v.format.value, v.display_install_status]
        if verbose:
            row.append(str(v.game_directory))
        table.add_row(*row)

    console.print(table)


@versions_group.command("refresh")
@click.pass_context
def refresh_versions(ctx: click.Context) -> None:
    """Download the version lists and update the cache."""
    config, console, _, _ = _get_context_objects(ctx)

    catalog = load_catalog(config)
    try:
        with console.status("Downloading version lists..."):
            added = catalog.refresh()
    except LauncherError as e:
        logger.error("versions_refresh_failed", error=str(e))
        console.print(f"[red]Error refreshing versions: {e}[/red]")
        sys.exit(1)

    new = [v for v in catalog if v.is_new]
    console.print(f"[green]Version list updated: {len(catalog)} versions, {added} added.[/green]")
    for v in new:
        console.print(f"  [cyan]{v.display_name}[/cyan]")
