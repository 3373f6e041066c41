"""Save data inspection and migration commands."""

from __future__ import annotations

import json
import sys

import click
import structlog
from rich.table import Table

from mclauncher_tools.commands.common import (
    _get_context_objects,
    find_version,
    load_catalog,
    version_options,
)
from mclauncher_tools.core.catalog import detect_format
from mclauncher_tools.core.deployment import WindowsPackageManager
from mclauncher_tools.core.errors import MigrationConflictError
from mclauncher_tools.core.migration import DataMigration, MigrationAction

logger = structlog.get_logger()


@click.group("data", short_help="Inspect and migrate save data.")
def data_group() -> None:
    """Inspect and migrate save data between package formats.

    Save data can live in the archive package's data directory, in one
    directory per Windows account for the container build, or in the
    backup directory left by an interrupted removal.
    """
    pass


def _create_migration(ctx: click.Context) -> DataMigration:
    config, _, _, _ = _get_context_objects(ctx)
    package_manager = WindowsPackageManager(config.deployment.wdapp_path)
    return DataMigration(package_manager, config.deployment)


@data_group.command("status")
@click.argument("name")
@version_options
@click.pass_context
def status(ctx: click.Context, name: str, channel: str | None, fmt: str | None) -> None:
    """Show save data locations for version NAME and the planned action."""
    config, console, _, _ = _get_context_objects(ctx)

    version = find_version(load_catalog(config), console, name, channel, fmt)
    migration = _create_migration(ctx)
    target = detect_format(version.game_directory, version.format)
    candidates = migration.find_candidates(version.package_family, version.channel)
    plan = migration.plan(version.package_family, version.channel, target)

    if config.output_format == "json":
        data = {
            "version": version.name,
            "target_format": target.value,
            "action": plan.action.value,
            "candidates": [
                {"kind": c.kind.value, "path": str(c.path), "worlds": c.world_count, "account": c.account}
                for c in candidates
            ],
        }
        print(json.dumps(data, indent=2))
        return

    table = Table(title=f"Save data for {version.display_name}")
    table.add_column("Location", style="cyan")
    table.add_column("Path")
    table.add_column("Worlds", justify="right")
    for c in candidates:
        kind = c.kind.value if c.account is None else f"{c.kind.value} ({c.account})"
        table.add_row(kind, str(c.path), str(c.world_count))
    console.print(table)

    if plan.action == MigrationAction.conflict:
        console.print("[yellow]Save data exists in more than one location; merge it by hand.[/yellow]")
    else:
        console.print(f"Planned action before launching ({target.value}): [bold]{plan.action.value}[/bold]")


@data_group.command("migrate")
@click.argument("name")
@version_options
@click.pass_context
def migrate(ctx: click.Context, name: str, channel: str | None, fmt: str | None) -> None:
    """Move save data where version NAME expects it."""
    config, console, _, _ = _get_context_objects(ctx)

    version = find_version(load_catalog(config), console, name, channel, fmt)
    migration = _create_migration(ctx)
    target = detect_format(version.game_directory, version.format)
    plan = migration.plan(version.package_family, version.channel, target)

    if not plan.needs_action:
        console.print("[green]Save data is already in place.[/green]")
        return

    try:
        skipped = migration.apply(plan)
    except MigrationConflictError as e:
        logger.error("data_migrate_conflict", version=version.name, candidates=len(e.candidates))
        console.print(f"[red]Error: {e.operator_message}[/red]")
        sys.exit(1)
    except OSError as e:
        logger.error("data_migrate_failed", version=version.name, error=str(e))
        console.print(f"[red]Error moving save data: {e}[/red]")
        sys.exit(1)

    if skipped:
        console.print(f"[yellow]{skipped} entries already existed at the destination and were left in place.[/yellow]")
    console.print(f"[green]Save data migration done: {plan.action.value}[/green]")
