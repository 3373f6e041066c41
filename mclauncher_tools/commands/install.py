"""Commands operating on a single version: download, launch, remove, import."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click
import structlog
from rich.console import Console

from mclauncher_tools.commands.common import (
    ConsoleOperator,
    _get_context_objects,
    find_version,
    install_progress,
    load_catalog,
    version_options,
)
from mclauncher_tools.core.config import AppConfig
from mclauncher_tools.core.orchestrator import VersionManager

logger = structlog.get_logger()


def _create_manager(config: AppConfig, console: Console, assume_yes: bool = False) -> VersionManager:
    operator = ConsoleOperator(console, assume_yes=assume_yes)
    return VersionManager(config, load_catalog(config), operator)


def _run(manager: VersionManager, coro) -> object:
    async def _main():
        try:
            return await coro
        finally:
            await manager.aclose()

    return asyncio.run(_main())


@click.command()
@click.argument("name")
@version_options
@click.pass_context
def download(ctx: click.Context, name: str, channel: str | None, fmt: str | None) -> None:
    """Download and install version NAME."""
    config, console, _, _ = _get_context_objects(ctx)

    manager = _create_manager(config, console)
    version = find_version(manager.catalog, console, name, channel, fmt)

    with install_progress(version, console, enabled=config.output_format == "rich"):
        ok = _run(manager, manager.download(version))

    if not ok:
        sys.exit(1)
    console.print(f"[green]Installed {version.display_name} to {version.game_directory}[/green]")


@click.command()
@click.argument("name")
@version_options
@click.pass_context
def launch(ctx: click.Context, name: str, channel: str | None, fmt: str | None) -> None:
    """Launch installed version NAME."""
    config, console, _, _ = _get_context_objects(ctx)

    manager = _create_manager(config, console)
    version = find_version(manager.catalog, console, name, channel, fmt)
    if not version.is_installed:
        console.print(f"[red]Error: {version.display_name} is not installed[/red]")
        sys.exit(1)

    with install_progress(version, console, enabled=config.output_format == "rich"):
        ok = _run(manager, manager.launch(version))

    if not ok:
        sys.exit(1)
    console.print(f"[green]Launched {version.display_name}[/green]")


@click.command()
@click.argument("name")
@version_options
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def remove(ctx: click.Context, name: str, channel: str | None, fmt: str | None, yes: bool) -> None:
    """Uninstall version NAME and delete its directory."""
    config, console, _, _ = _get_context_objects(ctx)

    manager = _create_manager(config, console, assume_yes=yes)
    version = find_version(manager.catalog, console, name, channel, fmt)
    if not yes and not click.confirm(f"Remove {version.display_name} from {version.game_directory}?"):
        return

    ok = _run(manager, manager.remove(version))
    if not ok:
        sys.exit(1)
    console.print(f"[green]Removed {version.display_name}[/green]")


@click.command("import")
@click.argument("package", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--yes", "-y", is_flag=True, help="Replace an existing import without asking")
@click.pass_context
def import_package(ctx: click.Context, package: Path, yes: bool) -> None:
    """Import a local .appx or .msixvc PACKAGE file."""
    config, console, _, _ = _get_context_objects(ctx)

    manager = _create_manager(config, console, assume_yes=yes)
    version = _run(manager, manager.import_package(package.resolve()))

    if version is None:
        sys.exit(1)
    console.print(f"[green]Imported {version.name} to {version.game_directory}[/green]")


@click.command("sign-in")
@click.pass_context
def sign_in(ctx: click.Context) -> None:
    """Sign in with the Windows account used for beta and preview downloads."""
    config, console, _, _ = _get_context_objects(ctx)

    manager = _create_manager(config, console)
    if not _run(manager, manager.sign_in()):
        sys.exit(1)
