"""Helpers shared by the command groups."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click
import structlog
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from mclauncher_tools.core.catalog import VersionList
from mclauncher_tools.core.config import AppConfig
from mclauncher_tools.core.install_state import InstallState
from mclauncher_tools.core.types import PackageFormat, ReleaseChannel, VersionDescriptor

logger = structlog.get_logger()

CHANNEL_CHOICES = {
    "release": ReleaseChannel.RELEASE,
    "beta": ReleaseChannel.BETA,
    "preview": ReleaseChannel.PREVIEW,
    "imported": ReleaseChannel.IMPORTED,
}


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj.get("verbose", False)
    debug: bool = ctx.obj.get("debug", False)
    return config, console, verbose, debug


class ConsoleOperator:
    """Operator that reports through the console and asks on the terminal.

    Args:
        console: Rich console for notices
        assume_yes: Answer every confirmation with yes
    """

    def __init__(self, console: Console, assume_yes: bool = False):
        self.console = console
        self.assume_yes = assume_yes
        self.messages: list[tuple[str, str]] = []

    def notify(self, message: str, title: str = "") -> None:
        self.messages.append((title, message))
        if title:
            self.console.print(f"[bold red]{title}[/bold red]")
        self.console.print(message, markup=False)

    def confirm(self, message: str, title: str = "") -> bool:
        if self.assume_yes:
            return True
        if title:
            self.console.print(f"[bold]{title}[/bold]")
        return click.confirm(message, default=False)

    def reveal(self, path: Path) -> None:
        self.console.print(f"[yellow]See: {path}[/yellow]")


def load_catalog(config: AppConfig) -> VersionList:
    """Build the catalog from the cached lists and the imported directory."""
    catalog = VersionList(config)
    catalog.load_from_cache()
    catalog.load_imported()
    return catalog


def find_version(
    catalog: VersionList,
    console: Console,
    name: str,
    channel: str | None = None,
    fmt: str | None = None,
) -> VersionDescriptor:
    """Find a version or exit with an error."""
    version = catalog.find(
        name,
        PackageFormat(fmt) if fmt else None,
        CHANNEL_CHOICES[channel] if channel else None,
    )
    if version is None:
        console.print(f"[red]Error: Unknown version: {name}[/red]")
        console.print("[dim]Run 'mclauncher-tools versions refresh' to update the version list.[/dim]")
        sys.exit(1)
    return version


def version_options(func):
    """Add the --channel and --format options used to pick a version."""
    func = click.option(
        "--format",
        "fmt",
        type=click.Choice([f.value for f in PackageFormat]),
        help="Package format of the version",
    )(func)
    func = click.option(
        "--channel",
        type=click.Choice(list(CHANNEL_CHOICES)),
        help="Release channel of the version",
    )(func)
    return func


@contextmanager
def install_progress(version: VersionDescriptor, console: Console, enabled: bool = True) -> Iterator[None]:
    """Mirror the version's install state in a progress bar."""
    if not enabled:
        yield
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(version.display_name, total=None)

        def on_state(state: InstallState) -> None:
            total = None if state.is_indeterminate else state.total_bytes or None
            progress.update(
                task,
                description=state.display_status,
                completed=state.downloaded_bytes,
                total=total,
            )

        def on_version(descriptor: VersionDescriptor, name: str) -> None:
            if name == "state" and descriptor.state is not None:
                descriptor.state.subscribe(on_state)
                on_state(descriptor.state)

        version.add_listener(on_version)
        try:
            yield
        finally:
            version.remove_listener(on_version)
