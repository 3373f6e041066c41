"""Save data discovery and migration between the two package formats.

The archive build keeps its data in the package's LocalState directory.
The container build keeps one data directory per Windows account under
the roaming application data folder, and migrates archive data on first
start unless a marker file says that already happened. A removal in
progress may also have left data in the fixed backup location.

Worlds are counted in each candidate location. Data is only moved when
exactly one location holds worlds; anything else is reported to the
operator rather than merged.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import structlog

from mclauncher_tools.core.config import DeploymentConfig
from mclauncher_tools.core.deployment import PackageManager
from mclauncher_tools.core.errors import MigrationConflictError
from mclauncher_tools.core.types import PackageFormat, ReleaseChannel

logger = structlog.get_logger()

GAME_DATA_SUBDIR = Path("games") / "com.mojang"
WORLDS_DIR = "minecraftWorlds"


class CandidateKind(Enum):
    """Where a save data candidate lives."""

    archive = "archive"
    container = "container"
    backup = "backup"


class MigrationAction(Enum):
    """What ``apply`` will do."""

    none = "none"
    relocate = "relocate"
    reset_marker = "reset_marker"
    conflict = "conflict"


@dataclass
class SaveDataCandidate:
    """A location that may hold save data.

    Attributes:
        kind: Location type
        path: The ``com.mojang`` data directory
        world_count: Number of entries in its worlds directory
        account: Account directory name for container locations
    """

    kind: CandidateKind
    path: Path
    world_count: int = 0
    account: str | None = None

    @property
    def has_data(self) -> bool:
        return self.world_count > 0


@dataclass
class MigrationPlan:
    """Decision computed by ``DataMigration.plan``."""

    action: MigrationAction
    target_format: PackageFormat
    candidates: list[SaveDataCandidate] = field(default_factory=list)
    source: Path | None = None
    destination: Path | None = None
    marker: Path | None = None

    @property
    def needs_action(self) -> bool:
        return self.action != MigrationAction.none


def count_worlds(data_dir: Path) -> int:
    """Count world directories under a ``com.mojang`` directory."""
    worlds = data_dir / WORLDS_DIR
    if not worlds.is_dir():
        return 0
    return sum(1 for _ in worlds.iterdir())


def merge_move(source: Path, destination: Path) -> int:
    """Move the contents of ``source`` into ``destination`` without overwriting.

    Entries that already exist in the destination stay in the source.
    Source directories left empty are removed.

    Returns:
        Number of files left behind because of a collision
    """
    destination.mkdir(parents=True, exist_ok=True)
    skipped = 0
    for entry in sorted(source.iterdir()):
        target = destination / entry.name
        if entry.is_dir() and target.is_dir():
            skipped += merge_move(entry, target)
        elif target.exists():
            logger.warning("migration_entry_exists", path=str(target))
            skipped += 1
        else:
            shutil.move(str(entry), str(target))
    if not any(source.iterdir()):
        source.rmdir()
    return skipped


class DataMigration:
    """Finds save data and moves it where the target format expects it.

    Args:
        package_manager: Provides the archive package data directory
        config: Deployment configuration (backup and container data roots)
    """

    def __init__(self, package_manager: PackageManager, config: DeploymentConfig | None = None):
        self.package_manager = package_manager
        self.config = config or DeploymentConfig()

    def archive_location(self, family: str) -> Path:
        return self.package_manager.local_state_dir(family) / GAME_DATA_SUBDIR

    def container_root(self, channel: ReleaseChannel) -> Path:
        name = "Minecraft Bedrock Preview" if channel == ReleaseChannel.PREVIEW else "Minecraft Bedrock"
        return self.config.container_data_root / name

    def marker_path(self, channel: ReleaseChannel) -> Path:
        return self.container_root(channel) / self.config.migration_marker

    def find_candidates(self, family: str, channel: ReleaseChannel) -> list[SaveDataCandidate]:
        """List every plausible save data location with its world count."""
        candidates = []
        archive = self.archive_location(family)
        candidates.append(SaveDataCandidate(CandidateKind.archive, archive, count_worlds(archive)))

        users = self.container_root(channel) / "Users"
        if users.is_dir():
            for account in sorted(p for p in users.iterdir() if p.is_dir()):
                path = account / GAME_DATA_SUBDIR
                candidates.append(
                    SaveDataCandidate(CandidateKind.container, path, count_worlds(path), account=account.name)
                )

        backup = self.config.backup_dir / GAME_DATA_SUBDIR
        candidates.append(SaveDataCandidate(CandidateKind.backup, backup, count_worlds(backup)))
        return candidates

    def plan(self, family: str, channel: ReleaseChannel, target_format: PackageFormat) -> MigrationPlan:
        """Decide what to do with save data before launching ``target_format``.

        Does not touch the filesystem beyond reading it.
        """
        candidates = self.find_candidates(family, channel)
        with_data = [c for c in candidates if c.has_data]
        logger.debug(
            "migration_candidates",
            family=family,
            candidates={str(c.path): c.world_count for c in candidates},
        )

        if not with_data:
            return MigrationPlan(MigrationAction.none, target_format, candidates)
        if len(with_data) > 1:
            return MigrationPlan(MigrationAction.conflict, target_format, with_data)

        found = with_data[0]
        archive = self.archive_location(family)
        marker = self.marker_path(channel)

        if target_format == PackageFormat.ARCHIVE:
            # A backup is merged back by the registration itself.
            if found.kind in (CandidateKind.archive, CandidateKind.backup):
                return MigrationPlan(MigrationAction.none, target_format, candidates)
            return MigrationPlan(
                MigrationAction.relocate, target_format, candidates, source=found.path, destination=archive
            )

        if found.kind == CandidateKind.container:
            return MigrationPlan(MigrationAction.none, target_format, candidates)
        if found.kind == CandidateKind.backup:
            # Move the whole backup so that no leftover blocks the next one.
            return MigrationPlan(
                MigrationAction.relocate,
                target_format,
                candidates,
                source=self.config.backup_dir,
                destination=self.package_manager.local_state_dir(family),
                marker=marker if marker.exists() else None,
            )
        if marker.exists():
            return MigrationPlan(MigrationAction.reset_marker, target_format, candidates, marker=marker)
        return MigrationPlan(MigrationAction.none, target_format, candidates)

    def apply(self, plan: MigrationPlan) -> int:
        """Carry out a migration plan.

        Returns:
            Number of entries left in the source because of collisions

        Raises:
            MigrationConflictError: For a conflict plan; nothing is moved
        """
        if plan.action == MigrationAction.conflict:
            raise MigrationConflictError([(c.path, c.world_count) for c in plan.candidates])

        skipped = 0
        if plan.action == MigrationAction.relocate and plan.source and plan.destination:
            logger.info("migration_relocate", source=str(plan.source), destination=str(plan.destination))
            skipped = merge_move(plan.source, plan.destination)
            if skipped:
                logger.warning("migration_incomplete", source=str(plan.source), skipped=skipped)

        if plan.marker is not None:
            logger.info("migration_marker_removed", path=str(plan.marker))
            plan.marker.unlink(missing_ok=True)
        return skipped
