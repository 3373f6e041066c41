"""Deployment backend for the archive (loose Appx) package format.

Archive packages are extracted into a version directory and registered
with the OS in development mode straight from that directory. Removing a
package that was installed normally (not in development mode) deletes its
application data, so the data is first moved to a fixed backup location
and moved back into the fresh data directory after the next registration.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import zipfile
from pathlib import Path

import structlog

from mclauncher_tools.core.config import DeploymentConfig
from mclauncher_tools.core.deployment import (
    PackageInfo,
    PackageManager,
    RemovalOptions,
    await_deployment,
)
from mclauncher_tools.core.errors import DataConflictError, DeploymentError, InvalidPackageError
from mclauncher_tools.core.operator import Operator

logger = structlog.get_logger()

MANIFEST_NAME = "AppxManifest.xml"
SIGNATURE_NAME = "AppxSignature.p7x"

RESTORE_TITLE = "Restoring data directory from previous installation"


def same_path(a: str | Path, b: str | Path) -> bool:
    """Compare two paths the way Windows does."""
    return os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b))


class AppPackageBackend:
    """Registers, unregisters and extracts archive-format packages.

    Args:
        package_manager: OS package subsystem
        operator: Receives conflict notices and overwrite confirmations
        config: Deployment configuration (backup location)
    """

    def __init__(
        self,
        package_manager: PackageManager,
        operator: Operator,
        config: DeploymentConfig | None = None,
    ):
        self.package_manager = package_manager
        self.operator = operator
        self.config = config or DeploymentConfig()

    @property
    def backup_dir(self) -> Path:
        return self.config.backup_dir

    def backup_save_data(self, family: str) -> bool:
        """Move the family's application data to the backup location.

        Returns:
            True if data was moved, False if there was nothing to back up

        Raises:
            DataConflictError: If a previous backup was never restored
        """
        backup_dir = self.backup_dir
        if backup_dir.exists():
            logger.error("backup_dir_exists", path=str(backup_dir))
            self.operator.reveal(backup_dir)
            raise DataConflictError(
                f"The temporary directory for backing up game data already exists: {backup_dir}",
                path=backup_dir,
                hint="This probably means that backing up the data failed last time. "
                "Please back the directory up manually and remove it.",
            )

        data_dir = self.package_manager.local_state_dir(family)
        if not data_dir.exists():
            logger.info("backup_skipped_no_data", family=family, path=str(data_dir))
            return False

        logger.info("backup_save_data", source=str(data_dir), destination=str(backup_dir))
        backup_dir.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(data_dir), str(backup_dir))
        return True

    def _restore_move(self, source: Path, destination: Path) -> None:
        for entry in sorted(source.iterdir()):
            if entry.is_dir():
                continue
            target = destination / entry.name
            if target.exists():
                if not self.operator.confirm(
                    f"The file {target} already exists in the destination.\n"
                    "Do you want to replace it? The old file will be lost otherwise.",
                    RESTORE_TITLE,
                ):
                    continue
                if target.is_dir():
                    shutil.rmtree(target)
                else:
                    target.unlink()
            shutil.move(str(entry), str(target))

        for entry in sorted(source.iterdir()):
            if not entry.is_dir():
                continue
            target = destination / entry.name
            if not target.is_dir():
                if target.exists():
                    if not self.operator.confirm(
                        f"The file {target} is not a directory. Do you want to remove it? "
                        "The data from the old directory will be lost otherwise.",
                        RESTORE_TITLE,
                    ):
                        continue
                    target.unlink()
                target.mkdir(parents=True)
            self._restore_move(entry, target)

    def restore_save_data(self, family: str) -> bool:
        """Merge a pending backup into the family's application data.

        Returns:
            True if a backup was restored
        """
        backup_dir = self.backup_dir
        if not backup_dir.is_dir():
            return False

        data_dir = self.package_manager.local_state_dir(family)
        logger.info("restore_save_data", source=str(backup_dir), destination=str(data_dir))
        data_dir.mkdir(parents=True, exist_ok=True)
        self._restore_move(backup_dir, data_dir)
        shutil.rmtree(backup_dir)
        return True

    async def remove_package(self, package: PackageInfo, backup: bool = True) -> None:
        """Remove one registered package.

        Args:
            package: Package to remove
            backup: Back up application data first when the removal would
                delete it. Pass False when a backup was already taken.
        """
        logger.info("package_removing", package=package.full_name)
        if package.is_development_mode:
            options = RemovalOptions.PRESERVE_APPLICATION_DATA
        else:
            if backup:
                await asyncio.to_thread(self.backup_save_data, package.family)
            options = RemovalOptions.REMOVE_FOR_ALL_USERS
        await await_deployment(self.package_manager.remove_package(package.full_name, options))
        logger.info("package_removed", package=package.full_name)

    async def unregister(self, family: str, game_dir: Path | None = None, backup: bool = True) -> int:
        """Remove registrations of a package family.

        Args:
            family: Package family name
            game_dir: Only remove the registration at this directory (and
                registrations whose directory is gone); all if None
            backup: See ``remove_package``

        Returns:
            Number of packages removed
        """
        removed = 0
        for package in await self.package_manager.find_packages(family):
            location = package.install_location
            if game_dir is None or not location or same_path(location, game_dir):
                await self.remove_package(package, backup)
                removed += 1
        return removed

    async def register(self, game_dir: Path, family: str) -> bool:
        """Register the package in ``game_dir``, replacing other registrations.

        Registering the directory that is already registered does nothing
        beyond restoring a pending backup.

        Returns:
            True if a registration was performed

        Raises:
            DeploymentError: If the OS rejects the registration
            DataConflictError: If an unrestored backup blocks a removal
        """
        packages = await self.package_manager.find_packages(family)
        for package in packages:
            if package.install_location and same_path(package.install_location, game_dir):
                logger.info("package_already_registered", package=package.full_name, path=str(game_dir))
                await asyncio.to_thread(self.restore_save_data, family)
                return False

        for package in packages:
            await self.remove_package(package)

        manifest = game_dir / MANIFEST_NAME
        logger.info("package_registering", manifest=str(manifest))
        try:
            await await_deployment(self.package_manager.register_package(manifest, development_mode=True))
        except DeploymentError as e:
            e.hint = (
                "Make sure Developer Mode is enabled in Windows settings and that the "
                "version directory was not modified."
            )
            raise
        logger.info("package_registered", path=str(game_dir))
        await asyncio.to_thread(self.restore_save_data, family)
        return True

    def extract(self, package_file: Path, game_dir: Path) -> None:
        """Extract an archive package into ``game_dir``, replacing it.

        Raises:
            InvalidPackageError: If the file is not a valid archive
        """
        if game_dir.exists():
            shutil.rmtree(game_dir)
        try:
            with zipfile.ZipFile(package_file) as archive:
                archive.extractall(game_dir)
        except zipfile.BadZipFile as e:
            shutil.rmtree(game_dir, ignore_errors=True)
            raise InvalidPackageError(
                f"{package_file.name} may be corrupted or is not an appx file: {e}"
            ) from e

        try:
            (game_dir / SIGNATURE_NAME).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("signature_delete_failed", path=str(game_dir), error=str(e))
        logger.info("package_extracted", source=str(package_file), destination=str(game_dir))
