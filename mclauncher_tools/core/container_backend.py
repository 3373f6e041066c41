"""Deployment backend for the encrypted container (msixvc) package format.

Container packages cannot be unpacked directly. The package is staged
through the OS store, which extracts it to a store-managed location with
the game executable still encrypted. A command run inside the package's
security context can read the decrypted executable, so a helper copies it
out. The staged tree is then moved into the version directory, the
placeholder executable replaced, and the staged registration removed.

Only one container installation may run at a time in the process.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
import uuid
from pathlib import Path

import structlog

from mclauncher_tools.core.appx_backend import AppPackageBackend
from mclauncher_tools.core.config import DeploymentConfig
from mclauncher_tools.core.deployment import PackageManager, await_deployment
from mclauncher_tools.core.errors import (
    DeploymentError,
    HelperProcessError,
    LauncherError,
    MultipleLocationsError,
    OperationInProgressError,
    StagingError,
)
from mclauncher_tools.core.guards import CancellationHandle, OperationGuard
from mclauncher_tools.core.install_state import InstallPhase, InstallState

logger = structlog.get_logger()

STAGING_GUARD = OperationGuard("container staging")

STAGING_HINT = (
    "The package file may be corrupted. Decryption keys are provisioned by the "
    "Microsoft Store, so the game may also need to have been installed from the "
    "Store on this account before."
)
DECRYPT_HINT = (
    "The game executable could not be decrypted. Make sure the game was installed "
    "from the Microsoft Store on this account at least once."
)


def resolve_final_path(path: Path) -> Path:
    """Resolve junctions and symbolic links to the real directory."""
    real = os.path.realpath(path)
    if real.startswith("\\\\?\\"):
        real = real[4:]
    return Path(real)


def is_url(source: str) -> bool:
    lowered = source.lower()
    return lowered.startswith("http://") or lowered.startswith("https://")


class StagingArtifact:
    """Per-attempt decrypt output paths.

    The helper writes to ``partial_path`` and renames it to ``final_path``
    once the copy is complete, so the final file never appears half written.
    A random attempt id keeps leftovers of failed attempts apart.
    """

    def __init__(self, directory: Path, stem: str):
        self.attempt_id = uuid.uuid4().hex
        self.directory = directory
        self.partial_path = directory / f"{stem}-{self.attempt_id}.partial"
        self.final_path = directory / f"{stem}-{self.attempt_id}.exe"

    def cleanup(self) -> None:
        for path in (self.partial_path, self.final_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("staging_artifact_cleanup_failed", path=str(path), error=str(e))


class StagedContainerBackend:
    """Installs container-format packages through store staging.

    Args:
        package_manager: OS package subsystem
        appx: Archive backend, used to clear existing registrations
        config: Deployment configuration
        guard: Single-flight guard, the process-wide one by default
    """

    def __init__(
        self,
        package_manager: PackageManager,
        appx: AppPackageBackend,
        config: DeploymentConfig | None = None,
        guard: OperationGuard | None = None,
    ):
        self.package_manager = package_manager
        self.appx = appx
        self.config = config or DeploymentConfig()
        self.guard = guard or STAGING_GUARD

    async def install(
        self,
        source: str,
        game_dir: Path,
        family: str,
        state: InstallState | None = None,
        backup_taken: bool = False,
        cancel: CancellationHandle | None = None,
    ) -> None:
        """Install a container package from a local file or URL into ``game_dir``.

        Args:
            source: Package file path or direct download URL
            game_dir: Target version directory
            family: Package family of the game
            state: Install state receiving phase changes
            backup_taken: Skip the save data backup while clearing existing
                registrations because the caller already took one
            cancel: Cancellation handle

        Raises:
            OperationInProgressError: If another container install is running
            StagingError: If staging fails or the staged location is ambiguous
            HelperProcessError: If decryption fails or times out
            DeploymentError: If moving the files or removing the staged
                registration fails
        """
        if not self.guard.try_acquire():
            raise OperationInProgressError("Another container installation is already in progress")

        artifact: StagingArtifact | None = None
        staged = False
        try:
            self._set_phase(state, InstallPhase.unregistering)
            await self.clear(family, backup=not backup_taken)

            self._set_phase(state, InstallPhase.staging)
            await self.stage(source, cancel)
            staged = True
            location = resolve_final_path(await self.locate(family))

            self._set_phase(state, InstallPhase.decrypting)
            artifact = StagingArtifact(self.config.decrypt_dir, Path(self.config.game_executable).stem)
            decrypted = await self.decrypt(location, family, artifact, cancel)

            self._set_phase(state, InstallPhase.moving)
            try:
                await asyncio.to_thread(self.move, location, game_dir, decrypted)
            except OSError as e:
                raise DeploymentError(
                    f"Moving the staged files into {game_dir} failed; the directory may be incomplete: {e}",
                    hint="Remove the version and install it again.",
                ) from e

            self._set_phase(state, InstallPhase.cleaning_up)
            staged = False
            await self.finalize(family)
            logger.info("container_installed", source=source, path=str(game_dir))
        except (LauncherError, OSError):
            if staged:
                await self.discard_staged(family)
            raise
        finally:
            if artifact is not None:
                artifact.cleanup()
            self.guard.release()

    @staticmethod
    def _set_phase(state: InstallState | None, phase: InstallPhase) -> None:
        if state is not None:
            state.phase = phase

    async def discard_staged(self, family: str) -> None:
        """Remove the staged registration left by a failed installation.

        Save data was handled while clearing, so nothing is backed up here.
        """
        try:
            removed = await self.appx.unregister(family, backup=False)
            logger.info("staged_registration_discarded", family=family, removed=removed)
        except (LauncherError, OSError) as e:
            logger.warning("staged_registration_cleanup_failed", family=family, error=str(e))

    async def clear(self, family: str, backup: bool = True) -> int:
        """Unregister every existing registration of the family."""
        return await self.appx.unregister(family, backup=backup)

    async def stage(self, source: str, cancel: CancellationHandle | None = None) -> None:
        """Stage the package, retrying once without the bootstrapper.

        Raises:
            StagingError: If both attempts fail or the file does not exist
        """
        if not is_url(source) and not Path(source).is_file():
            raise StagingError(f"Package file not found: {source}")

        try:
            await await_deployment(self.package_manager.stage_package(source, True, cancel))
            return
        except DeploymentError as first:
            logger.warning("staging_bootstrapper_failed", source=source, error=first.error_text)
            try:
                await await_deployment(self.package_manager.stage_package(source, False, cancel))
            except DeploymentError as second:
                raise StagingError(
                    f"Staging failed: {first.error_text}\n"
                    f"Fallback without bootstrapper failed: {second.error_text}",
                    error_text=second.error_text,
                    hint=STAGING_HINT,
                ) from second

    async def locate(self, family: str) -> Path:
        """Find the single staged location of the family.

        Raises:
            MultipleLocationsError: If there is not exactly one location
        """
        packages = await self.package_manager.find_packages(family)
        locations = [p.install_location for p in packages if p.install_location]
        if len(locations) != 1:
            logger.error("staged_location_ambiguous", family=family, locations=locations)
            raise MultipleLocationsError(family, locations)
        return Path(locations[0])

    async def decrypt(
        self,
        location: Path,
        family: str,
        artifact: StagingArtifact,
        cancel: CancellationHandle | None = None,
    ) -> Path:
        """Copy the decrypted executable out of the staged package.

        Returns:
            Path of the decrypted executable

        Raises:
            HelperProcessError: If the helper fails or the output never appears
        """
        artifact.directory.mkdir(parents=True, exist_ok=True)
        source_exe = location / self.config.game_executable
        arguments = (
            f'/c copy /b /y "{source_exe}" "{artifact.partial_path}" '
            f'&& move /y "{artifact.partial_path}" "{artifact.final_path}"'
        )
        logger.info("decrypt_started", source=str(source_exe), attempt=artifact.attempt_id)
        result = await self.package_manager.invoke_in_package(
            family, self.config.container_app_id, "cmd.exe", arguments, cancel
        )
        result.check("Decryption helper", hint=DECRYPT_HINT)

        # The helper returns before the copy inside the package context ends.
        await self.wait_for_file(artifact.final_path, cancel)
        logger.info("decrypt_done", path=str(artifact.final_path))
        return artifact.final_path

    async def wait_for_file(self, path: Path, cancel: CancellationHandle | None = None) -> None:
        """Poll for ``path`` until it exists or the decrypt timeout passes.

        Raises:
            HelperProcessError: On timeout
            OperationCancelledError: If cancelled
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.decrypt_timeout
        while not path.exists():
            if loop.time() >= deadline:
                raise HelperProcessError(
                    f"Timed out after {self.config.decrypt_timeout:g}s waiting for {path.name}",
                    hint=DECRYPT_HINT,
                )
            if cancel is not None:
                await cancel.sleep(self.config.decrypt_poll_interval)
            else:
                await asyncio.sleep(self.config.decrypt_poll_interval)

    def move(self, location: Path, game_dir: Path, decrypted: Path) -> None:
        """Move the staged tree into ``game_dir`` and swap in the decrypted executable."""
        if game_dir.exists():
            shutil.rmtree(game_dir)
        game_dir.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(location), str(game_dir))

        executable = game_dir / self.config.game_executable
        executable.unlink(missing_ok=True)
        shutil.move(str(decrypted), str(executable))
        logger.info("staged_files_moved", source=str(location), destination=str(game_dir))

    async def finalize(self, family: str) -> None:
        """Remove the now empty staged registration."""
        await self.appx.unregister(family, backup=False)

    def launch(self, game_dir: Path) -> int:
        """Start the installed game executable without waiting for it.

        Returns:
            Process id of the game
        """
        executable = game_dir / self.config.game_executable
        if not executable.is_file():
            raise DeploymentError(f"{executable.name} not found in {game_dir}")
        logger.info("container_launching", path=str(executable))
        process = subprocess.Popen([str(executable)], cwd=str(game_dir))
        logger.info("container_launched", path=str(executable), pid=process.pid)
        return process.pid
