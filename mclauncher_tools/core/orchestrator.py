"""Per-version operations: download, launch, remove and import.

Each entry point attaches an ``InstallState`` to the version, walks the
phases of its operation and detaches the state when it returns, whatever
happened. Failures are logged and reported to the operator once; a
cancelled operation is not reported.

Format-specific work goes through one of two deployment variants chosen
by the version's package format.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import structlog

from mclauncher_tools.core.appx_backend import AppPackageBackend, same_path
from mclauncher_tools.core.catalog import VersionList, detect_format
from mclauncher_tools.core.config import AppConfig
from mclauncher_tools.core.container_backend import StagedContainerBackend
from mclauncher_tools.core.deployment import PackageManager, WindowsPackageManager
from mclauncher_tools.core.errors import (
    BadUpdateIdentityError,
    LauncherError,
    OperationCancelledError,
    OperationInProgressError,
)
from mclauncher_tools.core.guards import CancellationHandle, OperationGuard
from mclauncher_tools.core.install_state import InstallPhase, InstallState
from mclauncher_tools.core.migration import DataMigration
from mclauncher_tools.core.operator import Operator
from mclauncher_tools.core.transfer import SharedAuthorization, VersionDownloader
from mclauncher_tools.core.types import (
    PackageFormat,
    ReleaseChannel,
    VersionDescriptor,
    sanitize_file_name,
)
from mclauncher_tools.core.utils import normalize_package_extension

logger = structlog.get_logger()

LAUNCH_GUARD = OperationGuard("launch")

BETA_HINT = (
    "For beta versions, please make sure your account is subscribed to the "
    "Minecraft beta programme in the Xbox Insider Hub app."
)


class ArchiveDeployment:
    """Archive packages: extracted into the version directory, registered to launch."""

    format = PackageFormat.ARCHIVE

    def __init__(self, backend: AppPackageBackend, package_manager: PackageManager, app_id: str):
        self.backend = backend
        self.package_manager = package_manager
        self.app_id = app_id

    async def install(
        self,
        version: VersionDescriptor,
        source: str,
        state: InstallState,
        cancel: CancellationHandle | None = None,
        backup_taken: bool = False,
    ) -> None:
        state.phase = InstallPhase.extracting
        await asyncio.to_thread(self.backend.extract, Path(source), version.game_directory)

    async def prepare(self, version: VersionDescriptor, state: InstallState) -> None:
        state.phase = InstallPhase.registering
        await self.backend.register(version.game_directory, version.package_family)

    async def launch(self, version: VersionDescriptor) -> None:
        await self.package_manager.launch_app(version.package_family, self.app_id)

    async def uninstall(self, version: VersionDescriptor) -> None:
        await self.backend.unregister(version.package_family, version.game_directory)


class ContainerDeployment:
    """Container packages: staged, decrypted and run from the version directory."""

    format = PackageFormat.CONTAINER

    def __init__(self, backend: StagedContainerBackend):
        self.backend = backend

    async def install(
        self,
        version: VersionDescriptor,
        source: str,
        state: InstallState,
        cancel: CancellationHandle | None = None,
        backup_taken: bool = False,
    ) -> None:
        await self.backend.install(
            source,
            version.game_directory,
            version.package_family,
            state=state,
            backup_taken=backup_taken,
            cancel=cancel,
        )

    async def prepare(self, version: VersionDescriptor, state: InstallState) -> None:
        # The unpacked container build runs without a registration.
        pass

    async def launch(self, version: VersionDescriptor) -> None:
        self.backend.launch(version.game_directory)

    async def uninstall(self, version: VersionDescriptor) -> None:
        # Leftover staged registrations have no location or point here.
        await self.backend.appx.unregister(version.package_family, version.game_directory)


class VersionManager:
    """Runs operations on catalog versions.

    Args:
        config: Application configuration
        catalog: Known versions; imported versions are added and removed here
        operator: Receives error reports and confirmations
        package_manager: OS package subsystem, the Windows one by default
        anonymous_downloader: Downloader for release versions
        user_downloader: Downloader sending the user ticket, for beta and
            preview versions
    """

    def __init__(
        self,
        config: AppConfig,
        catalog: VersionList,
        operator: Operator,
        package_manager: PackageManager | None = None,
        anonymous_downloader: VersionDownloader | None = None,
        user_downloader: VersionDownloader | None = None,
        launch_guard: OperationGuard | None = None,
    ):
        self.config = config
        self.catalog = catalog
        self.operator = operator
        self.package_manager = package_manager or WindowsPackageManager(config.deployment.wdapp_path)
        self.anonymous_downloader = anonymous_downloader or VersionDownloader(config.transfer, config.protocol)
        self.user_downloader = user_downloader or VersionDownloader(config.transfer, config.protocol)
        self.authorization = SharedAuthorization(self.user_downloader.enable_user_authorization)
        self.launch_guard = launch_guard or LAUNCH_GUARD

        self.appx = AppPackageBackend(self.package_manager, operator, config.deployment)
        self.container = StagedContainerBackend(self.package_manager, self.appx, config.deployment)
        self.migration = DataMigration(self.package_manager, config.deployment)
        self._deployments = {
            PackageFormat.ARCHIVE: ArchiveDeployment(
                self.appx, self.package_manager, config.deployment.archive_app_id
            ),
            PackageFormat.CONTAINER: ContainerDeployment(self.container),
        }
        self._tasks: set[asyncio.Task] = set()

    def deployment_for(self, fmt: PackageFormat) -> ArchiveDeployment | ContainerDeployment:
        return self._deployments[fmt]

    def _installed_deployment(self, version: VersionDescriptor) -> ArchiveDeployment | ContainerDeployment:
        return self.deployment_for(detect_format(version.game_directory, version.format))

    def _report(self, event: str, error: LauncherError | OSError, title: str, version: VersionDescriptor | None) -> None:
        name = version.name if version is not None else None
        if isinstance(error, OperationCancelledError):
            logger.info("operation_cancelled", operation=event, version=name)
            return
        logger.error(event, version=name, error=str(error), exc_info=error)
        message = error.operator_message if isinstance(error, LauncherError) else str(error)
        self.operator.notify(message, title)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # Launch

    async def launch(self, version: VersionDescriptor) -> bool:
        """Migrate save data if needed, register and start a version.

        A launch requested while another one runs is ignored.

        Returns:
            True if the game was started
        """
        if not self.launch_guard.try_acquire():
            logger.info("launch_ignored", version=version.name, reason="launch in progress")
            return False

        state = InstallState(InstallPhase.initializing)
        version.state = state
        try:
            deployment = self._installed_deployment(version)
            plan = self.migration.plan(version.package_family, version.channel, deployment.format)
            if plan.needs_action:
                state.phase = InstallPhase.moving_data
                await asyncio.to_thread(self.migration.apply, plan)

            await deployment.prepare(version, state)

            state.phase = InstallPhase.launching
            await deployment.launch(version)
            logger.info("launch_complete", version=version.name, format=deployment.format.value)
            return True
        except (LauncherError, OSError) as e:
            self._report("launch_failed", e, "Launch failed", version)
            return False
        finally:
            version.state = None
            self.launch_guard.release()

    def invoke_launch(self, version: VersionDescriptor) -> asyncio.Task:
        return self._spawn(self.launch(version))

    # Download

    async def _authorize(self, version: VersionDescriptor) -> VersionDownloader:
        if not version.needs_user_authorization or version.download_urls:
            return self.anonymous_downloader
        logger.debug("authorization_waiting", version=version.name)
        await self.authorization.wait()
        logger.debug("authorization_complete", version=version.name)
        return self.user_downloader

    async def _try_direct_install(
        self,
        version: VersionDescriptor,
        downloader: VersionDownloader,
        state: InstallState,
        cancel: CancellationHandle,
    ) -> tuple[bool, bool]:
        """Hand a direct URL to the container backend, skipping the local file.

        Any failure other than cancellation or a busy backend is logged and
        answered with ``installed=False`` so that the caller downloads the
        file instead.

        Returns:
            (installed, cleared) where ``cleared`` tells whether existing
            registrations were removed and save data backed up
        """
        if version.format != PackageFormat.CONTAINER and version.channel != ReleaseChannel.PREVIEW:
            return False, False
        try:
            if version.download_urls:
                url = version.download_urls[0]
            else:
                url = await downloader.resolve_download_url(version.uuid, "1", cancel)
            if not url:
                return False, False
            logger.info("direct_install_started", version=version.name, url=url)
            await self.deployment_for(PackageFormat.CONTAINER).install(version, url, state, cancel)
            return True, True
        except (OperationCancelledError, OperationInProgressError):
            raise
        except LauncherError as e:
            # The backend only leaves the unregistering phase once clearing succeeded.
            cleared = state.phase not in (InstallPhase.initializing, InstallPhase.unregistering)
            logger.warning("direct_install_failed", version=version.name, error=str(e), cleared=cleared)
            state.phase = InstallPhase.initializing
            return False, cleared

    def download_path(self, version: VersionDescriptor) -> Path:
        prefix = "Minecraft-Preview-" if version.is_preview else "Minecraft-"
        suffix = ".msixvc" if version.is_preview or version.format == PackageFormat.CONTAINER else ".Appx"
        return self.config.downloads_dir / (prefix + sanitize_file_name(version.name) + suffix)

    async def download(self, version: VersionDescriptor, cancel: CancellationHandle | None = None) -> bool:
        """Download and install a version.

        Args:
            version: Version to install
            cancel: Handle the operator can cancel the download with

        Returns:
            True if the version was installed
        """
        cancel = cancel or CancellationHandle()
        state = InstallState(InstallPhase.initializing, cancel=cancel)
        version.is_new = False
        version.state = state
        package: Path | None = None
        title = "Download failed"
        try:
            try:
                downloader = await self._authorize(version)
            except LauncherError:
                title = "Authentication failed"
                raise

            installed, cleared = await self._try_direct_install(version, downloader, state, cancel)
            if installed:
                logger.info("download_complete", version=version.name, direct=True)
                return True

            package = self.download_path(version)
            try:
                if version.download_urls:
                    await downloader.download_any(version.download_urls, package, state.update_progress, cancel)
                else:
                    await downloader.download(version.uuid, "1", package, state.update_progress, cancel)
            except BadUpdateIdentityError as e:
                if version.channel == ReleaseChannel.BETA:
                    e.hint = BETA_HINT
                raise
            logger.info("download_finished", version=version.name, path=str(package))

            package = normalize_package_extension(package)
            fmt = PackageFormat.ARCHIVE if package.suffix == ".Appx" else PackageFormat.CONTAINER
            title = "Installation failed"
            await self.deployment_for(fmt).install(version, str(package), state, cancel, backup_taken=cleared)

            if self.config.delete_package_after_download:
                logger.debug("package_deleted", path=str(package))
                package.unlink(missing_ok=True)
            else:
                logger.debug("package_kept", path=str(package))
            logger.info("download_complete", version=version.name, format=fmt.value)
            return True
        except (LauncherError, OSError) as e:
            self._report("download_failed", e, title, version)
            return False
        finally:
            version.state = None
            version.update_install_status()

    def invoke_download(self, version: VersionDescriptor, cancel: CancellationHandle | None = None) -> asyncio.Task:
        return self._spawn(self.download(version, cancel))

    # Remove

    async def remove(self, version: VersionDescriptor) -> bool:
        """Unregister a version and delete its directory.

        Imported versions are also dropped from the catalog.
        """
        state = InstallState(InstallPhase.unregistering)
        version.state = state
        try:
            await self._installed_deployment(version).uninstall(version)

            state.phase = InstallPhase.cleaning_up
            if version.game_directory.exists():
                await asyncio.to_thread(shutil.rmtree, version.game_directory)
            logger.info("version_removed", version=version.name, imported=version.is_imported)
        except (LauncherError, OSError) as e:
            self._report("remove_failed", e, "Uninstall failed", version)
            return False
        finally:
            version.state = None

        if version.is_imported:
            self.catalog.remove(version)
        else:
            version.update_install_status()
        return True

    def invoke_remove(self, version: VersionDescriptor) -> asyncio.Task:
        return self._spawn(self.remove(version))

    # Import

    async def _ensure_import_directory_usable(self, directory: Path) -> bool:
        if not directory.exists():
            return True

        for version in self.catalog:
            if not version.is_imported or not same_path(version.game_directory, directory):
                continue
            if version.is_busy:
                self.operator.notify(
                    "A version with the same name was already imported, and is currently being "
                    "modified. Please wait a few moments and try again.",
                    "Import failed",
                )
                return False
            confirmed = await asyncio.to_thread(
                self.operator.confirm,
                "A version with the same name was already imported. Do you want to delete it?",
                "Delete confirmation",
            )
            if not confirmed:
                return False
            return await self.remove(version)

        self.operator.notify(
            "The destination path for importing already exists and doesn't contain a version "
            "known to the launcher. To avoid loss of data, importing was aborted. "
            "Please remove the files manually.",
            "Import failed",
        )
        return False

    async def import_package(self, package: Path, cancel: CancellationHandle | None = None) -> VersionDescriptor | None:
        """Import a local package file as a new version.

        Archive packages are extracted into the imported versions
        directory; container packages go through staging.

        Returns:
            The imported version, or None if nothing was imported
        """
        name = sanitize_file_name(package.stem)
        directory = self.config.imported_dir / name
        if not await self._ensure_import_directory_usable(directory):
            return None

        fmt = PackageFormat.CONTAINER if package.suffix.lower() == ".msixvc" else PackageFormat.ARCHIVE
        version = self.catalog.add_imported(name, directory, fmt)
        state = InstallState(InstallPhase.initializing, cancel=cancel)
        version.state = state
        try:
            await self.deployment_for(fmt).install(version, str(package), state, cancel)
            logger.info("package_imported", package=str(package), version=name, format=fmt.value)
            return version
        except (LauncherError, OSError) as e:
            self._report("import_failed", e, "Import failed", version)
            if not version.is_installed:
                self.catalog.remove(version)
            return None
        finally:
            version.state = None
            version.update_install_status()

    def invoke_import(self, package: Path) -> asyncio.Task:
        return self._spawn(self.import_package(package))

    # Authorization

    async def sign_in(self) -> bool:
        """Obtain the user ticket used for beta and preview downloads."""
        try:
            await self.authorization.wait()
        except LauncherError as e:
            self._report("sign_in_failed", e, "Sign in failed", None)
            return False
        self.operator.notify("Signed in successfully. Tokens retrieved.", "Sign in")
        return True

    async def aclose(self) -> None:
        await self.anonymous_downloader.aclose()
        await self.user_downloader.aclose()
