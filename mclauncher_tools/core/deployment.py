"""Bridge to the OS package deployment subsystem.

Deployment calls (register, remove, stage) are asynchronous operations
that report progress and completion through callbacks. ``await_deployment``
collapses such an operation into a single awaitable result so that the
backends only ever ``await`` a value or catch a ``DeploymentError``.

``WindowsPackageManager`` drives the Appx PowerShell cmdlets and the GDK
``wdapp`` tool. Tests substitute an in-memory implementation of the
``PackageManager`` protocol.
"""

from __future__ import annotations

import asyncio
import json
import shutil
import threading
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from enum import Enum, Flag, auto
from pathlib import Path
from typing import Any, Protocol

import structlog

from mclauncher_tools.core.errors import DeploymentError, LauncherError, OperationCancelledError
from mclauncher_tools.core.guards import CancellationHandle
from mclauncher_tools.core.process import ProcessResult, run_process
from mclauncher_tools.core.types import default_local_app_data

logger = structlog.get_logger()

GDK_ROOTS = [
    Path(r"C:\Program Files (x86)\Microsoft GDK"),
    Path(r"C:\Program Files\Microsoft GDK"),
]


class DeploymentStatus(Enum):
    """Terminal status of a deployment operation."""

    completed = "completed"
    error = "error"
    canceled = "canceled"


class RemovalOptions(Flag):
    """Flags for package removal."""

    NONE = 0
    PRESERVE_APPLICATION_DATA = auto()
    REMOVE_FOR_ALL_USERS = auto()


@dataclass
class DeploymentResult:
    """Result reported when a deployment operation ends."""

    status: DeploymentStatus
    error_text: str = ""
    extended_code: int = 0


@dataclass
class PackageInfo:
    """A package registered with the OS.

    Attributes:
        full_name: Package full name used for removal
        family: Package family name
        install_location: Install directory, empty if it no longer exists
        is_development_mode: True for packages registered from a loose folder
    """

    full_name: str
    family: str
    install_location: str = ""
    is_development_mode: bool = False


class DeploymentOperation:
    """Progress-bearing handle of one deployment call.

    Handlers may be attached before or after the operation finishes; a
    completed handler attached late is called immediately. Completion is
    reported once, later reports are ignored.

    Args:
        description: What the operation does, for logging
    """

    def __init__(self, description: str):
        self.description = description
        self._lock = threading.Lock()
        self._progress_handlers: list[Callable[[str, int], None]] = []
        self._completed_handlers: list[Callable[[DeploymentResult], None]] = []
        self._result: DeploymentResult | None = None

    @property
    def result(self) -> DeploymentResult | None:
        return self._result

    def on_progress(self, handler: Callable[[str, int], None]) -> None:
        with self._lock:
            self._progress_handlers.append(handler)

    def on_completed(self, handler: Callable[[DeploymentResult], None]) -> None:
        with self._lock:
            result = self._result
            if result is None:
                self._completed_handlers.append(handler)
                return
        handler(result)

    def report_progress(self, state: str, percentage: int) -> None:
        with self._lock:
            handlers = list(self._progress_handlers)
        for handler in handlers:
            handler(state, percentage)

    def complete(self, result: DeploymentResult) -> None:
        with self._lock:
            if self._result is not None:
                return
            self._result = result
            handlers = list(self._completed_handlers)
            self._completed_handlers.clear()
        for handler in handlers:
            handler(result)


async def await_deployment(operation: DeploymentOperation) -> DeploymentResult:
    """Wait for a deployment operation and turn failure into an exception.

    Raises:
        DeploymentError: If the operation reports an error, with its error text
        OperationCancelledError: If the operation was cancelled
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[DeploymentResult] = loop.create_future()

    def settle(result: DeploymentResult) -> None:
        if future.done():
            return
        if result.status == DeploymentStatus.error:
            logger.debug("deployment_failed", operation=operation.description, error=result.error_text)
            future.set_exception(
                DeploymentError(f"Deployment failed: {result.error_text}", error_text=result.error_text)
            )
        elif result.status == DeploymentStatus.canceled:
            future.set_exception(OperationCancelledError(f"{operation.description} was cancelled"))
        else:
            logger.debug("deployment_done", operation=operation.description)
            future.set_result(result)

    def on_progress(state: str, percentage: int) -> None:
        logger.debug("deployment_progress", operation=operation.description, state=state, percentage=percentage)

    def on_completed(result: DeploymentResult) -> None:
        if not loop.is_closed():
            loop.call_soon_threadsafe(settle, result)

    operation.on_progress(on_progress)
    operation.on_completed(on_completed)
    return await future


class PackageManager(Protocol):
    """OS package subsystem used by the deployment backends."""

    async def find_packages(self, family: str) -> list[PackageInfo]: ...

    def register_package(self, manifest: Path, development_mode: bool = True) -> DeploymentOperation: ...

    def remove_package(self, full_name: str, options: RemovalOptions) -> DeploymentOperation: ...

    def stage_package(
        self, uri: str, bootstrapper: bool, cancel: CancellationHandle | None = None
    ) -> DeploymentOperation: ...

    def local_state_dir(self, family: str) -> Path: ...

    async def launch_app(self, family: str, app_id: str) -> None: ...

    async def invoke_in_package(
        self, family: str, app_id: str, command: str, arguments: str, cancel: CancellationHandle | None = None
    ) -> ProcessResult: ...


def find_wdapp(explicit: Path | None = None, roots: list[Path] | None = None) -> Path | None:
    """Locate the GDK ``wdapp.exe`` tool.

    Checks the explicit location, then PATH, then the GDK install roots
    with the newest edition first.
    """
    if explicit is not None and explicit.is_file():
        return explicit

    on_path = shutil.which("wdapp.exe") or shutil.which("wdapp")
    if on_path:
        return Path(on_path)

    for root in roots if roots is not None else GDK_ROOTS:
        try:
            if not root.is_dir():
                continue
            for edition in sorted((p for p in root.iterdir() if p.is_dir()), reverse=True):
                for tools in ("tools", "Tools"):
                    candidate = edition / tools / "bin" / "gaming" / "wdapp.exe"
                    if candidate.is_file():
                        return candidate
        except OSError as e:
            logger.debug("gdk_root_scan_failed", root=str(root), error=str(e))
    return None


def _ps_quote(value: str | Path) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def _parse_packages(output: str) -> list[PackageInfo]:
    output = output.strip()
    if not output:
        return []
    raw: Any = json.loads(output)
    if isinstance(raw, dict):
        raw = [raw]
    return [
        PackageInfo(
            full_name=item.get("PackageFullName", ""),
            family=item.get("PackageFamilyName", ""),
            install_location=item.get("InstallLocation") or "",
            is_development_mode=bool(item.get("IsDevelopmentMode", False)),
        )
        for item in raw
    ]


class WindowsPackageManager:
    """PackageManager backed by PowerShell Appx cmdlets and ``wdapp``.

    Args:
        wdapp_path: Explicit wdapp.exe location
        packages_root: Parent of per-family application data directories
    """

    def __init__(self, wdapp_path: Path | None = None, packages_root: Path | None = None):
        self.wdapp_path = wdapp_path
        self.packages_root = packages_root or (default_local_app_data() / "Packages")
        self._tasks: set[asyncio.Task[None]] = set()

    @staticmethod
    async def _powershell(script: str, cancel: CancellationHandle | None = None) -> ProcessResult:
        return await run_process(
            ["powershell.exe", "-NoProfile", "-NonInteractive", "-Command", script],
            cancel,
        )

    def _spawn(
        self,
        description: str,
        run: Callable[[], Coroutine[Any, Any, ProcessResult]],
    ) -> DeploymentOperation:
        operation = DeploymentOperation(description)

        async def runner() -> None:
            operation.report_progress("started", 0)
            try:
                result = await run()
            except OperationCancelledError:
                operation.complete(DeploymentResult(DeploymentStatus.canceled))
                return
            except (LauncherError, OSError) as e:
                operation.complete(DeploymentResult(DeploymentStatus.error, error_text=str(e)))
                return
            if result.ok:
                operation.report_progress("finished", 100)
                operation.complete(DeploymentResult(DeploymentStatus.completed))
            else:
                text = (result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}")
                operation.complete(
                    DeploymentResult(DeploymentStatus.error, error_text=text, extended_code=result.exit_code)
                )

        task = asyncio.get_running_loop().create_task(runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return operation

    async def find_packages(self, family: str) -> list[PackageInfo]:
        script = (
            "Get-AppxPackage -AllUsers | "
            f"Where-Object {{ $_.PackageFamilyName -eq {_ps_quote(family)} }} | "
            "Select-Object PackageFullName,PackageFamilyName,InstallLocation,IsDevelopmentMode | "
            "ConvertTo-Json -Compress"
        )
        result = await self._powershell(script)
        if not result.ok:
            raise DeploymentError(f"Could not enumerate packages of {family}", error_text=result.stderr.strip())
        return _parse_packages(result.stdout)

    def register_package(self, manifest: Path, development_mode: bool = True) -> DeploymentOperation:
        script = f"Add-AppxPackage -Register {_ps_quote(manifest)} -ForceApplicationShutdown"
        if development_mode:
            script += " -DevelopmentMode"
        return self._spawn(f"register {manifest}", lambda: self._powershell(script))

    def remove_package(self, full_name: str, options: RemovalOptions) -> DeploymentOperation:
        script = f"Remove-AppxPackage -Package {_ps_quote(full_name)}"
        if RemovalOptions.PRESERVE_APPLICATION_DATA in options:
            script += " -PreserveApplicationData"
        if RemovalOptions.REMOVE_FOR_ALL_USERS in options:
            script += " -AllUsers"
        return self._spawn(f"remove {full_name}", lambda: self._powershell(script))

    def stage_package(
        self, uri: str, bootstrapper: bool, cancel: CancellationHandle | None = None
    ) -> DeploymentOperation:
        wdapp = find_wdapp(self.wdapp_path)

        async def run() -> ProcessResult:
            if wdapp is None:
                raise DeploymentError("wdapp.exe not found. Install the Microsoft GDK.")
            args = [str(wdapp), "install", "/w"]
            if bootstrapper:
                args.append("/bootstrapper")
            args.append(uri)
            return await run_process(args, cancel)

        return self._spawn(f"stage {uri}", run)

    def local_state_dir(self, family: str) -> Path:
        return self.packages_root / family / "LocalState"

    async def launch_app(self, family: str, app_id: str) -> None:
        target = "shell:AppsFolder\\" + f"{family}!{app_id}"
        script = f"Start-Process {_ps_quote(target)}"
        result = await self._powershell(script)
        if not result.ok:
            raise DeploymentError(f"Could not launch {family}", error_text=result.stderr.strip())

    async def invoke_in_package(
        self, family: str, app_id: str, command: str, arguments: str, cancel: CancellationHandle | None = None
    ) -> ProcessResult:
        script = (
            f"Invoke-CommandInDesktopPackage -PackageFamilyName {_ps_quote(family)} "
            f"-AppId {_ps_quote(app_id)} -Command {_ps_quote(command)} -Args {_ps_quote(arguments)}"
        )
        return await self._powershell(script, cancel)
