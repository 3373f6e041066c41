"""Core type definitions for mclauncher_tools."""

from __future__ import annotations

import os
from collections.abc import Callable
from enum import IntEnum, StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from mclauncher_tools.core.install_state import InstallState

UNKNOWN_UUID = "UNKNOWN"


class PackageFamilies(StrEnum):
    """OS package family names of the game."""
    MINECRAFT = "Microsoft.MinecraftUWP_8wekyb3d8bbwe"
    MINECRAFT_PREVIEW = "Microsoft.MinecraftWindowsBeta_8wekyb3d8bbwe"


class PackageFormat(StrEnum):
    """Packaging formats the game is distributed in."""
    ARCHIVE = "archive"
    CONTAINER = "container"


class ReleaseChannel(IntEnum):
    """Release channel, numbered as in the published version list."""
    RELEASE = 0
    BETA = 1
    PREVIEW = 2
    IMPORTED = 100


class VersionDescriptor(BaseModel):
    """A version of the game known to the launcher.

    The install state is attached by the engine for the duration of an
    operation and observed by whoever renders the version. ``None`` means
    the version is idle.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    uuid: str = Field(default=UNKNOWN_UUID, description="Update identity or UNKNOWN")
    name: str = Field(..., description="Version name")
    format: PackageFormat = Field(default=PackageFormat.ARCHIVE, description="Package format")
    channel: ReleaseChannel = Field(default=ReleaseChannel.RELEASE, description="Release channel")
    download_urls: list[str] = Field(default_factory=list, description="Pre-resolved source URLs")
    game_directory: Path = Field(..., description="Install directory")
    is_new: bool = Field(default=False, description="First seen in the latest list fetch")

    _state: InstallState | None = PrivateAttr(default=None)
    _listeners: list[Callable[[VersionDescriptor, str], None]] = PrivateAttr(default_factory=list)

    @property
    def package_family(self) -> str:
        if self.channel == ReleaseChannel.PREVIEW:
            return PackageFamilies.MINECRAFT_PREVIEW.value
        return PackageFamilies.MINECRAFT.value

    @property
    def is_imported(self) -> bool:
        return self.channel == ReleaseChannel.IMPORTED

    @property
    def is_preview(self) -> bool:
        return self.channel == ReleaseChannel.PREVIEW

    @property
    def needs_user_authorization(self) -> bool:
        """Beta and preview builds are only served to entitled accounts."""
        return self.channel in (ReleaseChannel.BETA, ReleaseChannel.PREVIEW)

    @property
    def is_installed(self) -> bool:
        return self.game_directory.is_dir()

    @property
    def display_name(self) -> str:
        tag = ""
        if self.channel == ReleaseChannel.BETA:
            tag = " (beta)"
        elif self.channel == ReleaseChannel.PREVIEW:
            tag = " (preview)"
        return self.name + tag + (" (NEW!)" if self.is_new else "")

    @property
    def display_install_status(self) -> str:
        if not self.is_installed:
            return "Not installed"
        if self.format == PackageFormat.CONTAINER:
            return "Installed (container)"
        return "Installed"

    @property
    def state(self) -> InstallState | None:
        return self._state

    @state.setter
    def state(self, value: InstallState | None) -> None:
        self._state = value
        self.notify("state")

    @property
    def is_busy(self) -> bool:
        return self._state is not None

    def add_listener(self, listener: Callable[[VersionDescriptor, str], None]) -> None:
        """Register a property-change listener: (descriptor, property name)."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[VersionDescriptor, str], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self, name: str) -> None:
        for listener in list(self._listeners):
            listener(self, name)

    def update_install_status(self) -> None:
        self.notify("is_installed")


def game_directory_name(name: str, channel: ReleaseChannel, fmt: PackageFormat) -> str:
    """Deterministic install directory name for a catalog version."""
    prefix = "Minecraft-Preview-" if channel == ReleaseChannel.PREVIEW else "Minecraft-"
    suffix = "-container" if fmt == PackageFormat.CONTAINER else ""
    return prefix + sanitize_file_name(name) + suffix


_INVALID_FILE_NAME_CHARS = set('<>:"/\\|?*') | {chr(c) for c in range(32)}


def sanitize_file_name(name: str) -> str:
    """Replace characters that are invalid in Windows file names.

    Example:
        >>> sanitize_file_name("1.20: test?")
        '1.20_ test_'
    """
    cleaned = "".join("_" if ch in _INVALID_FILE_NAME_CHARS else ch for ch in name).strip()
    if not cleaned:
        return "file"
    return cleaned


def default_local_app_data() -> Path:
    """%LOCALAPPDATA%, falling back to the conventional location under home."""
    value = os.environ.get("LOCALAPPDATA")
    if value:
        return Path(value)
    return Path.home() / "AppData" / "Local"


def default_roaming_app_data() -> Path:
    """%APPDATA%, falling back to the conventional location under home."""
    value = os.environ.get("APPDATA")
    if value:
        return Path(value)
    return Path.home() / "AppData" / "Roaming"
