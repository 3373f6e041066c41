"""Core functionality for mclauncher_tools.

This module provides the engine used by the commands:
- Configuration management and type definitions
- Update protocol client and streaming transfers
- OS package deployment for archive and container packages
- Save data backup, restore and migration
- Per-version operation orchestration
"""

from mclauncher_tools.core.errors import LauncherError
from mclauncher_tools.core.install_state import InstallPhase, InstallState
from mclauncher_tools.core.types import (
    PackageFamilies,
    PackageFormat,
    ReleaseChannel,
    VersionDescriptor,
)
from mclauncher_tools.core.utils import format_size

__all__ = [
    # Types
    "PackageFamilies",
    "PackageFormat",
    "ReleaseChannel",
    "VersionDescriptor",
    "InstallPhase",
    "InstallState",
    # Errors
    "LauncherError",
    # Utils
    "format_size",
]
