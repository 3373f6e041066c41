"""mclauncher-tools - download, install and launch Minecraft for Windows versions.

Key modules:
- core: Update protocol client, transfers, deployment backends, save data
  migration and the per-version orchestrator
- commands: CLI command implementations
"""

__version__ = "0.1.0"
__author__ = "mclauncher-tools contributors"

# Re-export commonly used types
from mclauncher_tools.core.types import (
    PackageFamilies,
    PackageFormat,
    ReleaseChannel,
    VersionDescriptor,
)

__all__ = [
    "__version__",
    "__author__",
    "PackageFamilies",
    "PackageFormat",
    "ReleaseChannel",
    "VersionDescriptor",
]
