"""CLI command implementations for mclauncher_tools.

This module contains all command-line interface implementations:
- versions: List and refresh the version catalog
- download, launch, remove, import: Operations on a single version
- sign-in: Obtain the user ticket for beta and preview downloads
- data: Inspect and migrate save data
"""

from mclauncher_tools.commands.data import data_group
from mclauncher_tools.commands.install import download, import_package, launch, remove, sign_in
from mclauncher_tools.commands.versions import versions_group

__all__ = ["data_group", "download", "import_package", "launch", "remove", "sign_in", "versions_group"]
