"""Shared utilities for mclauncher-tools."""

from __future__ import annotations

from pathlib import Path

ZIP_SIGNATURE = b"PK\x03\x04"


def format_size(size: int) -> str:
    """Format byte size as human-readable string.

    Args:
        size: Size in bytes

    Returns:
        Formatted string with appropriate unit (e.g., "1.5 MB")

    Example:
        >>> format_size(1024)
        '1.0 KB'
        >>> format_size(1536)
        '1.5 KB'
        >>> format_size(1048576)
        '1.0 MB'
    """
    if size < 0:
        return "0 B"

    size_float = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_float < 1024.0:
            if unit == "B":
                return f"{int(size_float)} {unit}"
            return f"{size_float:.1f} {unit}"
        size_float /= 1024.0
    return f"{size_float:.1f} PB"


def is_zip_file(path: Path) -> bool:
    """Check for the ZIP local file header signature.

    Archive packages are ZIP files; container packages are not.
    """
    try:
        with open(path, "rb") as f:
            return f.read(4) == ZIP_SIGNATURE
    except OSError:
        return False


def normalize_package_extension(path: Path) -> Path:
    """Rename a downloaded package so its extension matches its content.

    Returns:
        The (possibly new) path of the package
    """
    desired = ".Appx" if is_zip_file(path) else ".msixvc"
    if path.suffix.lower() == desired.lower():
        return path
    renamed = path.with_suffix(desired)
    renamed.unlink(missing_ok=True)
    path.rename(renamed)
    return renamed
