"""Version catalog: published version lists, their local cache and imports.

Two lists are published. The archive list is a JSON array of
``[name, update_id, channel]`` triples. The container list maps each
channel to ``{name: [url, ...]}``. Both are cached next to the installed
versions so the catalog is available offline; entries not present in the
cache are flagged as new after a refresh.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import structlog

from mclauncher_tools.core.config import AppConfig
from mclauncher_tools.core.errors import TransportError
from mclauncher_tools.core.types import (
    UNKNOWN_UUID,
    PackageFormat,
    ReleaseChannel,
    VersionDescriptor,
    game_directory_name,
)

logger = structlog.get_logger()

CONTAINER_CONFIG_NAME = "MicrosoftGame.Config"

_CONTAINER_CHANNELS = {
    "release": ReleaseChannel.RELEASE,
    "preview": ReleaseChannel.PREVIEW,
}


def detect_format(directory: Path, default: PackageFormat = PackageFormat.ARCHIVE) -> PackageFormat:
    """Tell the format of an unpacked version directory from its contents."""
    if (directory / CONTAINER_CONFIG_NAME).exists():
        return PackageFormat.CONTAINER
    return default


class VersionList:
    """Ordered collection of known versions.

    Args:
        config: Application configuration (directories, list endpoints)
        http_client: Optional HTTP client for list downloads
    """

    def __init__(self, config: AppConfig, http_client: httpx.Client | None = None):
        self.config = config
        self.versions: list[VersionDescriptor] = []
        self._seen: set[str] = set()
        self._client = http_client

    def __iter__(self):
        return iter(self.versions)

    def __len__(self) -> int:
        return len(self.versions)

    @property
    def client(self) -> httpx.Client:
        """Get or create sync HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.catalog.timeout, follow_redirects=True)
        return self._client

    def _mark_seen(self, key: str, is_cache: bool) -> bool:
        """Record a version key and return whether it counts as new."""
        exists = key in self._seen
        self._seen.add(key)
        return not exists and not is_cache

    def parse_archive_list(self, data: list[Any], is_cache: bool) -> int:
        """Add versions from the archive list. Returns the number added."""
        added = 0
        for entry in reversed(data):
            try:
                name, update_id, channel_value = str(entry[0]), str(entry[1]), int(entry[2])
                channel = ReleaseChannel(channel_value)
            except (IndexError, TypeError, ValueError):
                logger.debug("catalog_entry_skipped", entry=entry)
                continue
            if channel == ReleaseChannel.IMPORTED:
                continue
            is_new = self._mark_seen(name, is_cache)
            if self.find(name, PackageFormat.ARCHIVE, channel) is not None:
                continue
            self.versions.append(
                VersionDescriptor(
                    uuid=update_id,
                    name=name,
                    format=PackageFormat.ARCHIVE,
                    channel=channel,
                    game_directory=self.config.versions_dir
                    / game_directory_name(name, channel, PackageFormat.ARCHIVE),
                    is_new=is_new,
                )
            )
            added += 1
        return added

    def parse_container_list(self, data: dict[str, Any], is_cache: bool) -> int:
        """Add versions from the container list. Returns the number added."""
        added = 0
        for key, channel in _CONTAINER_CHANNELS.items():
            entries = data.get(key) or {}
            for name in reversed(list(entries)):
                urls = [str(u) for u in entries[name] or []]
                if not urls:
                    logger.debug("catalog_version_without_urls", name=name)
                    continue
                is_new = self._mark_seen(name, is_cache)
                if self.find(name, PackageFormat.CONTAINER, channel) is not None:
                    continue
                self.versions.append(
                    VersionDescriptor(
                        uuid=UNKNOWN_UUID,
                        name=name,
                        format=PackageFormat.CONTAINER,
                        channel=channel,
                        download_urls=urls,
                        game_directory=self.config.versions_dir
                        / game_directory_name(name, channel, PackageFormat.CONTAINER),
                        is_new=is_new,
                    )
                )
                added += 1
        return added

    def load_from_cache(self) -> None:
        """Load both lists from the local cache, ignoring missing files."""
        for cache_file, parse in (
            (self.config.archive_cache_file, self.parse_archive_list),
            (self.config.container_cache_file, self.parse_container_list),
        ):
            if not cache_file.exists():
                continue
            try:
                parse(json.loads(cache_file.read_text(encoding="utf-8")), True)
            except (json.JSONDecodeError, OSError, AttributeError) as e:
                logger.warning("catalog_cache_invalid", path=str(cache_file), error=str(e))

    def _fetch(self, url: str, cache_file: Path) -> Any:
        try:
            response = self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to download version list: {e}", url=url) from e
        data = response.json()
        cache_file.parent.mkdir(parents=True, exist_ok=True)
        cache_file.write_text(response.text, encoding="utf-8")
        return data

    def refresh(self) -> int:
        """Download both lists, update the cache and add new versions.

        Returns:
            Number of versions added

        Raises:
            TransportError: If a list cannot be downloaded
        """
        added = self.parse_archive_list(
            self._fetch(self.config.catalog.archive_list_url, self.config.archive_cache_file), False
        )
        added += self.parse_container_list(
            self._fetch(self.config.catalog.container_list_url, self.config.container_cache_file), False
        )
        logger.info("catalog_refreshed", added=added, total=len(self.versions))
        return added

    def load_imported(self) -> None:
        """Add a version for every directory in the imported directory."""
        imported_dir = self.config.imported_dir
        if not imported_dir.is_dir():
            return
        for directory in sorted(p for p in imported_dir.iterdir() if p.is_dir()):
            if "IMPORTED_" + directory.name in self._seen:
                continue
            self._seen.add("IMPORTED_" + directory.name)
            self.add_imported(directory.name, directory, detect_format(directory))

    def add_imported(self, name: str, directory: Path, fmt: PackageFormat) -> VersionDescriptor:
        descriptor = VersionDescriptor(
            uuid=UNKNOWN_UUID,
            name=name,
            format=fmt,
            channel=ReleaseChannel.IMPORTED,
            game_directory=directory,
        )
        self.versions.append(descriptor)
        return descriptor

    def remove(self, descriptor: VersionDescriptor) -> None:
        if descriptor in self.versions:
            self.versions.remove(descriptor)

    def find(
        self,
        name: str,
        fmt: PackageFormat | None = None,
        channel: ReleaseChannel | None = None,
    ) -> VersionDescriptor | None:
        """Find a version by name, optionally narrowed by format and channel."""
        for version in self.versions:
            if version.name != name:
                continue
            if fmt is not None and version.format != fmt:
                continue
            if channel is not None and version.channel != channel:
                continue
            return version
        return None

    def filtered(self, show_betas: bool = True, installed_only: bool = False) -> list[VersionDescriptor]:
        return [
            v
            for v in self.versions
            if (show_betas or v.channel != ReleaseChannel.BETA) and (v.is_installed or not installed_only)
        ]
