"""Configuration management for mclauncher-tools."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

from mclauncher_tools.core.types import default_local_app_data, default_roaming_app_data

logger = structlog.get_logger()

URL_FILTER_POLICIES = {"any_http", "host_prefix"}


class ProtocolConfig(BaseModel):
    """Update service protocol configuration."""

    endpoint: str = Field(
        default="https://fe3.delivery.mp.microsoft.com/ClientWebService/client.asmx/secured",
        description="SOAP endpoint resolving update identities to file URLs"
    )
    timeout: float = Field(default=600.0, description="Request timeout in seconds")
    url_filter: str = Field(
        default="any_http",
        description="Policy for picking a returned URL (any_http, host_prefix)"
    )
    expected_host_prefix: str = Field(
        default="http://tlu.dl.delivery.mp.microsoft.com/",
        description="Required URL prefix when url_filter is host_prefix"
    )

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator("url_filter")
    @classmethod
    def validate_url_filter(cls, v: str) -> str:
        """Validate URL filter policy."""
        if v not in URL_FILTER_POLICIES:
            raise ValueError(f"Invalid URL filter: {v}. Valid policies: {URL_FILTER_POLICIES}")
        return v


class TransferConfig(BaseModel):
    """Streaming download configuration."""

    chunk_size: int = Field(default=1024 * 1024, description="Read chunk size in bytes")
    timeout: float = Field(default=600.0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Validate chunk size value."""
        if v <= 0:
            raise ValueError("Chunk size must be positive")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v


class DeploymentConfig(BaseModel):
    """OS package deployment and save data configuration."""

    backup_dir: Path = Field(
        default_factory=lambda: default_local_app_data() / "TmpMinecraftLocalState",
        description="Fixed location save data is moved to while a package is removed"
    )
    decrypt_dir: Path = Field(
        default_factory=lambda: default_local_app_data() / "TmpMinecraftDecrypt",
        description="Directory receiving the decrypted executable"
    )
    container_data_root: Path = Field(
        default_factory=default_roaming_app_data,
        description="Parent of the per-account container save data directories"
    )
    wdapp_path: Path | None = Field(default=None, description="Explicit wdapp.exe location")
    archive_app_id: str = Field(default="App", description="Application id of the archive package")
    container_app_id: str = Field(default="Game", description="Application id of the container package")
    game_executable: str = Field(default="Minecraft.Windows.exe", description="Protected executable name")
    decrypt_timeout: float = Field(default=30.0, description="Seconds to wait for the decrypted executable")
    decrypt_poll_interval: float = Field(default=0.5, description="Seconds between decrypt output checks")
    migration_marker: str = Field(
        default="uwp_migration_complete",
        description="Marker file preventing the container build from migrating archive save data"
    )

    @field_validator("decrypt_timeout", "decrypt_poll_interval")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate polling values."""
        if v <= 0:
            raise ValueError("Polling values must be positive")
        return v


class CatalogConfig(BaseModel):
    """Version list configuration."""

    archive_list_url: str = Field(
        default="https://mrarm.io/r/w10-vdb",
        description="Archive-format version list"
    )
    container_list_url: str = Field(
        default="https://raw.githubusercontent.com/MinecraftBedrockArchiver/GdkLinks/refs/heads/master/urls.min.json",
        description="Container-format version list"
    )
    timeout: float = Field(default=30.0, description="Request timeout in seconds")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v


class AppConfig(BaseModel):
    """Application configuration."""

    # Directory settings
    config_dir: Path = Field(
        default=Path.home() / ".config" / "mclauncher-tools",
        description="Configuration directory"
    )
    data_dir: Path = Field(
        default=Path.home() / ".local" / "share" / "mclauncher-tools",
        description="Data directory holding installed versions and caches"
    )

    # Component settings
    protocol: ProtocolConfig = Field(default_factory=ProtocolConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    deployment: DeploymentConfig = Field(default_factory=DeploymentConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)

    # Preferences
    delete_package_after_download: bool = Field(
        default=True,
        description="Delete the downloaded package once installed"
    )
    show_betas: bool = Field(default=True, description="List beta versions")
    show_installed_only: bool = Field(default=False, description="List installed versions only")

    # Output settings
    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    @property
    def versions_dir(self) -> Path:
        return self.data_dir / "versions"

    @property
    def imported_dir(self) -> Path:
        return self.data_dir / "imported_versions"

    @property
    def downloads_dir(self) -> Path:
        return self.data_dir / "downloads"

    @property
    def archive_cache_file(self) -> Path:
        return self.data_dir / "versions.json"

    @property
    def container_cache_file(self) -> Path:
        return self.data_dir / "versions_gdk.json"

    def model_post_init(self, __context) -> None:
        """Ensure directories exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = Path.home() / ".config" / "mclauncher-tools" / "config.json"

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        # Return defaults
        return cls()

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = self.config_dir / "config.json"

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v
