"""Tests for config.py module."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from mclauncher_tools.core.config import (
    AppConfig,
    CatalogConfig,
    DeploymentConfig,
    ProtocolConfig,
    TransferConfig,
)


class TestProtocolConfig:
    """Test ProtocolConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        config = ProtocolConfig()

        assert config.endpoint.endswith("/ClientWebService/client.asmx/secured")
        assert config.timeout == 600.0
        assert config.url_filter == "any_http"

    def test_url_filter_validation(self):
        ProtocolConfig(url_filter="host_prefix")

        with pytest.raises(ValueError):
            ProtocolConfig(url_filter="strict")

    def test_timeout_validation(self):
        with pytest.raises(ValueError):
            ProtocolConfig(timeout=0)


class TestTransferConfig:
    """Test TransferConfig class."""

    def test_default_values(self):
        config = TransferConfig()

        assert config.chunk_size == 1024 * 1024
        assert config.verify_ssl is True

    def test_chunk_size_validation(self):
        """Test chunk size validation."""
        TransferConfig(chunk_size=1)

        with pytest.raises(ValueError):
            TransferConfig(chunk_size=0)
        with pytest.raises(ValueError):
            TransferConfig(timeout=-1.0)


class TestDeploymentConfig:
    """Test DeploymentConfig class."""

    def test_default_locations(self, monkeypatch, tmp_path):
        """Fixed locations follow the Windows application data folders."""
        monkeypatch.setenv("LOCALAPPDATA", str(tmp_path / "Local"))
        monkeypatch.setenv("APPDATA", str(tmp_path / "Roaming"))

        config = DeploymentConfig()

        assert config.backup_dir == tmp_path / "Local" / "TmpMinecraftLocalState"
        assert config.decrypt_dir == tmp_path / "Local" / "TmpMinecraftDecrypt"
        assert config.container_data_root == tmp_path / "Roaming"
        assert config.game_executable == "Minecraft.Windows.exe"
        assert config.migration_marker == "uwp_migration_complete"

    def test_polling_validation(self):
        with pytest.raises(ValueError):
            DeploymentConfig(decrypt_timeout=0)
        with pytest.raises(ValueError):
            DeploymentConfig(decrypt_poll_interval=-0.5)


class TestCatalogConfig:
    """Test CatalogConfig class."""

    def test_default_lists(self):
        config = CatalogConfig()

        assert config.archive_list_url.startswith("https://")
        assert config.container_list_url.endswith("urls.min.json")

    def test_timeout_validation(self):
        with pytest.raises(ValueError):
            CatalogConfig(timeout=0)


class TestAppConfig:
    """Test AppConfig class."""

    def test_default_values(self):
        """Test default application configuration."""
        with patch("pathlib.Path.mkdir"):
            config = AppConfig()

        assert config.config_dir == Path.home() / ".config" / "mclauncher-tools"
        assert config.data_dir == Path.home() / ".local" / "share" / "mclauncher-tools"
        assert config.delete_package_after_download is True
        assert config.show_betas is True
        assert config.output_format == "rich"
        assert config.log_level == "INFO"

    def test_derived_paths(self, tmp_path):
        config = AppConfig(config_dir=tmp_path / "config", data_dir=tmp_path / "data")

        assert config.versions_dir == tmp_path / "data" / "versions"
        assert config.imported_dir == tmp_path / "data" / "imported_versions"
        assert config.downloads_dir == tmp_path / "data" / "downloads"
        assert config.archive_cache_file == tmp_path / "data" / "versions.json"
        assert config.container_cache_file == tmp_path / "data" / "versions_gdk.json"

    @patch("pathlib.Path.mkdir")
    def test_directories_created_on_init(self, mock_mkdir):
        """Test that directories are created during initialization."""
        _ = AppConfig()

        # Should be called twice - once for config_dir, once for data_dir
        assert mock_mkdir.call_count == 2
        calls = mock_mkdir.call_args_list
        assert all(call.kwargs == {"parents": True, "exist_ok": True} for call in calls)

    def test_load_config_file_exists(self, tmp_path):
        """Test loading configuration from existing file."""
        config_file = tmp_path / "config.json"
        config_data = {
            "config_dir": str(tmp_path / "config"),
            "data_dir": str(tmp_path / "data"),
            "delete_package_after_download": False,
            "protocol": {"url_filter": "host_prefix"},
            "deployment": {"decrypt_timeout": 5.0},
        }
        config_file.write_text(json.dumps(config_data))

        config = AppConfig.load(config_file)

        assert config.delete_package_after_download is False
        assert config.protocol.url_filter == "host_prefix"
        assert config.deployment.decrypt_timeout == 5.0
        assert config.transfer.chunk_size == 1024 * 1024

    def test_load_config_file_missing(self, tmp_path):
        with patch("pathlib.Path.mkdir"):
            config = AppConfig.load(tmp_path / "missing.json")

        assert config.output_format == "rich"

    def test_save_and_reload(self, tmp_path):
        config = AppConfig(
            config_dir=tmp_path / "config",
            data_dir=tmp_path / "data",
            show_betas=False,
            deployment=DeploymentConfig(backup_dir=tmp_path / "backup"),
        )
        config_file = tmp_path / "out" / "config.json"

        config.save(config_file)
        loaded = AppConfig.load(config_file)

        assert loaded.show_betas is False
        assert loaded.deployment.backup_dir == tmp_path / "backup"
        assert loaded.data_dir == tmp_path / "data"

    def test_invalid_output_format(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig(config_dir=tmp_path, data_dir=tmp_path, output_format="xml")

    def test_invalid_log_level(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig(config_dir=tmp_path, data_dir=tmp_path, log_level="LOUD")
