"""Pytest configuration and shared fixtures for mclauncher_tools tests."""

import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from fakes import FakePackageManager, RecordingOperator

from mclauncher_tools.core.config import AppConfig, DeploymentConfig
from mclauncher_tools.core.types import PackageFormat, ReleaseChannel, VersionDescriptor


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def deployment_config(temp_dir: Path) -> DeploymentConfig:
    """Deployment configuration rooted in the temporary directory."""
    return DeploymentConfig(
        backup_dir=temp_dir / "TmpMinecraftLocalState",
        decrypt_dir=temp_dir / "TmpMinecraftDecrypt",
        container_data_root=temp_dir / "Roaming",
        decrypt_timeout=1.0,
        decrypt_poll_interval=0.01,
    )


@pytest.fixture
def app_config(temp_dir: Path, deployment_config: DeploymentConfig) -> AppConfig:
    """Application configuration rooted in the temporary directory."""
    return AppConfig(
        config_dir=temp_dir / "config",
        data_dir=temp_dir / "data",
        deployment=deployment_config,
    )


@pytest.fixture
def package_manager(temp_dir: Path) -> FakePackageManager:
    """In-memory package subsystem."""
    return FakePackageManager(temp_dir / "Packages")


@pytest.fixture
def operator() -> RecordingOperator:
    """Operator that declines every confirmation."""
    return RecordingOperator()


@pytest.fixture
def release_version(app_config: AppConfig) -> VersionDescriptor:
    """Release channel archive version."""
    return VersionDescriptor(
        uuid="d25f4b4a-1b2c-4d3e-8f90-123456789abc",
        name="1.20.1.2",
        format=PackageFormat.ARCHIVE,
        channel=ReleaseChannel.RELEASE,
        game_directory=app_config.versions_dir / "Minecraft-1.20.1.2",
    )


@pytest.fixture
def container_version(app_config: AppConfig) -> VersionDescriptor:
    """Release channel container version with a pre-resolved URL."""
    return VersionDescriptor(
        name="1.21.120.4",
        format=PackageFormat.CONTAINER,
        channel=ReleaseChannel.RELEASE,
        download_urls=["http://assets.example.com/Minecraft-1.21.120.4.msixvc"],
        game_directory=app_config.versions_dir / "Minecraft-1.21.120.4-container",
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "windows: marks tests that need Windows")
