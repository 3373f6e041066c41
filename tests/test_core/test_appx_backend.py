"""Tests for mclauncher_tools.core.appx_backend module."""

import asyncio
import zipfile
from pathlib import Path

import pytest
from fakes import FAMILY, FakePackageManager, RecordingOperator

from mclauncher_tools.core.appx_backend import AppPackageBackend, same_path
from mclauncher_tools.core.config import DeploymentConfig
from mclauncher_tools.core.deployment import RemovalOptions
from mclauncher_tools.core.errors import DataConflictError, DeploymentError, InvalidPackageError


def _file_set(root: Path) -> dict[str, bytes]:
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def _populate(data_dir: Path) -> None:
    (data_dir / "games" / "com.mojang" / "minecraftWorlds" / "world1").mkdir(parents=True)
    (data_dir / "games" / "com.mojang" / "minecraftWorlds" / "world1" / "level.dat").write_bytes(b"level")
    (data_dir / "games" / "com.mojang" / "options.txt").write_text("gfx=1")
    (data_dir / "settings.dat").write_bytes(b"\x00\x01")


@pytest.fixture
def backend(
    package_manager: FakePackageManager,
    operator: RecordingOperator,
    deployment_config: DeploymentConfig,
) -> AppPackageBackend:
    return AppPackageBackend(package_manager, operator, deployment_config)


class TestBackupRestore:
    """Test save data backup and restore."""

    def test_round_trip(self, backend: AppPackageBackend, package_manager: FakePackageManager):
        """Backup followed by restore reproduces the original file set."""
        data_dir = package_manager.local_state_dir(FAMILY)
        _populate(data_dir)
        original = _file_set(data_dir)

        assert backend.backup_save_data(FAMILY)
        assert not data_dir.exists()
        assert backend.backup_dir.is_dir()

        assert backend.restore_save_data(FAMILY)
        assert _file_set(data_dir) == original
        assert not backend.backup_dir.exists()

    def test_nothing_to_back_up(self, backend: AppPackageBackend):
        assert not backend.backup_save_data(FAMILY)
        assert not backend.backup_dir.exists()

    def test_existing_backup_blocks(
        self, backend: AppPackageBackend, package_manager: FakePackageManager, operator: RecordingOperator
    ):
        """An unconsumed backup is never overwritten."""
        backend.backup_dir.mkdir(parents=True)
        (backend.backup_dir / "old.dat").write_text("old")
        _populate(package_manager.local_state_dir(FAMILY))

        with pytest.raises(DataConflictError) as exc_info:
            backend.backup_save_data(FAMILY)

        assert exc_info.value.path == backend.backup_dir
        assert operator.revealed == [backend.backup_dir]
        assert (backend.backup_dir / "old.dat").read_text() == "old"
        assert package_manager.local_state_dir(FAMILY).is_dir()

    def test_restore_asks_before_overwrite(self, package_manager: FakePackageManager, deployment_config: DeploymentConfig):
        operator = RecordingOperator(answers=[False])
        backend = AppPackageBackend(package_manager, operator, deployment_config)
        backend.backup_dir.mkdir(parents=True)
        (backend.backup_dir / "options.txt").write_text("backup")
        data_dir = package_manager.local_state_dir(FAMILY)
        data_dir.mkdir(parents=True)
        (data_dir / "options.txt").write_text("current")

        backend.restore_save_data(FAMILY)

        assert len(operator.questions) == 1
        assert (data_dir / "options.txt").read_text() == "current"

    def test_restore_overwrites_when_confirmed(self, package_manager: FakePackageManager, deployment_config: DeploymentConfig):
        operator = RecordingOperator(answers=[True])
        backend = AppPackageBackend(package_manager, operator, deployment_config)
        backend.backup_dir.mkdir(parents=True)
        (backend.backup_dir / "options.txt").write_text("backup")
        data_dir = package_manager.local_state_dir(FAMILY)
        data_dir.mkdir(parents=True)
        (data_dir / "options.txt").write_text("current")

        backend.restore_save_data(FAMILY)

        assert (data_dir / "options.txt").read_text() == "backup"


class TestUnregister:
    """Test package removal."""

    def test_regular_package_backed_up(self, backend: AppPackageBackend, package_manager: FakePackageManager):
        package = package_manager.add_package("C:\\Program Files\\WindowsApps\\Minecraft")
        _populate(package_manager.local_state_dir(FAMILY))

        removed = asyncio.run(backend.unregister(FAMILY))

        assert removed == 1
        assert ("remove", package.full_name, RemovalOptions.REMOVE_FOR_ALL_USERS) in package_manager.calls
        assert (backend.backup_dir / "settings.dat").exists()

    def test_development_package_preserves_data(self, backend: AppPackageBackend, package_manager: FakePackageManager):
        package = package_manager.add_package("C:\\Versions\\a", development_mode=True)
        _populate(package_manager.local_state_dir(FAMILY))

        asyncio.run(backend.unregister(FAMILY))

        assert ("remove", package.full_name, RemovalOptions.PRESERVE_APPLICATION_DATA) in package_manager.calls
        assert not backend.backup_dir.exists()
        assert package_manager.local_state_dir(FAMILY).is_dir()

    def test_only_matching_directory(self, backend: AppPackageBackend, package_manager: FakePackageManager, temp_dir: Path):
        keep = package_manager.add_package(temp_dir / "other", development_mode=True)
        gone = package_manager.add_package("", development_mode=True)
        mine = package_manager.add_package(temp_dir / "mine", development_mode=True)

        removed = asyncio.run(backend.unregister(FAMILY, temp_dir / "mine"))

        assert removed == 2
        assert package_manager.packages == [keep]
        assert gone not in package_manager.packages and mine not in package_manager.packages


class TestRegister:
    """Test package registration."""

    def test_register_replaces_existing(self, backend: AppPackageBackend, package_manager: FakePackageManager, temp_dir: Path):
        old = package_manager.add_package(temp_dir / "old", development_mode=True)
        game_dir = temp_dir / "new"
        game_dir.mkdir()

        assert asyncio.run(backend.register(game_dir, FAMILY))

        assert old not in package_manager.packages
        assert ("register", str(game_dir / "AppxManifest.xml"), True) in package_manager.calls
        assert same_path(package_manager.packages[0].install_location, game_dir)

    def test_register_restores_backup(self, backend: AppPackageBackend, package_manager: FakePackageManager, temp_dir: Path):
        package_manager.add_package("C:\\Program Files\\WindowsApps\\Minecraft")
        _populate(package_manager.local_state_dir(FAMILY))
        original = _file_set(package_manager.local_state_dir(FAMILY))
        game_dir = temp_dir / "new"
        game_dir.mkdir()

        asyncio.run(backend.register(game_dir, FAMILY))

        assert _file_set(package_manager.local_state_dir(FAMILY)) == original
        assert not backend.backup_dir.exists()

    def test_same_directory_is_noop_but_restores(
        self, backend: AppPackageBackend, package_manager: FakePackageManager, temp_dir: Path
    ):
        """Registering the registered directory only restores a pending backup."""
        game_dir = temp_dir / "current"
        game_dir.mkdir()
        package_manager.add_package(game_dir, development_mode=True)
        backend.backup_dir.mkdir(parents=True)
        (backend.backup_dir / "settings.dat").write_bytes(b"pending")

        assert not asyncio.run(backend.register(game_dir, FAMILY))

        assert not any(call[0] in ("register", "remove") for call in package_manager.calls)
        assert (package_manager.local_state_dir(FAMILY) / "settings.dat").read_bytes() == b"pending"
        assert not backend.backup_dir.exists()

    def test_register_failure_has_hint(self, backend: AppPackageBackend, package_manager: FakePackageManager, temp_dir: Path):
        package_manager.register_error = "0x80073CFF: developer mode required"

        with pytest.raises(DeploymentError) as exc_info:
            asyncio.run(backend.register(temp_dir, FAMILY))

        assert "Developer Mode" in exc_info.value.operator_message
        assert exc_info.value.error_text == "0x80073CFF: developer mode required"


class TestExtract:
    """Test archive extraction."""

    def test_extract_removes_signature(self, backend: AppPackageBackend, temp_dir: Path):
        package = temp_dir / "pkg.Appx"
        with zipfile.ZipFile(package, "w") as archive:
            archive.writestr("AppxManifest.xml", "<Package/>")
            archive.writestr("AppxSignature.p7x", "sig")
            archive.writestr("data/resource.pack", "res")
        game_dir = temp_dir / "game"
        game_dir.mkdir()
        (game_dir / "stale.txt").write_text("old")

        backend.extract(package, game_dir)

        assert (game_dir / "AppxManifest.xml").exists()
        assert (game_dir / "data" / "resource.pack").read_text() == "res"
        assert not (game_dir / "AppxSignature.p7x").exists()
        assert not (game_dir / "stale.txt").exists()

    def test_extract_invalid(self, backend: AppPackageBackend, temp_dir: Path):
        package = temp_dir / "pkg.Appx"
        package.write_bytes(b"not a zip")

        with pytest.raises(InvalidPackageError):
            backend.extract(package, temp_dir / "game")

        assert not (temp_dir / "game").exists()
