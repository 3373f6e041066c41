"""Tests for mclauncher_tools.__main__ module."""

import json
import re
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from mclauncher_tools.__main__ import main
from mclauncher_tools.core.errors import TransportError

ARCHIVE_LIST = [["1.20.0.1", "uuid-a", 0], ["1.20.10.20", "uuid-b", 1]]


def _clean(output: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", output)


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch) -> Path:
    """Configuration file rooting every directory in the temporary directory."""
    monkeypatch.setenv("LOCALAPPDATA", str(tmp_path / "Local"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "Roaming"))
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "versions.json").write_text(json.dumps(ARCHIVE_LIST))
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"config_dir": str(tmp_path / "config"), "data_dir": str(data_dir)}))
    return path


class TestMainCLI:
    """Tests for main CLI functionality."""

    def test_main_help(self) -> None:
        """Test main command help output."""
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Download, install and launch Minecraft" in result.output
        for command in ("versions", "download", "launch", "remove", "import", "sign-in", "data"):
            assert command in result.output

    def test_version_command(self, config_file: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(main, ["--config", str(config_file), "version"])
        assert result.exit_code == 0
        assert "mclauncher-tools 0.1.0" in _clean(result.output)

    def test_version_json(self, config_file: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(main, ["--config", str(config_file), "--output", "json", "version"])
        assert result.exit_code == 0
        assert json.loads(result.output)["name"] == "mclauncher-tools"

    def test_version_option(self) -> None:
        """Test --version option."""
        runner = CliRunner()
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_debug_flag(self, config_file: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(main, ["--config", str(config_file), "--debug", "version"])
        assert result.exit_code == 0


class TestVersionsCommands:
    """Tests for the versions group."""

    def test_list_json(self, config_file: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(main, ["--config", str(config_file), "-o", "json", "versions", "list"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [v["name"] for v in data] == ["1.20.10.20", "1.20.0.1"]
        assert data[0]["channel"] == "beta"
        assert data[0]["installed"] is False

    def test_list_without_betas(self, config_file: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(main, ["--config", str(config_file), "-o", "json", "versions", "list", "--no-betas"])

        assert result.exit_code == 0
        assert [v["name"] for v in json.loads(result.output)] == ["1.20.0.1"]

    def test_list_table(self, config_file: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(main, ["--config", str(config_file), "-o", "plain", "versions", "list"])

        assert result.exit_code == 0
        assert "1.20.0.1" in result.output
        assert "Not installed" in result.output

    def test_refresh_failure(self, config_file: Path) -> None:
        runner = CliRunner()
        with patch(
            "mclauncher_tools.core.catalog.VersionList.refresh",
            side_effect=TransportError("Failed to download version list: offline"),
        ):
            result = runner.invoke(main, ["--config", str(config_file), "-o", "plain", "versions", "refresh"])

        assert result.exit_code == 1
        assert "offline" in result.output


class TestVersionCommands:
    """Tests for per-version commands."""

    def test_download_unknown_version(self, config_file: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(main, ["--config", str(config_file), "-o", "plain", "download", "9.9.9.9"])

        assert result.exit_code == 1
        assert "Unknown version: 9.9.9.9" in result.output

    def test_launch_not_installed(self, config_file: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(main, ["--config", str(config_file), "-o", "plain", "launch", "1.20.0.1"])

        assert result.exit_code == 1
        assert "not installed" in result.output

    def test_remove_declined(self, config_file: Path) -> None:
        runner = CliRunner()
        with patch("mclauncher_tools.core.orchestrator.VersionManager.remove") as remove:
            result = runner.invoke(
                main, ["--config", str(config_file), "-o", "plain", "remove", "1.20.0.1"], input="n\n"
            )

        assert result.exit_code == 0
        remove.assert_not_called()

    def test_data_status_json(self, config_file: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(
            main, ["--config", str(config_file), "-o", "json", "data", "status", "1.20.0.1", "--channel", "release"]
        )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["action"] == "none"
        assert data["target_format"] == "archive"
        assert {c["kind"] for c in data["candidates"]} == {"archive", "backup"}
