"""Unit tests for the command line interface."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from archiver import __version__
from archiver.cli.main import app
from archiver.cli.runner import ExitCode


@pytest.fixture
def cli():
    return CliRunner()


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / "archiver.yaml"
    path.write_text(yaml.safe_dump({
        "cdp_port": 12345,
        "chromium_path": "/usr/bin/chromium",
        "archive_path": (tmp_path / "archive").as_posix(),
        "capture_rules": [{"from": "*", "intercept": ["*.png"]}],
    }), encoding="utf-8")
    return path


def test_version(cli):
    result = cli.invoke(app, ["version"])

    assert result.exit_code == 0
    assert f"Response Archiver v{__version__}" in result.output


class TestPrintConfig:
    """Tests for the print-config command."""

    def test_yaml(self, cli, settings_file):
        result = cli.invoke(app, ["print-config", "--config", str(settings_file)])

        assert result.exit_code == 0
        assert yaml.safe_load(result.output)["cdp_port"] == 12345

    def test_json(self, cli, settings_file):
        result = cli.invoke(app, ["print-config", "-c", str(settings_file), "-f", "json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["chromium_path"] == "/usr/bin/chromium"

    def test_invalid_format(self, cli, settings_file):
        result = cli.invoke(app, ["print-config", "-c", str(settings_file), "-f", "xml"])

        assert result.exit_code == ExitCode.CONFIG_ERROR

    def test_missing_settings_file(self, cli, tmp_path):
        path = tmp_path / "missing.yaml"

        result = cli.invoke(app, ["print-config", "-c", str(path)])

        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert path.exists()


class TestScan:
    """Tests for the scan command."""

    def test_counts_records(self, cli, settings_file, tmp_path):
        shard = tmp_path / "archive" / "database" / "2024" / "3" / "5"
        shard.mkdir(parents=True)
        (shard / "a.json").write_text("{}")
        (shard / "b.json").write_text("{}")

        result = cli.invoke(app, ["scan", "-c", str(settings_file)])

        assert result.exit_code == 0
        assert "Images archived: 2." in result.output


class TestRun:
    """Tests for the run command."""

    def test_runs_image_archiver(self, cli, settings_file):
        runner = MagicMock()
        runner.run = AsyncMock(return_value=ExitCode.SUCCESS)

        with patch("archiver.cli.main.ArchiverRunner", return_value=runner) as runner_class, \
                patch("archiver.cli.main.configure_logging"):
            result = cli.invoke(app, [
                "run", "-c", str(settings_file),
                "--web-socket-debugger-url", "ws://127.0.0.1:12345/devtools/browser/x",
                "--skip-record",
            ])

        assert result.exit_code == 0
        profile, settings = runner_class.call_args.args
        assert profile.name == "archiver"
        assert settings.web_socket_debugger_url == "ws://127.0.0.1:12345/devtools/browser/x"
        assert settings.skip_record is True
        runner.run.assert_awaited_once()

    def test_exit_code_from_runner(self, cli, settings_file):
        runner = MagicMock()
        runner.run = AsyncMock(return_value=ExitCode.CONNECTION_ERROR)

        with patch("archiver.cli.main.ArchiverRunner", return_value=runner), \
                patch("archiver.cli.main.configure_logging"):
            result = cli.invoke(app, ["run", "-c", str(settings_file)])

        assert result.exit_code == ExitCode.CONNECTION_ERROR

    def test_config_error(self, cli, tmp_path):
        with patch("archiver.cli.main.configure_logging"):
            result = cli.invoke(app, ["run", "-c", str(tmp_path / "archiver.yaml")])

        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert (tmp_path / "archiver.yaml").exists()
