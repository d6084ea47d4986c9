"""Tests for CLI commands - register, send, sync, scan, status."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from deviceagent.agent.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_dir(tmp_path: Path) -> Iterator[Path]:
    """Point the CLI at a temporary configuration directory."""
    config = tmp_path / ".deviceagent"
    with patch("deviceagent.agent.cli.config.get_config_dir", return_value=config):
        yield config


@pytest.fixture
def configured(config_dir: Path, tmp_path: Path) -> Path:
    """Write a config file for a server at http://test."""
    scan_root = tmp_path / "scan"
    scan_root.mkdir()
    (scan_root / "a.txt").write_text("hello")
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "config.json").write_text(
        json.dumps({"server_url": "http://test", "scan_root": str(scan_root)})
    )
    return config_dir


class TestNoConfig:
    def test_status_requires_server(self, runner: CliRunner, config_dir: Path) -> None:
        """Commands needing a server fail until one is configured."""
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1
        assert "No server configured" in result.output

    def test_invalid_config(self, runner: CliRunner, config_dir: Path) -> None:
        config_dir.mkdir(parents=True)
        (config_dir / "config.json").write_text(
            json.dumps({"server_url": "http://test", "on_ping_failure": "explode"})
        )

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestRegisterCommand:
    """Tests for 'deviceagent register' command."""

    def test_register_saves_server(self, runner: CliRunner, config_dir: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url="http://test/api/register-device", method="POST")

        result = runner.invoke(
            cli, ["register", "--server", "http://test/", "--name", "phone", "--token", "tok-1"]
        )

        assert result.exit_code == 0, result.output
        assert "Device registered successfully!" in result.output
        saved = json.loads((config_dir / "config.json").read_text())
        assert saved["server_url"] == "http://test"
        assert saved["device_name"] == "phone"
        body = json.loads(httpx_mock.get_request().content)
        assert body["token"] == "tok-1"
        assert body["name"] == "phone"

    def test_register_without_token_fails(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(cli, ["register", "--server", "http://test"])

        assert result.exit_code == 1
        assert "Registration failed" in result.output

    def test_register_server_error(self, runner: CliRunner, configured: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(
            url="http://test/api/register-device", method="POST", status_code=500
        )

        result = runner.invoke(cli, ["register", "--token", "tok-1"])

        assert result.exit_code == 1
        assert "api error 500" in result.output


class TestSendCommand:
    """Tests for 'deviceagent send' command."""

    def test_send_queues_task(self, runner: CliRunner, configured: Path) -> None:
        result = runner.invoke(cli, ["send", "ping", "-p", "silent=true"])

        assert result.exit_code == 0, result.output
        assert "Queued ping[" in result.output

        status = runner.invoke(cli, ["status"])
        assert "Queued tasks: 1" in status.output

    def test_send_rejects_upload_without_path(self, runner: CliRunner, configured: Path) -> None:
        result = runner.invoke(cli, ["send", "upload_file"])

        assert result.exit_code == 1
        assert "rejected" in result.output

    def test_send_bad_param(self, runner: CliRunner, configured: Path) -> None:
        result = runner.invoke(cli, ["send", "ping", "-p", "novalue"])

        assert result.exit_code == 2
        assert "key=value" in result.output

    def test_send_now_runs_task(self, runner: CliRunner, configured: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url="http://test/health", json={"status": "ok"})
        httpx_mock.add_response(url="http://test/api/status-update", method="POST")

        result = runner.invoke(cli, ["send", "get_system_info", "--now"])

        assert result.exit_code == 0, result.output
        assert "SUCCESS" in result.output
        body = json.loads(httpx_mock.get_request(method="POST").content)
        assert body["type"] == "system_info"

    def test_send_now_unknown_command(self, runner: CliRunner, configured: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url="http://test/health", json={"status": "ok"})

        result = runner.invoke(cli, ["send", "reboot", "--now"])

        assert result.exit_code == 1
        assert "FAILED" in result.output


class TestDataCommands:
    """Tests for 'deviceagent sync', 'scan' and 'status'."""

    def test_sync_nothing_to_do(self, runner: CliRunner, configured: Path) -> None:
        result = runner.invoke(cli, ["sync"])

        assert result.exit_code == 0, result.output
        assert "nothing to do" in result.output

    def test_scan_prints_counts(self, runner: CliRunner, configured: Path) -> None:
        result = runner.invoke(cli, ["scan"])

        assert result.exit_code == 0, result.output
        assert "Files:       1" in result.output
        assert "Total size:  5 bytes" in result.output

    def test_scan_upload(self, runner: CliRunner, configured: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url="http://test/api/upload-paths", method="POST")

        result = runner.invoke(cli, ["scan", "--upload"])

        assert result.exit_code == 0, result.output
        assert "Scan uploaded." in result.output
        paths = json.loads(json.loads(httpx_mock.get_request().content)["pathsData"])
        assert paths["totalFiles"] == 1

    def test_status(self, runner: CliRunner, configured: Path) -> None:
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0, result.output
        assert "Server:       http://test" in result.output
        assert "Registration: unregistered" in result.output
        assert "last sync: never" in result.output
