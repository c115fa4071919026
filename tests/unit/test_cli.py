"""Tests for the hookrelay CLI."""
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from hookrelay.exceptions import StartupError
from hookrelay.main import app


class TestServeCommand:
    """Tests for 'hookrelay serve'."""

    @pytest.fixture
    def runner(self):
        """Typer CLI test runner."""
        return CliRunner()

    def test_help_lists_hooks_option(self, runner):
        result = runner.invoke(app, ["serve", "--help"])

        assert result.exit_code == 0
        assert "--hooks" in result.stdout

    def test_defaults_to_clone_mode(self, runner):
        with patch("hookrelay.main.serve") as mock_serve:
            result = runner.invoke(app, ["serve"])

        assert result.exit_code == 0
        config = mock_serve.call_args.args[0]
        assert config.port == 8080
        assert mock_serve.call_args.kwargs["hooks_path"] is None

    def test_port_and_hooks_are_passed(self, runner, tmp_path: Path):
        hooks = tmp_path / "hooks.json"
        hooks.write_text("[]")

        with patch("hookrelay.main.serve") as mock_serve:
            result = runner.invoke(app, ["serve", "--hooks", str(hooks), "--port", "9090"])

        assert result.exit_code == 0
        assert mock_serve.call_args.args[0].port == 9090
        assert "reverse proxy mode" in result.stdout
        assert mock_serve.call_args.kwargs["hooks_path"] == hooks

    def test_env_configures_port(self, runner):
        with patch("hookrelay.main.serve") as mock_serve:
            runner.invoke(app, ["serve"], env={"HOOKRELAY_PORT": "7070"})

        assert mock_serve.call_args.args[0].port == 7070

    def test_empty_hooks_file_exits_nonzero(self, runner, tmp_path: Path):
        hooks = tmp_path / "hooks.json"
        hooks.write_text("")

        with patch("hookrelay.server.DockerProvisioner") as provisioner_cls:
            result = runner.invoke(app, ["serve", "--hooks", str(hooks)])

        assert result.exit_code == 1
        provisioner_cls.assert_not_called()

    def test_startup_error_exits_nonzero(self, runner):
        with patch("hookrelay.main.serve", side_effect=StartupError("docker unavailable")):
            result = runner.invoke(app, ["serve"])

        assert result.exit_code == 1
        assert "docker unavailable" in result.stdout


class TestCleanupCommand:
    def test_reports_removed_environments(self):
        with patch("hookrelay.main.teardown_orphaned_environments", return_value=2):
            result = CliRunner().invoke(app, ["cleanup"])

        assert result.exit_code == 0
        assert "Removed 2 environment(s)" in result.stdout
