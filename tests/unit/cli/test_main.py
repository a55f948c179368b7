"""Tests for main CLI module."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from release_operations_manager import __version__
from release_operations_manager.cli.main import app


class TestCLIMain:
    """Test main CLI entry point."""

    @pytest.mark.unit
    def test_help_option(self, cli_runner: CliRunner) -> None:
        """Test --help option displays help text."""
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "Release operations" in result.stdout
        for group in ("release", "repo", "status"):
            assert group in result.stdout

    @pytest.mark.unit
    def test_version_option(self, cli_runner: CliRunner) -> None:
        """Test --version option displays version."""
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"rops version {__version__}" in result.stdout

    @pytest.mark.unit
    def test_logging_flags(self, cli_runner: CliRunner, mock_logging: MagicMock) -> None:
        """Test logging flags reach configure_logging."""
        result = cli_runner.invoke(app, ["--debug", "--json-logs", "repo", "--help"])

        assert result.exit_code == 0
        mock_logging.assert_called_once_with(verbose=False, debug=True, json_output=True)

    @pytest.mark.unit
    def test_release_group_lists_commands(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["release", "--help"])

        assert result.exit_code == 0
        for command in ("install", "upgrade", "deploy", "rollback", "uninstall", "history", "template"):
            assert command in result.stdout
