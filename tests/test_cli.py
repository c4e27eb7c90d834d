"""Smoke tests for the CLI.

These tests verify CLI behavior without network access, docker, or the
e2b CLI; the forwarding tests use the running Python interpreter as the
companion executable.
"""

import json
import sys

import httpx
import pytest
import respx
from typer.testing import CliRunner

from aws_e2b import __version__
from aws_e2b.cli import app, run

runner = CliRunner()


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "template" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_template_build_help(self) -> None:
        """template build --help should list the image source options."""
        result = runner.invoke(app, ["template", "build", "--help"])
        assert result.exit_code == 0
        assert "--docker-file" in result.stdout
        assert "--ecr-image" in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self) -> None:
        """CLI config should show configuration."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Effective Configuration" in result.stdout
        assert "Memory (MB)" in result.stdout

    def test_config_json(self) -> None:
        """CLI config --json should emit valid JSON with defaults."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0

        data = json.loads(result.stdout)
        assert data["template"]["memory_mb"] == 4096
        assert data["e2b_domain"] == "e2b.dev"
        assert data["e2b_access_token"] is None
        assert data["image_source"]["origin"] == "default"

    def test_config_reads_project_file(self, isolated_environment, user_config_path) -> None:
        """Project and user files should appear in the effective configuration."""
        (isolated_environment / "aws_e2b.toml").write_text(
            '[e2b]\nmemory_mb = 2048\n[docker]\necr-image = "repo/img:1"\n'
        )
        user_config_path.write_text('[e2b]\ne2b_access_token = "sk_e2b_abcd1234"\n')

        result = runner.invoke(app, ["config", "--json"])

        data = json.loads(result.stdout)
        assert data["template"]["memory_mb"] == 2048
        assert data["image_source"]["ecr_image"] == "repo/img:1"
        assert data["e2b_access_token"] == "****1234"
        assert "sk_e2b_abcd1234" not in result.stdout

    def test_config_missing_file(self, tmp_path) -> None:
        """A missing --config file should exit 1."""
        result = runner.invoke(app, ["config", "--config", str(tmp_path / "nope.toml")])
        assert result.exit_code == 1

    def test_config_invalid_settings(self, monkeypatch) -> None:
        """An invalid AWS_E2B_* value should exit 1 with a readable message."""
        monkeypatch.setenv("AWS_E2B_POLL_INTERVAL", "soon")
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 1
        assert not isinstance(result.exception, ValueError)


class TestCLITemplate:
    """Test template commands."""

    def test_build_without_token(self) -> None:
        """template build without a token should exit 1."""
        result = runner.invoke(app, ["template", "build"])
        assert result.exit_code == 1

    def test_build_ambiguous_sources(self, monkeypatch) -> None:
        """Conflicting image options should exit 1."""
        monkeypatch.setenv("E2B_ACCESS_TOKEN", "tok")
        result = runner.invoke(
            app, ["template", "build", "--ecr-image", "repo/img:1", "--base-image", "python:3.12"]
        )
        assert result.exit_code == 1

    @respx.mock
    def test_list_json(self, monkeypatch) -> None:
        """template list --json should output the templates."""
        monkeypatch.setenv("E2B_ACCESS_TOKEN", "tok")
        respx.get("https://api.e2b.dev/templates").mock(
            return_value=httpx.Response(
                200,
                json=[{"templateID": "tpl-1", "aliases": ["sandbox"], "buildStatus": "ready"}],
            )
        )

        result = runner.invoke(app, ["template", "list", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data[0]["template_id"] == "tpl-1"
        assert data[0]["aliases"] == ["sandbox"]

    @respx.mock
    def test_list_empty(self, monkeypatch) -> None:
        """An empty template list should say so."""
        monkeypatch.setenv("E2B_ACCESS_TOKEN", "tok")
        respx.get("https://api.e2b.dev/templates").mock(return_value=httpx.Response(200, json=[]))

        result = runner.invoke(app, ["template", "list"])

        assert result.exit_code == 0
        assert "No templates found" in result.stdout


class TestRun:
    """Test the console entry point's routing."""

    def test_native_version(self) -> None:
        """Root options should be handled natively."""
        with pytest.raises(SystemExit) as exc_info:
            run(["--version"])
        assert exc_info.value.code in (0, None)

    def test_auth_rejected(self) -> None:
        """auth commands should exit 1 without forwarding."""
        with pytest.raises(SystemExit) as exc_info:
            run(["template", "auth", "login"])
        assert exc_info.value.code == 1

    def test_auth_rejected_after_root_flag(self, monkeypatch) -> None:
        """A leading --verbose should not let auth commands through."""
        monkeypatch.setenv("AWS_E2B_COMPANION_CLI", sys.executable)
        with pytest.raises(SystemExit) as exc_info:
            run(["--verbose", "auth", "login"])
        assert exc_info.value.code == 1

    def test_invalid_settings(self, monkeypatch) -> None:
        """An invalid AWS_E2B_* value should exit 1 instead of raising."""
        monkeypatch.setenv("AWS_E2B_POLL_INTERVAL", "soon")
        with pytest.raises(SystemExit) as exc_info:
            run(["sandbox", "list"])
        assert exc_info.value.code == 1

    def test_missing_companion_cli(self, monkeypatch) -> None:
        """A missing e2b CLI should exit 1."""
        monkeypatch.setenv("AWS_E2B_COMPANION_CLI", "aws-e2b-no-such-cli")
        with pytest.raises(SystemExit) as exc_info:
            run(["sandbox", "list"])
        assert exc_info.value.code == 1

    def test_forwarded_exit_code(self, monkeypatch) -> None:
        """The forwarded command's exit code should become ours."""
        monkeypatch.setenv("AWS_E2B_COMPANION_CLI", sys.executable)
        with pytest.raises(SystemExit) as exc_info:
            run(["-c", "import sys; sys.exit(3)"])
        assert exc_info.value.code == 3

    def test_forwarded_credentials(self, monkeypatch, capfd, user_config_path) -> None:
        """Credentials from the user file should reach the forwarded command."""
        monkeypatch.setenv("AWS_E2B_COMPANION_CLI", sys.executable)
        user_config_path.write_text('[e2b]\ne2b_access_token = "sk_e2b_forwarded"\n')

        with pytest.raises(SystemExit) as exc_info:
            run(["-c", "import os; print(os.environ['E2B_ACCESS_TOKEN'])"])

        assert exc_info.value.code == 0
        assert "sk_e2b_forwarded" in capfd.readouterr().out
