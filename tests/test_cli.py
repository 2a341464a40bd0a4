"""Tests for the Typer CLI."""

from typer.testing import CliRunner

from taleweaver.cli.commands import app
from taleweaver.config import settings

runner = CliRunner()


def test_config_exit_code_reflects_credentials():
    result = runner.invoke(app, ["config"])
    if settings.missing_credentials():
        assert result.exit_code == 1
        assert "Missing credentials" in result.output
    else:
        assert result.exit_code == 0


def test_demo_runs_full_flow_offline():
    result = runner.invoke(app, ["demo", "--session", "cli-demo", "--clip-duration", "3"])
    assert result.exit_code == 0, result.output
    assert "VIDEO_DONE" in result.output
    assert "video_clips" in result.output


def test_demo_rejects_unknown_provider():
    result = runner.invoke(app, ["demo", "--provider", "vertex"])
    assert result.exit_code == 1
    assert "Unknown provider" in result.output
