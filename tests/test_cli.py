"""Smoke tests for CLI commands."""

import pytest
from click.testing import CliRunner

from lifx_dj.cli import discover_main, serve_main
from lifx_dj.cli.serve import build_dj_config
from lifx_dj.config import Settings
from lifx_dj.patterns import DJPattern


@pytest.fixture
def runner():
    """Create a Click CLI test runner."""
    return CliRunner()


class TestCLIHelp:
    """Commands parse and show help."""

    def test_discover_help(self, runner):
        result = runner.invoke(discover_main, ["--help"])
        assert result.exit_code == 0
        assert "--wait" in result.output

    def test_serve_help(self, runner):
        result = runner.invoke(serve_main, ["--help"])
        assert result.exit_code == 0
        assert "--port" in result.output


class TestCLIErrors:
    """Configuration errors end the command cleanly."""

    def test_discover_bad_config(self, runner, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text("transport: [oops\n")

        result = runner.invoke(discover_main, ["--config", str(path)])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_serve_bad_pattern(self, runner, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text("dj:\n  pattern: disco\n")

        result = runner.invoke(serve_main, ["--config", str(path)])

        assert result.exit_code == 1
        assert "Invalid dj settings" in result.output


def test_build_dj_config():
    settings = Settings.with_defaults()
    settings.dj.bpm = 140
    settings.dj.pattern = "pulse"

    config = build_dj_config(settings)

    assert config.bpm == 140
    assert config.pattern is DJPattern.PULSE
    assert config.colors == settings.dj.colors
    assert config.colors is not settings.dj.colors
