"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate scheduling deeply - the unit and integration suites do.

Usage:
    pytest tests/smoke/test_cli.py -v
    pytest tests/smoke/test_cli.py -v -m smoke
"""

import os
import re
import subprocess
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from config import get_settings
from cadence import __version__
from cadence.cli.main import app
from cadence.db import database

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

PROJECT_ROOT = Path(__file__).parent.parent.parent

UUID = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"

runner = CliRunner()


def run_cli_command(command: str, timeout: int = 30) -> tuple[int, str, str]:
    """Run the CLI in a subprocess and return exit code, stdout, stderr."""
    result = subprocess.run(
        f"{sys.executable} -m cadence.cli.main {command}",
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        env={**os.environ, "LOG_FILE": ""},
    )
    return result.returncode, result.stdout, result.stderr


@pytest.fixture
def sqlite_cli(tmp_path, monkeypatch):
    """Point the CLI's settings and engine at a throwaway SQLite file."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cadence.db'}")
    monkeypatch.setenv("LOG_FILE", "")
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_SessionLocal", None)
    get_settings.cache_clear()

    result = runner.invoke(app, ["db", "init"])
    assert result.exit_code == 0, result.output

    yield runner
    get_settings.cache_clear()


class TestCLIHelp:
    @pytest.mark.parametrize("group", ["", "db", "cards", "review", "session"])
    def test_help(self, group):
        code, stdout, stderr = run_cli_command(f"{group} --help")

        assert code == 0, stderr
        assert "Usage" in stdout

    def test_version(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestCLIFlow:
    def test_add_review_and_session(self, sqlite_cli):
        result = sqlite_cli.invoke(
            app, ["cards", "add", "--front", "HTTPS port?", "--back", "443", "-c", "ports"]
        )
        assert result.exit_code == 0, result.output
        card_id = re.search(UUID, result.output).group(0)

        result = sqlite_cli.invoke(app, ["review", "preview", card_id])
        assert result.exit_code == 0, result.output
        assert "Good" in result.output

        result = sqlite_cli.invoke(app, ["session", "start"])
        assert result.exit_code == 0, result.output
        session_id = re.search(rf"Session ({UUID})", result.output).group(1)

        result = sqlite_cli.invoke(app, ["review", "submit", card_id, "3", "--session", session_id])
        assert result.exit_code == 0, result.output
        assert "review" in result.output

        result = sqlite_cli.invoke(app, ["session", "complete", session_id])
        assert result.exit_code == 0, result.output
        assert "1 cards, 1 correct" in result.output

        result = sqlite_cli.invoke(app, ["session", "complete", session_id])
        assert result.exit_code == 1
        assert "already completed" in result.output

    def test_due_views(self, sqlite_cli):
        sqlite_cli.invoke(app, ["cards", "add", "--front", "Q", "--back", "A"])

        result = sqlite_cli.invoke(app, ["due"])
        assert result.exit_code == 0, result.output
        assert "1 cards due" in result.output

        result = sqlite_cli.invoke(app, ["due", "--summary"])
        assert result.exit_code == 0, result.output
        assert "total" in result.output

    def test_invalid_rating_exits_non_zero(self, sqlite_cli):
        result = sqlite_cli.invoke(app, ["review", "submit", "missing", "7"])

        assert result.exit_code == 1
        assert "Invalid rating" in result.output

    def test_unknown_card_type(self, sqlite_cli):
        result = sqlite_cli.invoke(app, ["cards", "add", "--front", "Q", "--back", "A", "-t", "essay"])

        assert result.exit_code == 1
        assert "Unknown card type" in result.output

    def test_review_against_finished_session_is_not_saved(self, sqlite_cli):
        result = sqlite_cli.invoke(app, ["cards", "add", "--front", "Q", "--back", "A"])
        card_id = re.search(UUID, result.output).group(0)
        result = sqlite_cli.invoke(app, ["session", "start"])
        session_id = re.search(rf"Session ({UUID})", result.output).group(1)
        result = sqlite_cli.invoke(app, ["session", "abandon", session_id])
        assert result.exit_code == 0, result.output

        result = sqlite_cli.invoke(app, ["review", "submit", card_id, "3", "--session", session_id])
        assert result.exit_code == 1
        assert "already abandoned" in result.output

        result = sqlite_cli.invoke(app, ["review", "preview", card_id])
        assert result.exit_code == 0, result.output
        assert "(new)" in result.output

    def test_review_against_unknown_session_is_not_saved(self, sqlite_cli):
        result = sqlite_cli.invoke(app, ["cards", "add", "--front", "Q", "--back", "A"])
        card_id = re.search(UUID, result.output).group(0)

        result = sqlite_cli.invoke(app, ["review", "submit", card_id, "3", "--session", "missing"])
        assert result.exit_code == 1

        result = sqlite_cli.invoke(app, ["review", "preview", card_id])
        assert "(new)" in result.output
