"""Smoke tests for the command line interface."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from contentintel.cli import main
from contentintel.sources.catalog import DEFAULT_SOURCES


@pytest.fixture
def runner(tmp_path, monkeypatch) -> CliRunner:
    monkeypatch.setenv("CONTENTINTEL_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("CONTENTINTEL_REPORTS_DIR", str(tmp_path / "reports"))
    monkeypatch.setenv("CONTENTINTEL_LOG_LEVEL", "WARNING")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    return CliRunner()


def test_help_lists_commands(runner: CliRunner) -> None:
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("run", "retry", "digests", "drafts", "sop", "sources", "history", "cleanup"):
        assert command in result.output


def test_seed_then_list_sources(runner: CliRunner) -> None:
    result = runner.invoke(main, ["sources", "seed"])
    assert result.exit_code == 0
    assert f"Seeded {len(DEFAULT_SOURCES)} sources" in result.output

    again = runner.invoke(main, ["sources", "seed"])
    assert "Seeded 0 sources" in again.output

    listing = runner.invoke(main, ["sources", "list"])
    assert listing.exit_code == 0
    assert "Sources" in listing.output


def test_add_source_with_invalid_config(runner: CliRunner) -> None:
    result = runner.invoke(
        main, ["sources", "add", "-n", "Chan", "-u", "https://yt.example.com", "-m", "youtube", "--config", "[1]"]
    )
    assert result.exit_code == 2


def test_settings_set_and_show(runner: CliRunner) -> None:
    result = runner.invoke(main, ["settings", "set", "enabled", "yes"])
    assert result.exit_code == 0
    assert "enabled = True" in result.output

    shown = runner.invoke(main, ["settings", "show"])
    assert "run_day_of_month" in shown.output


def test_settings_validation_error_exits_1(runner: CliRunner) -> None:
    result = runner.invoke(main, ["settings", "set", "run_day_of_month", "40"])
    assert result.exit_code == 1
    assert "between 1 and 31" in result.output


def test_unknown_digest_reports_error(runner: CliRunner) -> None:
    result = runner.invoke(main, ["digests", "show", "99"])
    assert result.exit_code == 1
    assert "Digest 99 not found" in result.output


def test_approve_requires_project_option(runner: CliRunner) -> None:
    result = runner.invoke(main, ["drafts", "approve", "1"])
    assert result.exit_code == 2


def test_run_without_api_key(runner: CliRunner) -> None:
    result = runner.invoke(main, ["run", "--force"])
    assert result.exit_code == 1
    assert "ANTHROPIC_API_KEY not set" in result.output


def test_empty_history_and_cleanup(runner: CliRunner) -> None:
    history = runner.invoke(main, ["history"])
    assert history.exit_code == 0
    assert "No runs" in history.output

    cleanup = runner.invoke(main, ["cleanup"])
    assert cleanup.exit_code == 0
    assert "Deleted 0 old fetch results" in cleanup.output

    runs = runner.invoke(main, ["history", "--job", "content_cleanup"])
    assert "content_cleanup" in runs.output
