"""CLI tests for project commands (init, create, show, list, move, bulk-move, due, history, transitions)."""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

from click.testing import CliRunner

from stageflow.cli import cli
from stageflow.core import DB_FILENAME, STAGEFLOW_DIR_NAME, read_config


def _extract_id(create_output: str) -> str:
    """Extract project ID from 'Created test-abc123: Title' output."""
    return create_output.split(":")[0].replace("Created ", "").strip()


def _create(runner: CliRunner, title: str = "Spring promo", *extra: str) -> str:
    result = runner.invoke(cli, ["create", title, "--creator", "c1", *extra])
    assert result.exit_code == 0, result.output
    return _extract_id(result.output)


def _days_from_now(days: int) -> str:
    return (datetime.now(UTC) + timedelta(days=days)).date().isoformat()


class TestInit:
    def test_init_creates_dir(self, tmp_path: Path, cli_runner: CliRunner) -> None:
        original = os.getcwd()
        os.chdir(str(tmp_path))
        try:
            result = cli_runner.invoke(cli, ["init", "--prefix", "promo"])
            assert result.exit_code == 0
            assert (tmp_path / STAGEFLOW_DIR_NAME / DB_FILENAME).exists()
            assert read_config(tmp_path / STAGEFLOW_DIR_NAME)["prefix"] == "promo"
        finally:
            os.chdir(original)

    def test_init_already_exists(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["init"])
        assert result.exit_code == 0
        assert "already exists" in result.output

    def test_commands_need_init(self, tmp_path: Path, cli_runner: CliRunner) -> None:
        original = os.getcwd()
        os.chdir(str(tmp_path))
        try:
            result = cli_runner.invoke(cli, ["list"])
            assert result.exit_code == 1
            assert "stageflow init" in result.output
        finally:
            os.chdir(original)

    def test_bad_actor(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["--actor", "", "list"])
        assert result.exit_code == 1
        assert "actor" in result.output


class TestCreateShow:
    def test_create(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["create", "Spring promo", "--creator", "c1"])
        assert result.exit_code == 0
        assert result.output.startswith("Created test-")
        assert "Spring promo" in result.output

    def test_create_json(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(
            cli,
            ["create", "Reel", "--creator", "c1", "--value-cents", "12500", "-t", "vip", "-t", "q2", "--json"],
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "draft"
        assert data["value_cents"] == 12500
        assert data["tags"] == ["vip", "q2"]

    def test_create_requires_creator(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["create", "Orphan"])
        assert result.exit_code != 0

    def test_create_bad_status_json(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["create", "X", "--creator", "c1", "--status", "limbo", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.output)["code"] == "VALIDATION_ERROR"

    def test_show(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _create(runner, "Late one", "--due", _days_from_now(-2), "--value-cents", "50000")
        result = runner.invoke(cli, ["show", pid])
        assert result.exit_code == 0
        assert "Late one" in result.output
        assert "Risk:     critical" in result.output
        assert "$500.00" in result.output

    def test_show_missing(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["show", "test-nope"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_show_missing_json(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["show", "test-nope", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.output)["code"] == "NOT_FOUND"


class TestList:
    def test_empty(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "No projects found." in result.output

    def test_lists_and_counts(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        _create(runner, "Alpha")
        _create(runner, "Beta")
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "Alpha" in result.output
        assert "2 of 2 projects" in result.output

    def test_filters(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        late = _create(runner, "Late", "--due", _days_from_now(-1))
        _create(runner, "Relaxed", "--due", _days_from_now(30))
        result = runner.invoke(cli, ["list", "--risk", "critical", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [p["id"] for p in data["results"]] == [late]
        assert data["total"] == 1

    def test_search_and_limit(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        for i in range(3):
            _create(runner, f"Reel {i}")
        _create(runner, "Podcast")
        data = json.loads(runner.invoke(cli, ["list", "--search", "reel", "--limit", "2", "--json"]).output)
        assert data["total"] == 3
        assert len(data["results"]) == 2
        assert data["has_more"] is True

    def test_default_filter_and_all(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        _create(runner, "Draft one")
        _create(runner, "Working", "--status", "in_progress")
        runner.invoke(cli, ["config", "--patch", '{"default_filters": {"statuses": ["in_progress"]}}'])
        assert json.loads(runner.invoke(cli, ["list", "--json"]).output)["total"] == 1
        assert json.loads(runner.invoke(cli, ["list", "--all", "--json"]).output)["total"] == 2

    def test_bad_risk_level(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["list", "--risk", "apocalyptic"])
        assert result.exit_code == 1
        assert "risk" in result.output


class TestMove:
    def test_move(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _create(runner)
        result = runner.invoke(cli, ["move", pid, "in_progress", "--note", "kickoff"])
        assert result.exit_code == 0
        assert f"Moved {pid} to in_progress" in result.output

    def test_invalid_move_lists_targets(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _create(runner)
        result = runner.invoke(cli, ["move", pid, "payout_approved"])
        assert result.exit_code == 1
        assert "Valid targets: in_progress" in result.output

    def test_invalid_move_json(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _create(runner)
        result = runner.invoke(cli, ["move", pid, "approved", "--json"])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["code"] == "INVALID_TRANSITION"
        assert data["valid_targets"] == ["in_progress"]

    def test_locked_needs_admin(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _create(runner, "Payout", "--status", "withdrawal_requested")
        assert runner.invoke(cli, ["move", pid, "payout_approved"]).exit_code == 1
        result = runner.invoke(cli, ["--admin", "move", pid, "payout_approved", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["completed_at"] is not None

    def test_wip_limit_denies(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        runner.invoke(cli, ["set-wip", "submitted", "1"])
        _create(runner, "A", "--status", "submitted")
        pid = _create(runner, "B", "--status", "in_progress")
        result = runner.invoke(cli, ["move", pid, "submitted", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.output)["code"] == "ADMISSION_DENIED"

    def test_bulk_move(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        a = _create(runner, "A", "--status", "in_progress")
        b = _create(runner, "B", "--status", "in_progress")
        result = runner.invoke(cli, ["bulk-move", "submitted", a, "test-missing", b])
        assert result.exit_code == 0
        assert "2 updated, 1 failed" in result.output
        assert "Failed test-missing" in result.output

    def test_bulk_move_json(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        a = _create(runner, "A")
        data = json.loads(runner.invoke(cli, ["bulk-move", "submitted", a, "--json"]).output)
        assert data["updated_count"] == 0
        assert data["errors"][0]["valid_targets"] == ["in_progress"]


class TestDueHistoryTransitions:
    def test_set_and_clear_due(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _create(runner)
        due = _days_from_now(2)
        result = runner.invoke(cli, ["due", pid, due])
        assert result.exit_code == 0
        assert f"due {due}" in result.output
        cleared = runner.invoke(cli, ["due", pid, "--clear", "--json"])
        assert json.loads(cleared.output)["due_date"] is None

    def test_due_needs_value(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _create(runner)
        result = runner.invoke(cli, ["due", pid])
        assert result.exit_code == 1
        assert "--clear" in result.output

    def test_history(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _create(runner)
        runner.invoke(cli, ["--actor", "alice", "move", pid, "in_progress", "--note", "go"])
        result = runner.invoke(cli, ["history", pid])
        assert result.exit_code == 0
        assert "(new) -> draft" in result.output
        assert "draft -> in_progress  by alice  -- go" in result.output
        data = json.loads(runner.invoke(cli, ["history", pid, "--json"]).output)
        assert [e["to_stage"] for e in data] == ["draft", "in_progress"]

    def test_recent_history(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        _create(runner, "A")
        _create(runner, "B")
        data = json.loads(runner.invoke(cli, ["history", "--limit", "1", "--json"]).output)
        assert len(data) == 1

    def test_durations(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _create(runner)
        data = json.loads(runner.invoke(cli, ["history", pid, "--durations", "--json"]).output)
        assert set(data) == {"draft"}
        assert runner.invoke(cli, ["history", "--durations"]).exit_code == 1

    def test_transitions(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _create(runner, "Locked", "--status", "withdrawal_requested")
        result = runner.invoke(cli, ["transitions", pid])
        assert result.exit_code == 0
        assert "(locked)" in result.output
        assert "(no moves available)" in result.output
        data = json.loads(runner.invoke(cli, ["--admin", "transitions", pid, "--json"]).output)
        assert data["valid_targets"] == ["payout_ready", "payout_approved"]
