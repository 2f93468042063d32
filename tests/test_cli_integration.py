import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from taskforge.cli import cli
from taskforge.config import load_config, save_config


def _fast_config(config_path: Path) -> None:
    config = load_config(config_path)
    config.scheduler.tick_interval_seconds = 0.005
    config.scheduler.retry_backoff_seconds = 0.01
    save_config(config_path, config)


def test_cli_init_run_status_flow(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()

    init_result = runner.invoke(cli, ["init", "--max-concurrent", "2"])
    assert init_result.exit_code == 0, init_result.output
    assert "Initialized taskforge" in init_result.output
    assert (tmp_path / "taskforge.toml").exists()
    assert (tmp_path / ".taskforge" / "state").is_dir()
    _fast_config(tmp_path / "taskforge.toml")

    empty_status = runner.invoke(cli, ["status"])
    assert empty_status.exit_code == 0, empty_status.output
    assert "No runs recorded yet." in empty_status.output

    run_result = runner.invoke(
        cli, ["run", "Document the public API", "--context", "owner=docs"]
    )
    assert run_result.exit_code == 0, run_result.output
    assert "Goal completed: Document the public API" in run_result.output
    assert "Tasks: 3/3 completed" in run_result.output

    status_result = runner.invoke(cli, ["status", "--verbose"])
    assert status_result.exit_code == 0, status_result.output
    payload = json.loads(status_result.output)
    assert payload["revision"] == 1
    assert payload["queues"]["completed"] == 3
    assert payload["goals"][0]["status"] == "completed"
    assert payload["analytics"]["total_executions"] == 3
    assert len(payload["tasks"]) == 3
    assert payload["tasks"][0]["metadata"]["context"] == {"owner": "docs"}


def test_cli_run_waits_for_approval_below_threshold(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    assert runner.invoke(cli, ["init"]).exit_code == 0
    config_path = tmp_path / "taskforge.toml"
    _fast_config(config_path)
    config = load_config(config_path)
    config.autonomy.confidence_threshold = 0.95
    save_config(config_path, config)

    held = runner.invoke(cli, ["run", "Rewrite the entire architecture"])
    assert held.exit_code == 0, held.output
    assert "Goal awaiting_approval" in held.output
    assert "--approve" in held.output

    approved = runner.invoke(cli, ["run", "Rewrite the entire architecture", "--approve"])
    assert approved.exit_code == 0, approved.output
    assert "Goal completed" in approved.output


def test_cli_plan_prints_template(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["plan", "Fix all compilation errors"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["goal"]["metadata"]["family"] == "error_fixing"
    assert [(task["type"], task["priority"]) for task in payload["tasks"]] == [
        ("analyze_errors", 8),
        ("fix_errors", 9),
        ("verify_fixes", 7),
    ]
    assert payload["tasks"][1]["dependencies"] == [payload["tasks"][0]["id"]]
    assert not (tmp_path / ".taskforge").exists()


def test_cli_decide(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    options = json.dumps(
        [
            {"name": "rewrite", "priority": 4, "complexity": 9},
            {"name": "patch", "priority": 6, "fixes_errors": True},
        ]
    )

    result = runner.invoke(cli, ["decide", options, "--context", '{"error_severity": "error"}'])
    empty = runner.invoke(cli, ["decide", "[]"])
    invalid = runner.invoke(cli, ["decide", "{oops"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["chosen"]["name"] == "patch"
    assert payload["confidence"] == 1.0
    assert payload["scores"] == [60.0, 130.0]

    assert empty.exit_code == 0
    assert json.loads(empty.output)["reasoning"] == "No suitable option"
    assert invalid.exit_code != 0
    assert "Invalid JSON" in invalid.output


def test_cli_rejects_malformed_context(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["run", "Document it", "--context", "novalue"])

    assert result.exit_code != 0
    assert "key=value" in result.output
