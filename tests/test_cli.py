"""Tests for the pycadence command line (real shell commands, JSON state store)."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from pycadence import __version__
from pycadence.cli import cli


@pytest.fixture
def workspace(tmp_path: Path) -> dict[str, Path]:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "tasks.json").write_text(
        json.dumps(
            [
                {"id": "hello", "name": "Hello", "command": "echo hello"},
                {
                    "id": "broken",
                    "name": "Broken",
                    "command": "echo failing; exit 4",
                    "retry": {"max_attempts": 1},
                },
            ]
        )
    )
    (config_dir / "workflows.json").write_text(
        json.dumps(
            {
                "workflows": [
                    {"id": "greet", "name": "Greet", "tasks": ["hello"]},
                    {
                        "id": "doomed",
                        "name": "Doomed",
                        "tasks": [
                            {"task_id": "hello"},
                            {"task_id": "broken", "dependencies": ["hello"]},
                        ],
                    },
                ]
            }
        )
    )
    return {"config": config_dir, "state": tmp_path / "state"}


def invoke(workspace, *args):
    runner = CliRunner()
    return runner.invoke(
        cli,
        [
            "--config-dir",
            str(workspace["config"]),
            "--state-dir",
            str(workspace["state"]),
            "--backend",
            "json",
            *args,
        ],
    )


def test_version_option():
    result = CliRunner().invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_run_workflow_success_as_json(workspace):
    result = invoke(workspace, "run-workflow", "greet", "--json")

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["status"] == "success"
    assert data["tasks"]["hello"]["status"] == "success"
    assert data["layers"] == [["hello"]]


def test_run_workflow_failure_exits_non_zero(workspace):
    result = invoke(workspace, "run-workflow", "doomed")

    assert result.exit_code == 1
    assert "Workflow doomed: failed" in result.output
    assert "broken: failed" in result.output


def test_run_workflow_with_lock(workspace):
    result = invoke(workspace, "run-workflow", "greet", "--lock")

    assert result.exit_code == 0, result.output
    assert list((workspace["state"] / "locks").iterdir()) == []


def test_unknown_workflow(workspace):
    result = invoke(workspace, "run-workflow", "ghost")

    assert result.exit_code == 1
    assert "Workflow not found: ghost" in result.output


def test_run_task_and_inspect_state(workspace):
    run = invoke(workspace, "run-task", "broken")
    assert run.exit_code == 1
    assert "exit code 4" in run.output

    stats = invoke(workspace, "retry-stats", "broken", "--json")
    assert stats.exit_code == 0
    data = json.loads(stats.stdout)
    assert data["attempts"] == 1
    assert data["permanent_failure"] is True

    status = invoke(workspace, "task-status", "broken", "--json")
    assert json.loads(status.stdout)["status"] == "failed"

    reset = invoke(workspace, "reset-retry", "broken")
    assert "Retry state cleared for broken" in reset.output
    again = invoke(workspace, "reset-retry", "broken")
    assert "No retry state recorded for broken" in again.output


def test_task_status_before_any_run(workspace):
    result = invoke(workspace, "task-status", "hello")

    assert result.exit_code == 0
    assert "Task hello has not run yet" in result.output


def test_cancel_task_that_is_not_running(workspace):
    invoke(workspace, "run-task", "hello")

    result = invoke(workspace, "cancel-task", "hello")

    assert result.exit_code == 1
    assert "is not currently running" in result.output


def test_plan(workspace):
    result = invoke(workspace, "plan", "doomed")

    assert result.exit_code == 0
    assert "Layer 1: hello" in result.output
    assert "Layer 2: broken" in result.output

    as_json = invoke(workspace, "plan", "doomed", "--json")
    assert json.loads(as_json.stdout) == [["hello"], ["broken"]]


def test_failed_run_as_json_still_prints_result(workspace):
    result = invoke(workspace, "run-task", "broken", "--json")

    assert result.exit_code == 1
    data = json.loads(result.stdout)
    assert data["status"] == "failed"
    assert data["exit_code"] == 4
