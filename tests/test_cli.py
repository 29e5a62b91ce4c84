from __future__ import annotations

import json

import yaml
from typer.testing import CliRunner

from planpilot.cli import app

BROKEN_PLAN = json.dumps(
    {
        "goal": "edit missing",
        "root": ".",
        "steps": [{"action": "edit", "path": "missing.txt", "find": "a", "replace": "b"}],
    }
)
WRITE_PLAN = json.dumps(
    {
        "goal": "write readme",
        "root": ".",
        "steps": [{"action": "write", "path": "README.md", "content": "# Demo\n"}],
    }
)


def test_init_writes_default_config(tmp_path) -> None:
    config_path = tmp_path / "config.yaml"
    runner = CliRunner()

    result = runner.invoke(app, ["init", "--config", str(config_path)], catch_exceptions=False)
    assert result.exit_code == 0, result.output

    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert data["execution"]["dry_run"] is True
    assert data["repair"]["max_attempts"] == 2

    again = runner.invoke(app, ["init", "--config", str(config_path)], catch_exceptions=False)
    assert again.exit_code == 1
    assert "already exists" in again.output


def test_plan_command_saves_plan_and_history(workspace) -> None:
    output = workspace.root / "plans" / "readme.json"

    result = workspace.run_cli("plan", "add a readme", "--output", str(output))

    assert result.exit_code == 0, result.output
    assert "Using offline stub client." in result.output
    assert "Plan ready: Record request: add a readme" in result.output
    saved = json.loads(output.read_text(encoding="utf-8"))
    assert saved["steps"][0]["path"] == "PLANPILOT_NOTES.md"

    history = workspace.run_cli("history")
    assert "[user] add a readme" in history.output

    cleared = workspace.run_cli("history", "--clear")
    assert "History cleared." in cleared.output
    assert "History is empty." in workspace.run_cli("history").output


def test_run_defaults_to_dry_run(workspace) -> None:
    plan_path = workspace.write_plan(WRITE_PLAN)

    result = workspace.run_cli("run", str(plan_path))

    assert result.exit_code == 0, result.output
    assert "Executed 1 steps - OK: 1, Failed: 0 (dry run)" in result.output
    assert not (workspace.root / "README.md").exists()


def test_live_run_requires_trust(workspace) -> None:
    plan_path = workspace.write_plan(WRITE_PLAN)

    result = workspace.run_cli("run", str(plan_path), "--no-dry-run")

    assert result.exit_code == 1
    assert "Execution aborted: This workspace is not trusted." in result.output
    assert not (workspace.root / "README.md").exists()

    trusted = workspace.run_cli("run", str(plan_path), "--no-dry-run", "--trust")
    assert trusted.exit_code == 0, trusted.output
    assert (workspace.root / "README.md").read_text(encoding="utf-8") == "# Demo\n"


def test_run_reports_failures_without_repair(workspace) -> None:
    plan_path = workspace.write_plan(BROKEN_PLAN)

    result = workspace.run_cli("run", str(plan_path), "--no-dry-run", "--trust", "--no-repair")

    assert result.exit_code == 1
    assert "- #1 edit: Cannot edit missing file: missing.txt" in result.output
    assert "Repair attempt" not in result.output


def test_run_with_repair_uses_repair_profile(workspace) -> None:
    plan_path = workspace.write_plan(BROKEN_PLAN)

    result = workspace.run_cli("run", str(plan_path), "--no-dry-run", "--trust")

    assert "Repair attempt 1:" in result.output
    assert "Plan ready: No offline repair available" in result.output


def test_run_rejects_invalid_plan_file(workspace) -> None:
    plan_path = workspace.write_plan("this is not a plan")

    result = workspace.run_cli("run", str(plan_path))

    assert result.exit_code == 1
    assert "Invalid plan file" in result.output


def test_ask_with_run_writes_notes(workspace) -> None:
    result = workspace.run_cli("ask", "remember milk", "--run", "--no-dry-run", "--trust")

    assert result.exit_code == 0, result.output
    assert "Executed 1 steps - OK: 1, Failed: 0" in result.output
    notes = workspace.root / "PLANPILOT_NOTES.md"
    assert notes.read_text(encoding="utf-8") == "- remember milk\n"


def test_chat_session_runs_and_reverts(workspace) -> None:
    script = "\n".join(["/run", "remember eggs", "/run", "/revert", "/history", "/quit", ""])

    result = workspace.run_cli("chat", "--no-dry-run", "--trust", input=script)

    assert result.exit_code == 0, result.output
    assert "No plan ready. Ask for something first." in result.output
    assert "Plan ready: Record request: remember eggs" in result.output
    assert "Executed 1 steps - OK: 1, Failed: 0" in result.output
    assert "Reverted 1 file(s)." in result.output
    assert "[user] remember eggs" in result.output
    assert not (workspace.root / "PLANPILOT_NOTES.md").exists()


def test_chat_ends_on_end_of_input(workspace) -> None:
    result = workspace.run_cli("chat", input="/help\n")

    assert result.exit_code == 0, result.output
    assert "Commands: /run" in result.output
