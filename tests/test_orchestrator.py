from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest

from planpilot.config import ExecutionConfig, RepairConfig
from planpilot.models.llm_client import LLMClient
from planpilot.orchestrator import NoPlanError, NothingToRepairError, Orchestrator
from planpilot.planning.generate import PlanGenerator
from planpilot.tools.sandbox import TrustRequiredError
from planpilot.tools.snapshots import RevertNotFoundError

BROKEN = {
    "goal": "update greeting",
    "root": ".",
    "steps": [
        {"action": "write", "path": "hello.txt", "content": "hello"},
        {"action": "edit", "path": "missing.txt", "find": "a", "replace": "b"},
    ],
}
FIX = {
    "goal": "create missing file",
    "root": ".",
    "steps": [{"action": "write", "path": "missing.txt", "content": "b"}],
}


class _ProfileClient(LLMClient):
    """Answers planning requests with one plan and repair requests with another."""

    def __init__(self, planning: Dict[str, Any], repair: Dict[str, Any]) -> None:
        super().__init__("stub", max_attempts=1)
        self._plans = {"planning": planning, "repair": repair}
        self.profiles: List[str] = []

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        profile = payload["metadata"]["profile"]
        self.profiles.append(profile)
        return json.dumps(self._plans[profile])


def _session(tmp_path, *, auto_run: bool = False, trusted: bool = True, dry_run: bool = False):
    client = _ProfileClient(BROKEN, FIX)
    orchestrator = Orchestrator(
        generator=PlanGenerator(client),
        workspace=tmp_path,
        execution=ExecutionConfig(dry_run=dry_run),
        repair=RepairConfig(auto_run=auto_run, auto_repair=True, max_attempts=2),
        trusted=trusted,
    )
    return client, orchestrator


def test_ask_without_auto_run_only_plans(tmp_path) -> None:
    client, orchestrator = _session(tmp_path)

    result = orchestrator.ask("greet")

    assert result.summary is None
    assert orchestrator.last_plan is result.plan
    assert [turn.role for turn in orchestrator.history.turns] == ["user", "model"]
    assert orchestrator.history.turns[0].text == "greet"
    assert not (tmp_path / "hello.txt").exists()
    assert client.profiles == ["planning"]


def test_ask_with_auto_run_repairs_failures(tmp_path) -> None:
    client, orchestrator = _session(tmp_path, auto_run=True)

    result = orchestrator.ask("greet")

    assert result.summary is not None and result.summary.failed_count == 1
    assert result.repair is not None and result.repair.resolved
    assert result.final_plan.goal == "create missing file"
    assert client.profiles == ["planning", "repair"]
    assert (tmp_path / "missing.txt").read_text(encoding="utf-8") == "b"
    assert orchestrator.last_failure_brief is None
    assert orchestrator.last_plan is not None and orchestrator.last_plan.goal == "create missing file"


def test_manual_repair_stages_a_plan(tmp_path) -> None:
    client, orchestrator = _session(tmp_path)

    with pytest.raises(NothingToRepairError):
        orchestrator.repair()

    orchestrator.request_plan("greet")
    orchestrator.run_plan()
    assert orchestrator.last_failure_brief == "- #2 edit: Cannot edit missing file: missing.txt"

    repaired = orchestrator.repair()

    assert repaired.goal == "create missing file"
    assert orchestrator.last_plan is repaired
    assert not (tmp_path / "missing.txt").exists()
    assert orchestrator.history.turns[-2].text.startswith("[repair] - #2 edit")


def test_run_without_plan_is_an_error(tmp_path) -> None:
    _, orchestrator = _session(tmp_path)

    with pytest.raises(NoPlanError):
        orchestrator.run_plan()


def test_revert_restores_last_plan(tmp_path) -> None:
    (tmp_path / "hello.txt").write_text("before", encoding="utf-8")
    _, orchestrator = _session(tmp_path)

    orchestrator.request_plan("greet")
    orchestrator.run_plan()
    assert (tmp_path / "hello.txt").read_text(encoding="utf-8") == "hello"

    report = orchestrator.revert()

    assert (tmp_path / "hello.txt").read_text(encoding="utf-8") == "before"
    assert report.files_touched == 1


def test_revert_of_dry_run_has_no_snapshot(tmp_path) -> None:
    _, orchestrator = _session(tmp_path, dry_run=True)

    orchestrator.request_plan("greet")
    orchestrator.run_plan()

    with pytest.raises(RevertNotFoundError):
        orchestrator.revert(BROKEN)


def test_untrusted_live_run_records_runtime_failure(tmp_path) -> None:
    _, orchestrator = _session(tmp_path, trusted=False)
    orchestrator.request_plan("greet")

    with pytest.raises(TrustRequiredError):
        orchestrator.run_plan()

    assert orchestrator.last_failure_brief is not None
    assert orchestrator.last_failure_brief.startswith("- runtime exception: This workspace is not trusted.")


def test_from_client_reads_configuration(tmp_path) -> None:
    config = {
        "workspace": {"root": "project", "trusted": True},
        "execution": {"dry_run": False},
        "repair": {"auto_run": True, "max_attempts": 1},
    }

    orchestrator = Orchestrator.from_client(
        _ProfileClient(BROKEN, FIX),
        config,
        config_path=tmp_path / "config.yaml",
    )

    assert orchestrator.workspace == (tmp_path / "project").resolve()
    assert orchestrator.context.trusted is True
    assert orchestrator.context.config.dry_run is False


def test_clear_history(tmp_path) -> None:
    _, orchestrator = _session(tmp_path)
    orchestrator.request_plan("greet")

    orchestrator.clear_history()

    assert len(orchestrator.history) == 0
