"""Session coordinator tying request, plan, run, repair and revert together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .config import ExecutionConfig, RepairConfig, resolve_workspace_root
from .memory.history import ConversationHistory
from .models.llm_client import LLMClient
from .planning.executor import ExecutionContext, PlanExecutionSummary, PlanExecutor
from .planning.generate import GenerationSettings, PlanGenerator
from .planning.repair import (
    RepairOrchestrator,
    RepairOutcome,
    build_context_brief,
    build_failure_brief,
)
from .planning.schema import Plan
from .tools.sandbox import SandboxError
from .tools.snapshots import RevertReport, RevertStore

__all__ = ["AskResult", "NothingToRepairError", "NoPlanError", "Orchestrator"]

LOGGER = logging.getLogger(__name__)


class NoPlanError(RuntimeError):
    """Raised when an operation needs a plan but none has been generated."""


class NothingToRepairError(RuntimeError):
    """Raised when a repair is requested but the last run had no failures."""


@dataclass(slots=True)
class AskResult:
    """Everything produced by one :meth:`Orchestrator.ask` call."""

    plan: Plan
    summary: PlanExecutionSummary | None = None
    repair: RepairOutcome | None = None

    @property
    def final_plan(self) -> Plan:
        if self.repair is not None and self.repair.last_plan is not None:
            return self.repair.last_plan
        return self.plan


class Orchestrator:
    """Stateful session over one workspace.

    Tracks the last plan and the failure brief of the last run so that
    ``run``/``repair`` can follow an earlier ``request_plan``. Snapshots live in
    the session's :class:`RevertStore` for the lifetime of the object.
    """

    def __init__(
        self,
        *,
        generator: PlanGenerator,
        workspace: Path | str,
        execution: ExecutionConfig | None = None,
        repair: RepairConfig | None = None,
        trusted: bool = False,
        history: ConversationHistory | None = None,
        revert_store: RevertStore | None = None,
    ) -> None:
        self._generator = generator
        self._workspace = Path(workspace)
        self._repair_config = repair or RepairConfig()
        self._history = history if history is not None else ConversationHistory()
        self._revert_store = revert_store if revert_store is not None else RevertStore()
        self._context = ExecutionContext(
            workspace=self._workspace,
            config=execution or ExecutionConfig(),
            trusted=trusted,
            revert_store=self._revert_store,
        )
        self._executor = PlanExecutor(self._context)
        self.last_plan: Plan | None = None
        self.last_summary: PlanExecutionSummary | None = None
        self.last_failure_brief: str | None = None

    @classmethod
    def from_client(
        cls,
        client: LLMClient,
        config: Mapping[str, Any] | None = None,
        *,
        config_path: Path | str = "config.yaml",
        history: ConversationHistory | None = None,
        trusted: bool | None = None,
    ) -> "Orchestrator":
        """Build a session from the YAML configuration mapping."""
        config = dict(config or {})
        workspace_cfg = config.get("workspace") or {}
        if trusted is None:
            trusted = bool(workspace_cfg.get("trusted", False)) if isinstance(workspace_cfg, Mapping) else False
        return cls(
            generator=PlanGenerator(client, GenerationSettings.from_config(config)),
            workspace=resolve_workspace_root(config, Path(config_path)),
            execution=ExecutionConfig.from_config(config),
            repair=RepairConfig.from_config(config),
            trusted=trusted,
            history=history,
        )

    @property
    def workspace(self) -> Path:
        return self._workspace

    @property
    def history(self) -> ConversationHistory:
        return self._history

    @property
    def context(self) -> ExecutionContext:
        return self._context

    @property
    def revert_store(self) -> RevertStore:
        return self._revert_store

    def request_plan(self, text: str) -> Plan:
        """Generate a plan for ``text`` and record the exchange."""
        plan = self._generator.generate(text, self._history.turns)
        self._history.append("user", text)
        self._history.append("model", plan.to_json())
        self.last_plan = plan
        return plan

    def run_plan(self, plan: Plan | None = None) -> PlanExecutionSummary:
        """Execute ``plan`` (default: the last plan) and remember its failures.

        Whole-run aborts are recorded as a runtime failure brief and re-raised.
        """
        plan = plan if plan is not None else self.last_plan
        if plan is None:
            raise NoPlanError("No plan ready. Ask for something first.")
        self.last_plan = plan
        try:
            summary = self._executor.execute(plan)
        except SandboxError as error:
            self.last_failure_brief = f"- runtime exception: {error}"
            self._history.append("model", f"Execution error: {error}")
            raise

        self.last_summary = summary
        self.last_failure_brief = build_failure_brief(summary.results)
        self._history.append("model", summary.format_summary())
        return summary

    def repair(self) -> Plan:
        """Generate one repair plan for the last failures; runs it only when auto-run is on."""
        if not self.last_failure_brief:
            raise NothingToRepairError("No failures to repair.")
        brief = self.last_failure_brief
        context_brief = build_context_brief(self.last_plan, self._workspace)
        plan = self._generator.generate_repair(brief, context_brief, self._history.turns)
        self._history.append("user", f"[repair] {brief}")
        self._history.append("model", plan.to_json())
        self.last_plan = plan
        if self._repair_config.auto_run:
            self.run_plan(plan)
        return plan

    def ask(self, text: str) -> AskResult:
        """Plan ``text``; with auto-run, execute it and run the auto-repair loop."""
        plan = self.request_plan(text)
        result = AskResult(plan=plan)
        if not self._repair_config.auto_run:
            return result

        result.summary, result.repair = self.run_and_repair(plan)
        return result

    def run_and_repair(self, plan: Plan) -> tuple[PlanExecutionSummary, RepairOutcome | None]:
        """Run ``plan`` and, when auto-repair is on and steps failed, the repair loop."""
        summary = self.run_plan(plan)
        if not (self._repair_config.auto_repair and self.last_failure_brief):
            return summary, None
        loop = RepairOrchestrator(
            self._generator,
            self.run_plan,
            workspace=self._workspace,
            max_attempts=self._repair_config.max_attempts,
            history=self._history,
        )
        return summary, loop.run(plan, summary)

    def revert(self, plan: Plan | Mapping[str, Any] | None = None) -> RevertReport:
        """Restore the snapshot captured before ``plan`` (default: the last plan) ran."""
        target = plan if plan is not None else self.last_plan
        if target is None:
            raise NoPlanError("No plan to revert.")
        report = self._revert_store.revert(target)
        LOGGER.info("Reverted plan %s: %s", report.plan_digest[:12], report.format_summary())
        return report

    def clear_history(self) -> None:
        self._history.clear()
        LOGGER.info("Conversation history cleared.")
