"""Bounded re-generation and re-execution of plans after step failures."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from ..memory.history import ConversationHistory
from ..models.llm_client import LLMClientError
from ..tools.sandbox import SandboxError
from .coerce import PlanParseError
from .executor import PlanExecutionSummary, StepResult
from .generate import PlanGenerator
from .schema import Plan

__all__ = [
    "RepairAttempt",
    "RepairOrchestrator",
    "RepairOutcome",
    "build_context_brief",
    "build_failure_brief",
]

LOGGER = logging.getLogger(__name__)

PlanRunner = Callable[[Plan], PlanExecutionSummary]


def build_failure_brief(results: Iterable[StepResult]) -> str | None:
    """List failed steps as ``- <label>: <error>`` lines, or ``None`` when all passed."""
    lines = [f"- {result.step}: {result.error or ''}" for result in results if not result.ok]
    return "\n".join(lines) if lines else None


def build_context_brief(plan: Plan | None, workspace: Path) -> str:
    """Describe the previous goal, root and workspace for the repair prompt."""
    lines: list[str] = []
    if plan is not None:
        lines.append(f"previous goal: {plan.goal}")
        lines.append(f"root: {plan.root}")
    lines.append(f"workspace: {Path(workspace).as_posix()}")
    return "\n".join(lines)


@dataclass(slots=True)
class RepairAttempt:
    """One repair generation and, when it succeeded, its execution."""

    number: int
    failure_brief: str
    plan: Plan | None = None
    summary: PlanExecutionSummary | None = None


@dataclass(slots=True)
class RepairOutcome:
    """Result of a repair loop."""

    attempts: list[RepairAttempt] = field(default_factory=list)
    failure_brief: str | None = None
    error: Exception | None = None

    @property
    def resolved(self) -> bool:
        return self.error is None and self.failure_brief is None

    @property
    def last_plan(self) -> Plan | None:
        for attempt in reversed(self.attempts):
            if attempt.plan is not None:
                return attempt.plan
        return None


class RepairOrchestrator:
    """Drive the repair loop for a failed plan run.

    Generation errors and whole-run aborts end the loop and are recorded on
    the outcome; they are never retried.
    """

    def __init__(
        self,
        generator: PlanGenerator,
        runner: PlanRunner,
        *,
        workspace: Path,
        max_attempts: int = 2,
        history: Optional[ConversationHistory] = None,
    ) -> None:
        self._generator = generator
        self._runner = runner
        self._workspace = Path(workspace)
        self._max_attempts = max(0, max_attempts)
        self._history = history if history is not None else ConversationHistory()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def run(self, plan: Plan, summary: PlanExecutionSummary) -> RepairOutcome:
        """Repair ``plan`` until its failures clear or attempts run out."""
        outcome = RepairOutcome(failure_brief=build_failure_brief(summary.results))
        context_brief = build_context_brief(plan, self._workspace)

        while outcome.failure_brief and len(outcome.attempts) < self._max_attempts:
            attempt = RepairAttempt(number=len(outcome.attempts) + 1, failure_brief=outcome.failure_brief)
            outcome.attempts.append(attempt)
            LOGGER.info("Generating repair plan (attempt %d/%d)", attempt.number, self._max_attempts)
            try:
                repair_plan = self._generator.generate_repair(
                    outcome.failure_brief,
                    context_brief,
                    self._history.turns,
                )
            except (LLMClientError, PlanParseError) as error:
                LOGGER.warning("Repair generation failed: %s", error)
                outcome.error = error
                break

            attempt.plan = repair_plan
            self._history.append("user", f"[auto-repair attempt {attempt.number}] {outcome.failure_brief}")
            self._history.append("model", repair_plan.to_json())

            try:
                attempt.summary = self._runner(repair_plan)
            except SandboxError as error:
                LOGGER.warning("Repair plan aborted: %s", error)
                outcome.error = error
                break
            outcome.failure_brief = build_failure_brief(attempt.summary.results)

        return outcome
