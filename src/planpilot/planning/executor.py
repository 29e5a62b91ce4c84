"""Sandboxed interpreter for plan steps.

Steps run strictly in order. A failing step becomes a failure
:class:`StepResult` and execution moves on; only the whole-run gates (plan
root sandboxing and workspace trust) abort a run before any step executes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping

from ..config import ExecutionConfig
from ..tools.file_tree import file_tree
from ..tools.sandbox import require_trusted_workspace, resolve_within
from ..tools.shell import ShellResult, SubprocessError, run_shell
from ..tools.snapshots import RevertStore
from .edits import apply_find_replace
from .schema import (
    AppendStep,
    EditStep,
    InstallStep,
    MkdirStep,
    Plan,
    ShellStep,
    Step,
    WriteStep,
)

__all__ = [
    "ExecutionContext",
    "MissingFileError",
    "PermissionGateError",
    "PlanExecutionSummary",
    "PlanExecutor",
    "StepError",
    "StepResult",
    "UnknownActionError",
    "execute_plan",
    "step_label",
]

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("planpilot.telemetry")

ShellRunner = Callable[..., ShellResult]
TreeLister = Callable[[Path], list[str]]


class StepError(RuntimeError):
    """Base class for errors confined to a single step."""


class PermissionGateError(StepError):
    """Raised when a step needs a capability the configuration disables."""


class MissingFileError(StepError):
    """Raised when an ``edit`` targets a file that does not exist."""


class UnknownActionError(StepError):
    """Raised for step objects outside the known action vocabulary."""


@dataclass(slots=True)
class StepResult:
    """Outcome of a single step, labelled ``#<index> <action>``."""

    step: str
    ok: bool
    stdout: str | None = None
    stderr: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, step: str, *, stdout: str | None = None, stderr: str | None = None) -> "StepResult":
        return cls(step=step, ok=True, stdout=stdout, stderr=stderr)

    @classmethod
    def failure(
        cls,
        step: str,
        error: str,
        *,
        stdout: str | None = None,
        stderr: str | None = None,
    ) -> "StepResult":
        return cls(step=step, ok=False, stdout=stdout, stderr=stderr, error=error)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"step": self.step, "ok": self.ok}
        if self.stdout is not None:
            payload["stdout"] = self.stdout
        if self.stderr is not None:
            payload["stderr"] = self.stderr
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class PlanExecutionSummary:
    """Results of one plan run plus the post-run listing of its root."""

    plan: Plan
    root: Path
    results: list[StepResult] = field(default_factory=list)
    tree: list[str] = field(default_factory=list)
    dry_run: bool = True
    plan_digest: str = ""
    snapshot_captured: bool = False

    @property
    def ok_count(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed_count(self) -> int:
        return len(self.results) - self.ok_count

    @property
    def failures(self) -> list[StepResult]:
        return [result for result in self.results if not result.ok]

    @property
    def succeeded(self) -> bool:
        return self.failed_count == 0

    def to_report(self) -> dict[str, Any]:
        return {
            "ok": self.ok_count,
            "failed": self.failed_count,
            "failures": [{"step": item.step, "error": item.error} for item in self.failures],
            "results": [item.to_dict() for item in self.results],
            "tree": list(self.tree),
        }

    def format_summary(self, *, tree_limit: int = 5) -> str:
        lines = [f"Executed {len(self.results)} steps - OK: {self.ok_count}, Failed: {self.failed_count}"]
        if self.dry_run:
            lines[0] += " (dry run)"
        if self.failures:
            lines.append("")
            lines.append("Failures:")
            lines.extend(f"- {item.step}: {item.error}" for item in self.failures)
        lines.append("")
        lines.append(f"File tree (first {tree_limit}):")
        lines.extend(self.tree[:tree_limit])
        return "\n".join(lines)


@dataclass(slots=True)
class ExecutionContext:
    """Everything a run needs: workspace boundary, gates, trust and snapshots."""

    workspace: Path
    config: ExecutionConfig = field(default_factory=ExecutionConfig)
    trusted: bool = False
    revert_store: RevertStore | None = None


@dataclass(slots=True)
class _StepOutput:
    stdout: str | None = None
    stderr: str | None = None


def step_label(index: int, step: Any) -> str:
    """Return the stable display label for the ``index``-th (1-based) step."""
    return f"#{index} {getattr(step, 'action', type(step).__name__)}"


def _serialise_event_value(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def _emit_event(event: str, **fields: Any) -> None:
    """Log a compact JSON telemetry event."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


def _read_text(path: Path) -> str:
    return path.read_bytes().decode("utf-8")


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(text.encode("utf-8"))


class PlanExecutor:
    """Interpret a plan's steps against the sandboxed plan root."""

    def __init__(
        self,
        context: ExecutionContext,
        *,
        shell_runner: ShellRunner = run_shell,
        tree_lister: TreeLister = file_tree,
    ) -> None:
        self._context = context
        self._config = context.config
        self._shell_runner = shell_runner
        self._tree_lister = tree_lister
        self._handlers: dict[type, Callable[[Any, Path], _StepOutput | None]] = {
            MkdirStep: self._mkdir,
            WriteStep: self._write,
            AppendStep: self._append,
            EditStep: self._edit,
            ShellStep: self._shell,
            InstallStep: self._install,
        }

    @property
    def context(self) -> ExecutionContext:
        return self._context

    def execute(self, plan: Plan) -> PlanExecutionSummary:
        """Run every step of ``plan`` and return the per-step results.

        Raises :class:`~planpilot.tools.sandbox.PathEscapeError` when the plan
        root leaves the workspace and
        :class:`~planpilot.tools.sandbox.TrustRequiredError` when a live run
        targets an untrusted workspace. No step runs in either case.
        """
        config = self._config
        root = resolve_within(self._context.workspace, plan.root or ".")
        digest = plan.digest()

        if config.dry_run:
            LOGGER.info("Dry run: no changes will be written for plan %s.", digest[:12])
        elif config.require_trusted_workspace:
            require_trusted_workspace(self._context.trusted)

        summary = PlanExecutionSummary(plan=plan, root=root, dry_run=config.dry_run, plan_digest=digest)
        store = self._context.revert_store
        if not config.dry_run and store is not None:
            summary.snapshot_captured = self._capture_snapshot(store, plan)

        _emit_event("plan_started", plan=digest, goal=plan.goal, root=root, steps=len(plan.steps))
        for index, step in enumerate(plan.steps, start=1):
            summary.results.append(self._run_step(index, step, root))

        summary.tree = self._tree_lister(root)
        _emit_event(
            "plan_finished",
            plan=digest,
            ok=summary.ok_count,
            failed=summary.failed_count,
        )
        return summary

    def _capture_snapshot(self, store: RevertStore, plan: Plan) -> bool:
        try:
            return store.capture(plan, self._context.workspace) is not None
        except Exception as error:  # snapshot trouble never blocks execution
            LOGGER.warning("Failed to capture revert snapshot: %s", error)
            return False

    def _run_step(self, index: int, step: Step, root: Path) -> StepResult:
        label = step_label(index, step)
        _emit_event("step_started", step=label)
        try:
            handler = self._handlers.get(type(step))
            if handler is None:
                raise UnknownActionError(f"Unknown action: {getattr(step, 'action', type(step).__name__)}")
            output = handler(step, root) or _StepOutput()
        except SubprocessError as error:
            _emit_event("step_failed", step=label, error=str(error), exit_code=error.exit_code)
            return StepResult.failure(label, str(error), stdout=error.stdout, stderr=error.stderr)
        except Exception as error:
            message = str(error) or type(error).__name__
            _emit_event("step_failed", step=label, error=message)
            return StepResult.failure(label, message)
        _emit_event("step_succeeded", step=label)
        return StepResult.success(label, stdout=output.stdout, stderr=output.stderr)

    def _mkdir(self, step: MkdirStep, root: Path) -> None:
        target = resolve_within(root, step.path or ".")
        if self._config.dry_run:
            return
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            LOGGER.debug("mkdir %s ignored: %s", target, error)

    def _write(self, step: WriteStep, root: Path) -> None:
        if not step.path:
            raise ValueError("write: missing path")
        target = resolve_within(root, step.path)
        if not self._config.dry_run:
            _write_text(target, step.content or "")

    def _append(self, step: AppendStep, root: Path) -> None:
        if not step.path:
            raise ValueError("append: missing path")
        target = resolve_within(root, step.path)
        if self._config.dry_run:
            return
        existing = _read_text(target) if target.is_file() else ""
        _write_text(target, existing + (step.content or ""))

    def _edit(self, step: EditStep, root: Path) -> None:
        if not step.path:
            raise ValueError("edit: missing path")
        if step.find is None:
            raise ValueError("edit: find must be string (text or /regex/flags)")
        target = resolve_within(root, step.path)
        if not target.is_file():
            raise MissingFileError(f"Cannot edit missing file: {step.path}")
        updated = apply_find_replace(_read_text(target), step.find, step.replace or "")
        if not self._config.dry_run:
            _write_text(target, updated)

    def _shell(self, step: ShellStep, root: Path) -> _StepOutput:
        if not step.cmd.strip():
            raise ValueError("shell: missing cmd")
        return self._run_command(step.cmd, step.cwd, root)

    def _install(self, step: InstallStep, root: Path) -> _StepOutput:
        if not self._config.allow_install:
            raise PermissionGateError("Package installation is disabled (execution.allow_install=false).")
        if not step.packages:
            return _StepOutput(stdout="", stderr="")
        parts = [self._config.install_command]
        if step.dev and self._config.install_dev_flag:
            parts.append(self._config.install_dev_flag)
        parts.extend(json.dumps(package) for package in step.packages)
        return self._run_command(" ".join(parts), step.cwd, root)

    def _run_command(self, command: str, cwd: str | None, root: Path) -> _StepOutput:
        if not self._config.allow_shell:
            raise PermissionGateError("Shell execution is disabled (execution.allow_shell=false).")
        workdir = resolve_within(root, cwd or ".")
        if self._config.dry_run:
            return _StepOutput(stdout="", stderr="")
        result = self._shell_runner(
            command,
            cwd=workdir,
            shell=self._config.shell,
            max_output_bytes=self._config.max_output_bytes,
        )
        return _StepOutput(stdout=result.stdout, stderr=result.stderr)


def execute_plan(plan: Plan, context: ExecutionContext) -> PlanExecutionSummary:
    """Convenience wrapper: run ``plan`` with a default :class:`PlanExecutor`."""
    return PlanExecutor(context).execute(plan)
