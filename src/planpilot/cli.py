"""CLI commands for generating, running, repairing and reverting workspace plans."""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import typer
import yaml

from .config import HistoryConfig
from .memory.history import ConversationHistory, HistoryStore
from .models import LLMClient, LLMClientError, ProxyClient
from .models.proxy import PROXY_URL_ENV
from .orchestrator import AskResult, NoPlanError, NothingToRepairError, Orchestrator
from .planning.coerce import PlanParseError, coerce_plan
from .planning.executor import PlanExecutionSummary
from .planning.repair import RepairOutcome
from .planning.schema import Plan
from .prompts import InstructionProfile
from .tools.sandbox import SandboxError
from .tools.snapshots import RevertNotFoundError

APP_HELP = "PlanPilot CLI: plan, run, repair and revert workspace changes."
DEFAULT_CONFIG_NAME = "config.yaml"
OFFLINE_PROVIDER = "offline"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "workspace": {
        "root": ".",
        "trusted": False,
    },
    "execution": {
        "dry_run": True,
        "allow_shell": False,
        "allow_install": False,
        "require_trusted_workspace": True,
        "max_output_bytes": 10 * 1024 * 1024,
        "shell": {
            "posix": "/bin/bash",
            "windows": "cmd.exe",
        },
        "install": {
            "command": "npm i",
            "dev_flag": "-D",
        },
    },
    "repair": {
        "auto_run": False,
        "auto_repair": True,
        "max_attempts": 2,
    },
    "models": {
        "provider": "gemini",
        "model": "",
        "temperature": 0.2,
        "proxy_url": "",
        "timeout": 60,
    },
    "history": {
        "persist": True,
        "max_turns": 50,
    },
    "paths": {
        "data": "data",
        "db_path": "data/planpilot.sqlite",
    },
    "logging": {
        "level": "WARNING",
    },
}

CHAT_HELP = "Commands: /run, /repair, /revert, /history, /clear, /quit. Anything else is a request."

app = typer.Typer(help=APP_HELP)

ConfigOption = typer.Option(
    DEFAULT_CONFIG_NAME,
    "--config",
    "-c",
    help="Path to the PlanPilot configuration file.",
)
UseRemoteOption = typer.Option(
    True,
    "--use-remote/--no-use-remote",
    help="Call the generation proxy instead of the offline stub.",
)
DryRunOption = typer.Option(
    None,
    "--dry-run/--no-dry-run",
    help="Override execution.dry_run.",
)
AllowShellOption = typer.Option(
    None,
    "--allow-shell/--no-allow-shell",
    help="Override execution.allow_shell.",
)
AllowInstallOption = typer.Option(
    None,
    "--allow-install/--no-allow-install",
    help="Override execution.allow_install.",
)
TrustOption = typer.Option(
    None,
    "--trust/--no-trust",
    help="Override workspace.trusted for this invocation.",
)


def _copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    if not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.")
        raise typer.Exit(code=1)

    return data


def _configure_logging(config: Dict[str, Any], verbose: bool) -> None:
    logging_cfg = config.get("logging") or {}
    level_name = str(logging_cfg.get("level", "WARNING")).upper()
    level = logging.DEBUG if verbose else getattr(logging, level_name, logging.WARNING)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(level)


def _apply_overrides(
    config: Dict[str, Any],
    *,
    dry_run: Optional[bool] = None,
    allow_shell: Optional[bool] = None,
    allow_install: Optional[bool] = None,
    auto_run: Optional[bool] = None,
    auto_repair: Optional[bool] = None,
) -> Dict[str, Any]:
    """Return a copy of ``config`` with command-line overrides applied."""
    merged = copy.deepcopy(config)
    execution = merged.setdefault("execution", {})
    repair = merged.setdefault("repair", {})
    for section, key, value in (
        (execution, "dry_run", dry_run),
        (execution, "allow_shell", allow_shell),
        (execution, "allow_install", allow_install),
        (repair, "auto_run", auto_run),
        (repair, "auto_repair", auto_repair),
    ):
        if value is not None:
            section[key] = value
    return merged


def _build_client(config: Dict[str, Any], *, use_remote: bool) -> LLMClient:
    """Select either the proxy client or the offline stub."""
    models_cfg = config.get("models") or {}
    provider = str(models_cfg.get("provider") or "").strip().lower()
    offline = provider == OFFLINE_PROVIDER

    if use_remote and not offline:
        client_kwargs: Dict[str, Any] = {}
        url_value = os.getenv(PROXY_URL_ENV) or models_cfg.get("proxy_url")
        if isinstance(url_value, str) and url_value.strip():
            client_kwargs["url"] = url_value.strip()
        timeout_value = models_cfg.get("timeout")
        if isinstance(timeout_value, (int, float)) and timeout_value > 0:
            client_kwargs["timeout"] = float(timeout_value)
        max_attempts_value = models_cfg.get("max_attempts")
        if isinstance(max_attempts_value, int) and max_attempts_value > 0:
            client_kwargs["max_attempts"] = max_attempts_value
        try:
            client = ProxyClient(**client_kwargs)
        except ValueError as error:
            typer.echo(f"{error} Or re-run with --no-use-remote to use the offline stub.")
            raise typer.Exit(code=1)
        typer.echo(f"Using generation proxy ({client.url}).")
        return client

    typer.echo("Using offline stub client.")
    return _OfflineLLMClient()


class _OfflineLLMClient(LLMClient):
    """Local stub that synthesizes deterministic plans for demos/tests."""

    NOTES_PATH = "PLANPILOT_NOTES.md"

    def __init__(self) -> None:
        super().__init__(OFFLINE_PROVIDER, max_attempts=1)

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        metadata = payload.get("metadata") or {}
        profile = metadata.get("profile", InstructionProfile.PLANNING.value)
        messages = payload.get("messages") or []
        prompt = str(messages[-1].get("content", "")) if messages else ""
        return json.dumps(self._build_plan(str(profile), prompt))

    def _build_plan(self, profile: str, prompt: str) -> Dict[str, Any]:
        if profile == InstructionProfile.REPAIR.value:
            return {"goal": "No offline repair available", "root": ".", "steps": []}
        request = prompt.strip() or "(empty request)"
        return {
            "goal": f"Record request: {request.splitlines()[0][:80]}",
            "root": ".",
            "steps": [
                {"action": "append", "path": self.NOTES_PATH, "content": f"- {request}\n"},
            ],
        }


def _open_history(config: Dict[str, Any], config_path: Path) -> tuple[ConversationHistory, Optional[HistoryStore]]:
    settings = HistoryConfig.from_config(config)
    if not settings.persist:
        return ConversationHistory(), None
    store = HistoryStore.from_config(config, base=config_path.parent)
    return ConversationHistory.load(store), store


def _session(
    config: Dict[str, Any],
    config_path: Path,
    *,
    use_remote: bool,
    trusted: Optional[bool],
) -> tuple[Orchestrator, Optional[HistoryStore]]:
    client = _build_client(config, use_remote=use_remote)
    history, store = _open_history(config, config_path)
    orchestrator = Orchestrator.from_client(
        client,
        config,
        config_path=config_path,
        history=history,
        trusted=trusted,
    )
    return orchestrator, store


def _close(store: Optional[HistoryStore]) -> None:
    if store is not None:
        store.close()


def _render_plan(plan: Plan) -> None:
    typer.echo(f"Plan ready: {plan.goal}")
    typer.echo(plan.to_json(indent=2))


def _render_summary(summary: PlanExecutionSummary) -> None:
    typer.echo(summary.format_summary())
    if summary.snapshot_captured:
        typer.echo(f"Snapshot captured for plan {summary.plan_digest[:12]}.")


def _render_repair(outcome: RepairOutcome) -> None:
    for attempt in outcome.attempts:
        typer.echo(f"Repair attempt {attempt.number}:")
        if attempt.plan is not None:
            _render_plan(attempt.plan)
        if attempt.summary is not None:
            _render_summary(attempt.summary)
    if outcome.error is not None:
        typer.echo(f"Repair stopped: {outcome.error}")
    elif outcome.resolved:
        typer.echo("All failures repaired.")
    else:
        typer.echo("Failures remain after repair attempts.")


def _render_ask(result: AskResult) -> None:
    _render_plan(result.plan)
    if result.summary is not None:
        _render_summary(result.summary)
    if result.repair is not None:
        _render_repair(result.repair)


@app.command()
def init(
    config: str = ConfigOption,
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing configuration file.",
    ),
) -> None:
    """Write a default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    _write_config(config_path, _copy_config_template())
    typer.echo(f"Wrote configuration to {config_path}")


@app.command()
def plan(
    request: str = typer.Argument(..., help="Natural-language description of the change."),
    config: str = ConfigOption,
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the plan JSON to this file instead of only printing it.",
    ),
    use_remote: bool = UseRemoteOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Generate a plan without executing it."""
    config_path = Path(config)
    config_data = load_config(config_path)
    _configure_logging(config_data, verbose)
    orchestrator, store = _session(config_data, config_path, use_remote=use_remote, trusted=None)
    try:
        generated = orchestrator.request_plan(request)
    except (LLMClientError, PlanParseError) as error:
        typer.echo(f"Plan generation failed: {error}")
        raise typer.Exit(code=1)
    finally:
        _close(store)

    _render_plan(generated)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(generated.to_json(indent=2) + "\n", encoding="utf-8")
        typer.echo(f"Saved plan to {output}")


@app.command()
def run(
    plan_file: Path = typer.Argument(..., help="JSON plan file to execute."),
    config: str = ConfigOption,
    dry_run: Optional[bool] = DryRunOption,
    allow_shell: Optional[bool] = AllowShellOption,
    allow_install: Optional[bool] = AllowInstallOption,
    trust: Optional[bool] = TrustOption,
    repair: Optional[bool] = typer.Option(
        None,
        "--repair/--no-repair",
        help="Override repair.auto_repair for failures of this run.",
    ),
    use_remote: bool = UseRemoteOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Execute a plan file, optionally followed by the auto-repair loop."""
    config_path = Path(config)
    config_data = _apply_overrides(
        load_config(config_path),
        dry_run=dry_run,
        allow_shell=allow_shell,
        allow_install=allow_install,
        auto_repair=repair,
    )
    _configure_logging(config_data, verbose)

    if not plan_file.exists():
        raise typer.BadParameter(f"Plan file not found: {plan_file}")
    try:
        plan_obj = coerce_plan(plan_file.read_text(encoding="utf-8"))
    except PlanParseError as error:
        typer.echo(f"Invalid plan file: {error}")
        raise typer.Exit(code=1)

    orchestrator, store = _session(config_data, config_path, use_remote=use_remote, trusted=trust)
    try:
        summary, outcome = orchestrator.run_and_repair(plan_obj)
    except SandboxError as error:
        typer.echo(f"Execution aborted: {error}")
        raise typer.Exit(code=1)
    finally:
        _close(store)

    _render_summary(summary)
    if outcome is not None:
        _render_repair(outcome)
    if orchestrator.last_failure_brief:
        raise typer.Exit(code=1)


@app.command()
def ask(
    request: str = typer.Argument(..., help="Natural-language description of the change."),
    config: str = ConfigOption,
    run_plan: Optional[bool] = typer.Option(
        None,
        "--run/--no-run",
        help="Override repair.auto_run.",
    ),
    dry_run: Optional[bool] = DryRunOption,
    allow_shell: Optional[bool] = AllowShellOption,
    allow_install: Optional[bool] = AllowInstallOption,
    trust: Optional[bool] = TrustOption,
    use_remote: bool = UseRemoteOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Plan a request and, when auto-run is enabled, execute and repair it."""
    config_path = Path(config)
    config_data = _apply_overrides(
        load_config(config_path),
        dry_run=dry_run,
        allow_shell=allow_shell,
        allow_install=allow_install,
        auto_run=run_plan,
    )
    _configure_logging(config_data, verbose)
    orchestrator, store = _session(config_data, config_path, use_remote=use_remote, trusted=trust)
    try:
        result = orchestrator.ask(request)
    except (LLMClientError, PlanParseError) as error:
        typer.echo(f"Plan generation failed: {error}")
        raise typer.Exit(code=1)
    except SandboxError as error:
        typer.echo(f"Execution aborted: {error}")
        raise typer.Exit(code=1)
    finally:
        _close(store)

    _render_ask(result)


def _chat_lines() -> Iterator[str]:
    while True:
        try:
            line = typer.prompt("planpilot", default="", show_default=False, prompt_suffix="> ")
        except typer.Abort:
            return
        yield line.strip()


def _chat_command(orchestrator: Orchestrator, line: str) -> bool:
    """Handle one chat line; return ``False`` when the session should end."""
    command = line.lower()
    if command in {"/quit", "/exit"}:
        return False
    if command == "/help":
        typer.echo(CHAT_HELP)
    elif command == "/run":
        _render_summary(orchestrator.run_plan())
    elif command == "/repair":
        repaired = orchestrator.repair()
        _render_plan(repaired)
        if orchestrator.last_summary is not None and orchestrator.last_summary.plan is repaired:
            _render_summary(orchestrator.last_summary)
        else:
            typer.echo("Repair plan ready. Use /run to execute.")
    elif command == "/revert":
        typer.echo(orchestrator.revert().format_summary())
    elif command == "/history":
        _render_turns(orchestrator.history)
    elif command == "/clear":
        orchestrator.clear_history()
        typer.echo("History cleared.")
    elif command.startswith("/"):
        typer.echo(f"Unknown command: {line}. {CHAT_HELP}")
    else:
        _render_ask(orchestrator.ask(line))
    return True


def _render_turns(history: ConversationHistory) -> None:
    if not len(history):
        typer.echo("History is empty.")
        return
    for turn in history.turns:
        text = turn.text if len(turn.text) <= 200 else f"{turn.text[:197]}..."
        typer.echo(f"[{turn.role}] {text}")


@app.command()
def chat(
    config: str = ConfigOption,
    dry_run: Optional[bool] = DryRunOption,
    allow_shell: Optional[bool] = AllowShellOption,
    allow_install: Optional[bool] = AllowInstallOption,
    trust: Optional[bool] = TrustOption,
    use_remote: bool = UseRemoteOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Interactive session; snapshots for /revert live as long as the session."""
    config_path = Path(config)
    config_data = _apply_overrides(
        load_config(config_path),
        dry_run=dry_run,
        allow_shell=allow_shell,
        allow_install=allow_install,
    )
    _configure_logging(config_data, verbose)
    orchestrator, store = _session(config_data, config_path, use_remote=use_remote, trusted=trust)
    typer.echo(CHAT_HELP)
    try:
        for line in _chat_lines():
            if not line:
                continue
            try:
                if not _chat_command(orchestrator, line):
                    break
            except (NoPlanError, NothingToRepairError, RevertNotFoundError) as error:
                typer.echo(str(error))
            except (LLMClientError, PlanParseError) as error:
                typer.echo(f"Plan generation failed: {error}")
            except SandboxError as error:
                typer.echo(f"Execution aborted: {error}")
    finally:
        _close(store)


@app.command()
def history(
    config: str = ConfigOption,
    clear: bool = typer.Option(False, "--clear", help="Delete the stored conversation."),
) -> None:
    """Show or clear the persisted conversation history."""
    config_path = Path(config)
    config_data = load_config(config_path)
    conversation, store = _open_history(config_data, config_path)
    try:
        if clear:
            conversation.clear()
            typer.echo("History cleared.")
            return
        _render_turns(conversation)
    finally:
        _close(store)


if __name__ == "__main__":
    app()
