"""Typed views over the YAML configuration consumed by the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

from .tools.shell import DEFAULT_MAX_OUTPUT_BYTES, DEFAULT_SHELLS, select_shell

__all__ = [
    "ExecutionConfig",
    "HistoryConfig",
    "RepairConfig",
    "resolve_workspace_root",
]

DEFAULT_MAX_TURNS = 50


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name)
    return value if isinstance(value, Mapping) else {}


def _bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    return default


def _int(value: Any, default: int, *, minimum: int = 0) -> int:
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


@dataclass(slots=True)
class ExecutionConfig:
    """Gates and limits consulted once per plan run."""

    dry_run: bool = True
    allow_shell: bool = False
    allow_install: bool = False
    require_trusted_workspace: bool = True
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    shells: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SHELLS))
    install_command: str = "npm i"
    install_dev_flag: str = "-D"

    @property
    def shell(self) -> str:
        return select_shell(self.shells)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ExecutionConfig":
        execution = _section(config, "execution")
        defaults = cls()
        shells = dict(defaults.shells)
        shell_cfg = execution.get("shell")
        if isinstance(shell_cfg, Mapping):
            shells.update({str(key): str(value) for key, value in shell_cfg.items() if value})
        elif isinstance(shell_cfg, str) and shell_cfg.strip():
            shells = {"posix": shell_cfg.strip(), "windows": shell_cfg.strip()}
        install = _section(execution, "install")
        command = install.get("command")
        dev_flag = install.get("dev_flag")
        return cls(
            dry_run=_bool(execution.get("dry_run"), defaults.dry_run),
            allow_shell=_bool(execution.get("allow_shell"), defaults.allow_shell),
            allow_install=_bool(execution.get("allow_install"), defaults.allow_install),
            require_trusted_workspace=_bool(
                execution.get("require_trusted_workspace"),
                defaults.require_trusted_workspace,
            ),
            max_output_bytes=_int(
                execution.get("max_output_bytes"), defaults.max_output_bytes, minimum=1
            ),
            shells=shells,
            install_command=command.strip()
            if isinstance(command, str) and command.strip()
            else defaults.install_command,
            install_dev_flag=dev_flag.strip() if isinstance(dev_flag, str) else defaults.install_dev_flag,
        )


@dataclass(slots=True)
class RepairConfig:
    """Auto-run and repair-loop policy."""

    auto_run: bool = False
    auto_repair: bool = True
    max_attempts: int = 2

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "RepairConfig":
        repair = _section(config, "repair")
        defaults = cls()
        return cls(
            auto_run=_bool(repair.get("auto_run"), defaults.auto_run),
            auto_repair=_bool(repair.get("auto_repair"), defaults.auto_repair),
            max_attempts=_int(repair.get("max_attempts"), defaults.max_attempts),
        )


@dataclass(slots=True)
class HistoryConfig:
    """Conversation persistence settings."""

    persist: bool = True
    max_turns: int = DEFAULT_MAX_TURNS

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "HistoryConfig":
        history = _section(config, "history")
        defaults = cls()
        return cls(
            persist=_bool(history.get("persist"), defaults.persist),
            max_turns=_int(history.get("max_turns"), defaults.max_turns, minimum=1),
        )


def resolve_workspace_root(config: Mapping[str, Any], config_path: Path) -> Path:
    """Resolve ``workspace.root`` relative to the configuration file."""
    workspace = _section(config, "workspace")
    raw_root = workspace.get("root", ".")
    root = Path(str(raw_root) if raw_root else ".")
    if not root.is_absolute():
        root = (config_path.parent / root).resolve()
    return root
