"""Typed plan payloads: the closed step vocabulary and its JSON rendering."""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

__all__ = [
    "ACTIONS",
    "AppendStep",
    "EditStep",
    "FindSpec",
    "InstallStep",
    "LiteralFind",
    "MkdirStep",
    "PLACEHOLDER_GOAL",
    "PatternFind",
    "Plan",
    "ShellStep",
    "Step",
    "WriteStep",
    "canonical_json",
    "parse_find",
    "step_from_payload",
]

PLACEHOLDER_GOAL = "(no summary)"

# ``/body/flags`` framing: leading slash, non-empty body, last slash, flag letters.
_PATTERN_FRAME_RE = re.compile(r"^/(?P<body>.+)/(?P<flags>[A-Za-z]*)$", re.DOTALL)


@dataclass(slots=True, frozen=True)
class LiteralFind:
    """Plain-text search term; every occurrence is replaced."""

    text: str

    def render(self) -> str:
        return self.text


@dataclass(slots=True, frozen=True)
class PatternFind:
    """Regular-expression search term written as ``/body/flags``."""

    body: str
    flags: str = ""

    def render(self) -> str:
        return f"/{self.body}/{self.flags}"


FindSpec = Union[LiteralFind, PatternFind]


def parse_find(raw: Any) -> FindSpec | None:
    """Classify an ``edit`` search term; non-strings yield ``None``."""
    if not isinstance(raw, str):
        return None
    match = _PATTERN_FRAME_RE.match(raw)
    if match:
        return PatternFind(body=match.group("body"), flags=match.group("flags"))
    return LiteralFind(raw)


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    return default


def _optional_text(value: Any) -> str | None:
    text = _text(value)
    return text if text.strip() else None


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "on"}
    return bool(value)


def _packages(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Sequence):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


@dataclass(slots=True)
class MkdirStep:
    """Create a directory (and parents) under the plan root."""

    action: ClassVar[str] = "mkdir"
    path: str = "."

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MkdirStep":
        return cls(path=_text(payload.get("path"), ".") or ".")

    def to_payload(self) -> dict[str, Any]:
        return {"action": self.action, "path": self.path}


@dataclass(slots=True)
class WriteStep:
    """Overwrite a file with ``content``."""

    action: ClassVar[str] = "write"
    path: str = ""
    content: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "WriteStep":
        return cls(path=_text(payload.get("path")), content=_text(payload.get("content")))

    def to_payload(self) -> dict[str, Any]:
        return {"action": self.action, "path": self.path, "content": self.content}


@dataclass(slots=True)
class AppendStep:
    """Append ``content`` to a file, creating it when absent."""

    action: ClassVar[str] = "append"
    path: str = ""
    content: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AppendStep":
        return cls(path=_text(payload.get("path")), content=_text(payload.get("content")))

    def to_payload(self) -> dict[str, Any]:
        return {"action": self.action, "path": self.path, "content": self.content}


@dataclass(slots=True)
class EditStep:
    """Search-and-replace inside an existing file."""

    action: ClassVar[str] = "edit"
    path: str = ""
    find: FindSpec | None = None
    replace: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "EditStep":
        return cls(
            path=_text(payload.get("path")),
            find=parse_find(payload.get("find")),
            replace=_text(payload.get("replace")),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "path": self.path,
            "find": self.find.render() if self.find is not None else None,
            "replace": self.replace,
        }


@dataclass(slots=True)
class ShellStep:
    """Run a command through the platform shell."""

    action: ClassVar[str] = "shell"
    cmd: str = ""
    cwd: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ShellStep":
        return cls(cmd=_text(payload.get("cmd")), cwd=_optional_text(payload.get("cwd")))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"action": self.action, "cmd": self.cmd}
        if self.cwd is not None:
            payload["cwd"] = self.cwd
        return payload


@dataclass(slots=True)
class InstallStep:
    """Install packages with the configured package manager."""

    action: ClassVar[str] = "install"
    packages: list[str] = field(default_factory=list)
    dev: bool = False
    cwd: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "InstallStep":
        return cls(
            packages=_packages(payload.get("packages")),
            dev=_flag(payload.get("dev", False)),
            cwd=_optional_text(payload.get("cwd")),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "action": self.action,
            "packages": list(self.packages),
            "dev": self.dev,
        }
        if self.cwd is not None:
            payload["cwd"] = self.cwd
        return payload


Step = Union[MkdirStep, WriteStep, AppendStep, EditStep, ShellStep, InstallStep]

_STEP_TYPES: dict[str, type] = {
    step_type.action: step_type
    for step_type in (MkdirStep, WriteStep, AppendStep, EditStep, ShellStep, InstallStep)
}
ACTIONS: tuple[str, ...] = tuple(_STEP_TYPES)
_MUTATING_ACTIONS = frozenset({"write", "append", "edit"})


def step_from_payload(payload: Any) -> Step | None:
    """Build a typed step from a raw mapping, or ``None`` for unknown actions."""
    if not isinstance(payload, Mapping):
        return None
    action = payload.get("action")
    if not isinstance(action, str):
        return None
    step_type = _STEP_TYPES.get(action)
    if step_type is None:
        return None
    return step_type.from_payload(payload)


def canonical_json(payload: Any) -> str:
    """Serialise ``payload`` deterministically (sorted keys, compact separators)."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(slots=True)
class Plan:
    """A goal, a root directory, and an ordered list of steps."""

    goal: str = PLACEHOLDER_GOAL
    root: str = "."
    steps: list[Step] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "goal": self.goal,
            "root": self.root,
            "steps": [step.to_payload() for step in self.steps],
        }

    def to_json(self, *, indent: int | None = None) -> str:
        return json.dumps(self.to_payload(), indent=indent, ensure_ascii=False)

    def digest(self) -> str:
        """Stable SHA-256 of the canonical plan payload."""
        return hashlib.sha256(canonical_json(self.to_payload()).encode("utf-8")).hexdigest()

    def mutated_paths(self) -> list[str]:
        """Relative paths touched by write/append/edit steps, deduplicated in order."""
        seen: set[str] = set()
        ordered: list[str] = []
        for step in self.steps:
            if getattr(step, "action", None) not in _MUTATING_ACTIONS:
                continue
            path = getattr(step, "path", "")
            if not path or path in seen:
                continue
            seen.add(path)
            ordered.append(path)
        return ordered
