"""Instruction profiles and message helpers for plan generation."""

from __future__ import annotations

from enum import Enum

__all__ = [
    "InstructionProfile",
    "PLANNING_PROMPT",
    "PLAN_SCHEMA",
    "REPAIR_PROMPT",
    "render_repair_request",
    "system_prompt_for",
]


class InstructionProfile(str, Enum):
    """Which system prompt a generation request uses."""

    PLANNING = "planning"
    REPAIR = "repair"


PLAN_SCHEMA = """{
  "goal": "string (one-line summary of the change)",
  "root": "string (workspace-relative directory where changes happen, e.g. \\".\\" or \\"my-app\\")",
  "steps": [
    {"action": "mkdir", "path": "relative/dir"},
    {"action": "write", "path": "relative/file", "content": "full file content"},
    {"action": "append", "path": "relative/file", "content": "text to append"},
    {"action": "edit", "path": "relative/file", "find": "literal text or /regex/flags", "replace": "replacement"},
    {"action": "shell", "cmd": "command", "cwd": "relative/dir (optional)"},
    {"action": "install", "packages": ["pkg"], "dev": false, "cwd": "relative/dir (optional)"}
  ]
}"""

PLANNING_PROMPT = (
    "You plan automated changes to a local project workspace.\n"
    "Respond with exactly one JSON object of this shape and nothing else:\n\n"
    f"{PLAN_SCHEMA}\n\n"
    "Rules:\n"
    "- Every path is relative to the workspace and must stay inside it.\n"
    "- Use the fewest correct steps; `write` creates parent directories, so skip redundant `mkdir`.\n"
    "- When scaffolding a project without a framework initialiser, include its manifest file.\n"
    "- When details are unspecified, pick sensible defaults that produce something runnable.\n"
    "- No prose, markdown, or code fences: raw JSON only."
)

REPAIR_PROMPT = (
    "You produce a targeted repair plan for failures reported from a previous run.\n"
    "Respond with exactly one JSON object using the same schema as the planning profile:\n\n"
    f"{PLAN_SCHEMA}\n\n"
    "Constraints:\n"
    "- Address only the reported failures.\n"
    "- Do not repeat steps that already succeeded unless they are idempotent and needed.\n"
    "- If a file to edit may be missing, create it with `write` first.\n"
    "- All paths stay inside the workspace; the same safety gates apply.\n"
    "- Keep the plan minimal and ordered so it can run immediately.\n"
    "- No prose, markdown, or code fences: raw JSON only."
)

_PROMPTS = {
    InstructionProfile.PLANNING: PLANNING_PROMPT,
    InstructionProfile.REPAIR: REPAIR_PROMPT,
}


def system_prompt_for(profile: InstructionProfile | str) -> str:
    """Return the system prompt registered for ``profile``."""
    return _PROMPTS[InstructionProfile(profile)]


def render_repair_request(failure_brief: str, context_brief: str) -> str:
    """Format the user message sent with the repair profile."""
    return (
        "The previous attempt failed. Produce a MINIMAL repair plan using the schema.\n\n"
        f"--- Failures ---\n{failure_brief}\n\n"
        f"--- Context ---\n{context_brief}"
    )
