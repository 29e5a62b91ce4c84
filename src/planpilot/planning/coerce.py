"""Coerce untrusted model output into a :class:`Plan`."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from .schema import PLACEHOLDER_GOAL, Plan, step_from_payload

__all__ = ["PlanParseError", "coerce_plan", "coerce_plan_payload", "strip_code_fence"]

_LEADING_FENCE_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"\s*```$")


class PlanParseError(ValueError):
    """Raised when model output cannot be parsed into a plan object."""


def strip_code_fence(text: str) -> str:
    """Drop a leading ```` ```json ```` marker and a trailing ```` ``` ```` marker."""
    cleaned = text.strip()
    cleaned = _LEADING_FENCE_RE.sub("", cleaned, count=1)
    cleaned = _TRAILING_FENCE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def _parse_object(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    first = text.find("{")
    last = text.rfind("}")
    if first < 0 or last <= first:
        raise PlanParseError("Failed to parse JSON plan from model response.")
    try:
        return json.loads(text[first : last + 1])
    except json.JSONDecodeError as error:
        raise PlanParseError(f"Failed to parse JSON plan from model response: {error.msg}") from error


def coerce_plan(raw: str) -> Plan:
    """Parse raw generation output into a normalised plan.

    Unknown actions are dropped. Missing fields are left for the executor to
    report, so a ``write`` without ``content`` is accepted with empty content.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise PlanParseError("Model response was empty.")
    payload = _parse_object(strip_code_fence(raw))
    if not isinstance(payload, Mapping):
        raise PlanParseError("Model response did not contain a JSON object.")
    return coerce_plan_payload(payload)


def coerce_plan_payload(payload: Mapping[str, Any]) -> Plan:
    """Normalise an already-decoded plan mapping."""
    goal = payload.get("goal")
    root = payload.get("root")
    raw_steps = payload.get("steps")

    steps = []
    if isinstance(raw_steps, list):
        for entry in raw_steps:
            step = step_from_payload(entry)
            if step is not None:
                steps.append(step)

    return Plan(
        goal=goal if isinstance(goal, str) else PLACEHOLDER_GOAL,
        root=root.strip() if isinstance(root, str) and root.strip() else ".",
        steps=steps,
    )
