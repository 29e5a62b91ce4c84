"""
Plan model, coercion, execution and repair.
"""

from importlib import import_module
from typing import Any

_EXPORTS = {
    "Plan": "planpilot.planning.schema",
    "PlanParseError": "planpilot.planning.coerce",
    "coerce_plan": "planpilot.planning.coerce",
    "ExecutionContext": "planpilot.planning.executor",
    "PlanExecutionSummary": "planpilot.planning.executor",
    "PlanExecutor": "planpilot.planning.executor",
    "execute_plan": "planpilot.planning.executor",
    "PlanGenerator": "planpilot.planning.generate",
    "RepairOrchestrator": "planpilot.planning.repair",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import planning helpers so tools can depend on the plan model alone."""
    if name in _EXPORTS:
        module = import_module(_EXPORTS[name])
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
