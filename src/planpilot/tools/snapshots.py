"""Capture pre-execution file contents per plan and restore them on demand."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from ..memory.schema import RevertRecord
from ..planning.coerce import coerce_plan_payload
from ..planning.schema import Plan
from .sandbox import PathEscapeError, resolve_within

__all__ = [
    "NOT_REVERTED_NOTE",
    "RevertNotFoundError",
    "RevertReport",
    "RevertStore",
]

LOGGER = logging.getLogger(__name__)

NOT_REVERTED_NOTE = "Directory creation, shell commands and package installs are not undone."


class RevertNotFoundError(LookupError):
    """Raised when no snapshot exists for the requested plan."""


@dataclass(slots=True)
class RevertReport:
    """Outcome of restoring a plan's snapshot."""

    plan_digest: str
    restored: tuple[str, ...] = ()
    deleted: tuple[str, ...] = ()
    note: str = NOT_REVERTED_NOTE

    @property
    def files_touched(self) -> int:
        return len(self.restored) + len(self.deleted)

    def format_summary(self) -> str:
        return f"Reverted {self.files_touched} file(s). {self.note}"


class RevertStore:
    """Process-lifetime map of plan digest to :class:`RevertRecord`.

    Capturing the same plan twice replaces the earlier record.
    """

    def __init__(self) -> None:
        self._records: Dict[str, RevertRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, digest: object) -> bool:
        return digest in self._records

    def get(self, digest: str) -> RevertRecord | None:
        return self._records.get(digest)

    def capture(self, plan: Plan, workspace: Path) -> RevertRecord | None:
        """Record prior contents of every write/append/edit target in ``plan``.

        Returns ``None`` when nothing could be captured. Never raises for
        per-file problems; those are logged and skipped.
        """
        digest = plan.digest()
        try:
            root = resolve_within(workspace, plan.root)
        except PathEscapeError as error:
            LOGGER.warning("Skipping snapshot for plan %s: %s", digest[:12], error)
            return None

        before: Dict[str, bytes | None] = {}
        for relative in plan.mutated_paths():
            try:
                target = resolve_within(root, relative)
            except PathEscapeError:
                LOGGER.debug("Snapshot skipped escaping path %s", relative)
                continue
            try:
                before[relative] = target.read_bytes() if target.is_file() else None
            except OSError as error:
                LOGGER.warning("Failed to snapshot %s: %s", target, error)

        if not before:
            return None

        record = RevertRecord(
            workspace_folder=str(Path(workspace)),
            root=str(root),
            before=before,
        )
        self._records[digest] = record
        LOGGER.debug("Captured snapshot of %d file(s) for plan %s", len(before), digest[:12])
        return record

    def revert(self, plan: Plan | Mapping[str, Any]) -> RevertReport:
        """Restore the snapshot for ``plan``; safe to call repeatedly."""
        if not isinstance(plan, Plan):
            plan = coerce_plan_payload(plan)
        digest = plan.digest()
        record = self._records.get(digest)
        if record is None:
            raise RevertNotFoundError(f"No snapshot recorded for plan {digest[:12]}.")

        root = Path(record.root)
        restored: list[str] = []
        deleted: list[str] = []
        for relative, content in record.before.items():
            target = resolve_within(root, relative)
            if content is None:
                if target.is_file():
                    target.unlink()
                    deleted.append(relative)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
            restored.append(relative)

        return RevertReport(plan_digest=digest, restored=tuple(restored), deleted=tuple(deleted))
