"""Typed records kept by the PlanPilot memory layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


TurnRole = Literal["user", "model"]


class Turn(RecordModel):
    """One conversational exchange entry."""

    role: TurnRole
    text: str


class RevertRecord(RecordModel):
    """Pre-execution contents for every file a plan was about to mutate.

    ``before`` maps root-relative paths to their prior bytes, or ``None`` when
    the file did not exist.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    workspace_folder: str
    root: str
    before: Dict[str, Optional[bytes]] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
