"""Lexical path sandboxing and workspace trust gates.

Every filesystem action resolves its target through :func:`resolve_within`.
The check is purely lexical: ``..`` segments are collapsed and the result must
sit at or below the root. Symbolic links are *not* followed, so a link inside
the root that points elsewhere is treated as inside the root.
"""

from __future__ import annotations

import os
from pathlib import Path

__all__ = [
    "PathEscapeError",
    "SandboxError",
    "TrustRequiredError",
    "is_within",
    "require_trusted_workspace",
    "resolve_within",
]


class SandboxError(RuntimeError):
    """Base error raised when a sandbox rule is violated."""


class PathEscapeError(SandboxError):
    """Raised when a relative path resolves outside its declared root."""

    def __init__(self, relative: str, root: Path | str) -> None:
        super().__init__(f"Blocked path outside workspace: {relative}")
        self.relative = relative
        self.root = Path(root)


class TrustRequiredError(SandboxError):
    """Raised when mutations are requested for an untrusted workspace."""


def _lexical_absolute(path: Path | str) -> Path:
    return Path(os.path.normpath(os.path.abspath(os.fspath(path))))


def is_within(candidate: Path, root: Path) -> bool:
    """Return True when ``candidate`` equals ``root`` or is nested below it."""
    if candidate == root:
        return True
    try:
        candidate.relative_to(root)
    except ValueError:
        return False
    return True


def resolve_within(root: Path | str, relative: str | os.PathLike[str]) -> Path:
    """Resolve ``relative`` against ``root`` and reject escapes.

    Absolute inputs are joined the same way :func:`os.path.join` does, which
    means they replace the root and are then rejected unless they happen to
    point inside it.
    """
    base = _lexical_absolute(root)
    target = _lexical_absolute(base / os.fspath(relative))
    if not is_within(target, base):
        raise PathEscapeError(os.fspath(relative), base)
    return target


def require_trusted_workspace(trusted: bool) -> None:
    """Abort when the workspace has not been marked as trusted."""
    if not trusted:
        raise TrustRequiredError(
            "This workspace is not trusted. Mark it trusted (workspace.trusted: true or --trust) "
            "to allow file modifications or shell execution."
        )
