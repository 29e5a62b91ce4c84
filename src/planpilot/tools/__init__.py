"""Filesystem and subprocess primitives used by the executor."""

from .file_tree import file_tree
from .sandbox import PathEscapeError, SandboxError, TrustRequiredError, is_within, resolve_within
from .shell import ShellResult, SubprocessError, run_shell

__all__ = [
    "PathEscapeError",
    "SandboxError",
    "ShellResult",
    "SubprocessError",
    "TrustRequiredError",
    "file_tree",
    "is_within",
    "resolve_within",
    "run_shell",
]
