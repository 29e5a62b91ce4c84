"""Recursive directory listing used for post-run reports."""

from __future__ import annotations

import os
from pathlib import Path

__all__ = ["file_tree"]


def file_tree(root: Path) -> list[str]:
    """Return a sorted, flattened listing of ``root`` with ``/``-suffixed directories.

    Unreadable directories are skipped silently; the listing is informational.
    """
    entries: list[str] = []

    def walk(directory: Path, base: str) -> None:
        try:
            children = list(os.scandir(directory))
        except OSError:
            return
        for child in children:
            relative = f"{base}/{child.name}" if base else child.name
            if child.is_dir(follow_symlinks=False):
                entries.append(f"{relative}/")
                walk(Path(child.path), relative)
            else:
                entries.append(relative)

    walk(Path(root), "")
    return sorted(entries)
