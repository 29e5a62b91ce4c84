from __future__ import annotations

import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from typer.testing import CliRunner, Result  # noqa: E402

from planpilot.cli import app  # noqa: E402


@dataclass(slots=True)
class Workspace:
    """Fixture payload: a scratch workspace with an offline configuration."""

    root: Path
    config_path: Path

    def run_cli(self, *args: str, input: str | None = None) -> Result:
        """Invoke the CLI in-process against this workspace's config."""
        runner = CliRunner()
        return runner.invoke(
            app,
            [*args, "--config", str(self.config_path)],
            input=input,
            catch_exceptions=False,
        )

    def write_plan(self, payload: str, name: str = "plan.json") -> Path:
        path = self.root / name
        path.write_text(textwrap.dedent(payload).strip() + "\n", encoding="utf-8")
        return path


@pytest.fixture()
def workspace(tmp_path: Path) -> Workspace:
    """Create a workspace whose config uses the offline client and a local history DB."""

    root = tmp_path / "workspace"
    root.mkdir()
    config_path = root / "config.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            workspace:
              root: .
              trusted: false
            execution:
              dry_run: true
              allow_shell: false
              allow_install: false
              require_trusted_workspace: true
              shell:
                posix: /bin/sh
            repair:
              auto_run: false
              auto_repair: true
              max_attempts: 2
            models:
              provider: offline
            history:
              persist: true
              max_turns: 50
            paths:
              data: data
              db_path: data/planpilot.sqlite
            """
        ).lstrip(),
        encoding="utf-8",
    )
    return Workspace(root=root, config_path=config_path)
