from __future__ import annotations

import os

import pytest

from planpilot.tools.shell import SubprocessError, run_shell, select_shell

pytestmark = pytest.mark.skipif(os.name == "nt", reason="POSIX shell required")

SHELL = "/bin/sh"


def test_run_shell_captures_output(tmp_path) -> None:
    (tmp_path / "marker.txt").write_text("", encoding="utf-8")

    result = run_shell("echo hi && ls", cwd=tmp_path, shell=SHELL)

    assert result.exit_code == 0
    assert result.stdout == "hi\nmarker.txt\n"
    assert result.stderr == ""


def test_run_shell_raises_on_non_zero_exit(tmp_path) -> None:
    with pytest.raises(SubprocessError) as excinfo:
        run_shell("echo partial; echo oops >&2; exit 3", cwd=tmp_path, shell=SHELL)

    error = excinfo.value
    assert error.exit_code == 3
    assert error.stdout == "partial\n"
    assert error.stderr == "oops\n"
    assert str(error).startswith("Command failed (exit 3):")


def test_run_shell_enforces_output_limit(tmp_path) -> None:
    with pytest.raises(SubprocessError, match="exceeded 100 bytes"):
        run_shell("yes | head -c 5000", cwd=tmp_path, shell=SHELL, max_output_bytes=100)


def test_select_shell_uses_platform_table() -> None:
    assert select_shell({"posix": "/bin/sh"}, platform="posix") == "/bin/sh"
    assert select_shell({"posix": "/bin/sh"}, platform="windows") == "cmd.exe"
    assert select_shell(None, platform="posix") == "/bin/bash"
