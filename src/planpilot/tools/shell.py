"""Run plan commands through the platform shell with bounded output capture."""

from __future__ import annotations

import os
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Dict, Mapping

__all__ = [
    "DEFAULT_MAX_OUTPUT_BYTES",
    "DEFAULT_SHELLS",
    "ShellResult",
    "SubprocessError",
    "run_shell",
    "select_shell",
]

# Per-stream capture limit; the child is killed once either stream exceeds it.
DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
DEFAULT_SHELLS: Dict[str, str] = {"posix": "/bin/bash", "windows": "cmd.exe"}
_POLL_INTERVAL = 0.05


class SubprocessError(RuntimeError):
    """Raised when a command cannot start, exits non-zero, or overflows its buffer."""

    def __init__(
        self,
        message: str,
        *,
        command: str,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


@dataclass(slots=True)
class ShellResult:
    """Captured outcome of a successful shell invocation."""

    command: str
    cwd: Path
    exit_code: int
    stdout: str
    stderr: str


def select_shell(shells: Mapping[str, str] | None = None, *, platform: str | None = None) -> str:
    """Pick the configured shell executable for the host platform."""
    table = dict(DEFAULT_SHELLS)
    if shells:
        table.update({key: value for key, value in shells.items() if isinstance(value, str) and value.strip()})
    host = platform or ("windows" if os.name == "nt" else "posix")
    return table.get(host) or table["posix"]


def _merge_env(extra: Mapping[str, str] | None) -> Dict[str, str]:
    env: Dict[str, str] = os.environ.copy()
    if extra:
        env.update({str(key): str(value) for key, value in extra.items()})
    return env


def _stream_size(handle: IO[bytes]) -> int:
    return os.fstat(handle.fileno()).st_size


def _read_capped(handle: IO[bytes], limit: int) -> str:
    handle.seek(0)
    return handle.read(limit).decode("utf-8", errors="replace")


def run_shell(
    command: str,
    *,
    cwd: Path,
    shell: str | None = None,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    env: Mapping[str, str] | None = None,
) -> ShellResult:
    """Execute ``command`` in ``cwd`` and return its captured output.

    There is no timeout: a command that never exits blocks the caller until it
    either finishes or writes more than ``max_output_bytes`` to one stream.
    """
    executable = shell or select_shell()
    with tempfile.TemporaryFile() as out_handle, tempfile.TemporaryFile() as err_handle:
        try:
            process = subprocess.Popen(  # noqa: S602 - plan commands are gated by allow_shell
                command,
                cwd=cwd,
                shell=True,
                executable=executable,
                stdin=subprocess.DEVNULL,
                stdout=out_handle,
                stderr=err_handle,
                env=_merge_env(env),
            )
        except OSError as error:
            raise SubprocessError(
                f"Command failed to start: {command} ({error})",
                command=command,
            ) from error

        overflow = False
        while process.poll() is None:
            if max(_stream_size(out_handle), _stream_size(err_handle)) > max_output_bytes:
                overflow = True
                process.kill()
                process.wait()
                break
            time.sleep(_POLL_INTERVAL)
        if not overflow:
            overflow = max(_stream_size(out_handle), _stream_size(err_handle)) > max_output_bytes

        stdout = _read_capped(out_handle, max_output_bytes)
        stderr = _read_capped(err_handle, max_output_bytes)

    exit_code = process.returncode
    if overflow:
        raise SubprocessError(
            f"Command output exceeded {max_output_bytes} bytes: {command}",
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
        )
    if exit_code != 0:
        detail = stderr.strip() or stdout.strip()
        message = f"Command failed (exit {exit_code}): {command}"
        if detail:
            message = f"{message}\n{detail}"
        raise SubprocessError(
            message,
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
        )
    return ShellResult(command=command, cwd=Path(cwd), exit_code=exit_code, stdout=stdout, stderr=stderr)
