"""Async subprocess execution with Result-based error handling.

Every external tool (dpkg-deb, deb-s3, aws, docker, gsutil, ssh, rsync) is
driven through `run`. Commands are awaited one at a time and are never
subject to a timeout: a hung tool blocks the caller.

Usage:
    result = await run(["docker", "pull", image])
    match result:
        case Ok(stdout):
            console.print(stdout)
        case Err(error):
            console.error(f"pull failed: {error.stderr}")
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from relman.core.result import Err, Ok, Result

__all__ = ["CommandRunner", "ProcessError", "run"]


@dataclass(frozen=True, slots=True)
class ProcessError:
    """Error from a failed subprocess execution.

    Attributes:
        command: The command that was executed.
        returncode: Exit code, or -1 if the process could not be started.
        stdout: Standard output (may be empty).
        stderr: Standard error, kept verbatim.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    def __str__(self) -> str:
        cmd_str = " ".join(self.command[:3])
        if len(self.command) > 3:
            cmd_str += " ..."
        return f"{cmd_str} failed (exit {self.returncode})"


class CommandRunner(Protocol):
    """Shell-command capability consumed by storage backends and services."""

    def __call__(
        self,
        cmd: list[str],
        *,
        cwd: Path | None = None,
    ) -> Awaitable[Result[str, ProcessError]]: ...


async def run(
    cmd: list[str],
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
) -> Result[str, ProcessError]:
    """Execute a command and return its stdout or a ProcessError.

    Args:
        cmd: Command and arguments to execute (no shell involved).
        cwd: Working directory (inherits the current one if None).
        env: Environment variables (uses current env if None).

    Returns:
        Ok(stdout) on exit code 0, Err(ProcessError) otherwise.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=-1,
                stdout="",
                stderr=str(e),
            )
        )

    stdout_bytes, stderr_bytes = await proc.communicate()
    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace")

    if proc.returncode != 0:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=proc.returncode if proc.returncode is not None else -1,
                stdout=stdout,
                stderr=stderr,
            )
        )

    return Ok(stdout)
