"""Async command runner for project build and typecheck commands."""

import asyncio
import shlex
import time
from pathlib import Path
from typing import Protocol

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field


class CommandResult(BaseModel):
    """Outcome of running one command."""

    model_config = ConfigDict(frozen=True)

    command: str
    success: bool
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = Field(default=0, ge=0)
    timed_out: bool = False


class ProcessRunner(Protocol):
    """Anything that can run a command string in a directory."""

    async def run(self, command: str, cwd: str | Path, timeout: float | None = None) -> CommandResult:
        ...


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def run_command(
    command: str,
    cwd: str | Path,
    timeout: float | None = None,
) -> CommandResult:
    """
    Run a command without a shell and capture its output.

    The command string is split with shell quoting rules. Failures to start
    the process, non-zero exits and timeouts all produce a failed
    CommandResult rather than an exception.

    Args:
        command: Command line, e.g. ``"npm run build"``.
        cwd: Working directory.
        timeout: Seconds before the process is killed. None waits forever.

    Returns:
        CommandResult.

    Raises:
        asyncio.CancelledError: If the awaiting task is cancelled. The child
            process is killed first.
    """
    start = time.monotonic()

    try:
        argv = shlex.split(command)
    except ValueError as e:
        return CommandResult(command=command, success=False, exit_code=1, stderr=f"Invalid command: {e}")

    if not argv:
        return CommandResult(command=command, success=False, exit_code=1, stderr="Empty command")

    logger.debug(f"Running `{command}` in {cwd}")

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.warning(f"Could not start `{command}`: {e}")
        return CommandResult(
            command=command,
            success=False,
            exit_code=127,
            stderr=str(e),
            duration_ms=_elapsed_ms(start),
        )

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        process.kill()
        await process.wait()
        logger.warning(f"Command `{command}` timed out after {timeout}s")
        return CommandResult(
            command=command,
            success=False,
            exit_code=-1,
            stderr=f"Command timed out after {timeout}s",
            duration_ms=_elapsed_ms(start),
            timed_out=True,
        )
    except asyncio.CancelledError:
        process.kill()
        raise

    exit_code = process.returncode if process.returncode is not None else -1
    result = CommandResult(
        command=command,
        success=exit_code == 0,
        exit_code=exit_code,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        duration_ms=_elapsed_ms(start),
    )
    logger.debug(f"`{command}` exited with {exit_code} in {result.duration_ms}ms")
    return result


class SubprocessRunner:
    """ProcessRunner backed by :func:`run_command`.

    Args:
        default_timeout: Used when ``run`` is called without a timeout.
    """

    def __init__(self, default_timeout: float | None = None) -> None:
        self.default_timeout = default_timeout

    async def run(self, command: str, cwd: str | Path, timeout: float | None = None) -> CommandResult:
        return await run_command(command, cwd, timeout if timeout is not None else self.default_timeout)
