"""
Agent engines.

An engine runs one coding agent non-interactively inside a task worktree
and reports how the process ended. Engines never raise for agent
failures: a missing binary, a non-zero exit or a timeout all come back as
an unsuccessful :class:`AgentResult`.
"""

import asyncio
import os
import shutil
import time
from typing import Protocol

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# MODELS
# =============================================================================


class AgentExecuteOptions(BaseModel):
    """Inputs for one agent run."""

    prompt: str = Field(..., min_length=1)
    workdir: str = Field(..., description="Worktree the agent runs in")
    env: dict[str, str] = Field(default_factory=dict, description="Extra environment variables")
    timeout_ms: int | None = Field(default=None, gt=0)


class AgentResult(BaseModel):
    """Outcome of one agent run."""

    model_config = ConfigDict(frozen=True)

    success: bool
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = Field(default=0, ge=0)
    timed_out: bool = False


class AgentEngine(Protocol):
    """Anything that can execute an agent prompt in a worktree."""

    name: str

    async def execute(self, options: AgentExecuteOptions) -> AgentResult:
        ...


# =============================================================================
# CLAUDE CODE
# =============================================================================


class ClaudeCodeEngine:
    """
    Runs the ``claude`` CLI in print mode.

    Example:
        >>> engine = ClaudeCodeEngine()
        >>> result = await engine.execute(
        ...     AgentExecuteOptions(prompt="Implement task 1a", workdir="/worktrees/1a")
        ... )
        >>> result.success
        True
    """

    name = "claude-code"

    def __init__(
        self,
        claude_path: str | None = None,
        max_turns: int | None = None,
        model: str | None = None,
        skip_permissions: bool = True,
        output_format: str = "json",
    ):
        """
        Initialize the engine.

        Args:
            claude_path: Path to claude CLI (auto-detected if None).
            max_turns: Optional turn limit passed to the CLI.
            model: Model alias or name passed as ``--model``.
            skip_permissions: Pass ``--dangerously-skip-permissions``.
            output_format: CLI output format; ``json`` reports usage cost.
        """
        self.claude_path = claude_path or self._find_claude_path()
        self.max_turns = max_turns
        self.model = model
        self.skip_permissions = skip_permissions
        self.output_format = output_format

    def _find_claude_path(self) -> str:
        """Find the claude CLI executable."""
        locations = [
            "claude",
            "/usr/local/bin/claude",
            "/opt/homebrew/bin/claude",
            os.path.expanduser("~/.local/bin/claude"),
        ]
        for loc in locations:
            if shutil.which(loc):
                return loc
        return "claude"

    def build_args(self, prompt: str) -> list[str]:
        """Command line for a prompt."""
        args = [self.claude_path, "--print", "--output-format", self.output_format]
        if self.max_turns is not None:
            args.extend(["--max-turns", str(self.max_turns)])
        if self.model:
            args.extend(["--model", self.model])
        if self.skip_permissions:
            args.append("--dangerously-skip-permissions")
        args.extend(["-p", prompt])
        return args

    async def execute(self, options: AgentExecuteOptions) -> AgentResult:
        """Run the agent and wait for it to exit or time out."""
        start = time.monotonic()
        env = os.environ.copy()
        env.update(options.env)
        args = self.build_args(options.prompt)
        timeout = options.timeout_ms / 1000 if options.timeout_ms else None

        logger.debug(f"Spawning: {' '.join(args[:4])}... in {options.workdir}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=options.workdir,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                stdin=asyncio.subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.error(f"Failed to start agent {self.claude_path}: {e}")
            return AgentResult(
                success=False,
                exit_code=127,
                stderr=str(e),
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError:
            logger.warning(f"Agent in {options.workdir} timed out after {timeout}s")
            process.kill()
            await process.wait()
            return AgentResult(
                success=False,
                exit_code=-1,
                stderr=f"Agent timed out after {timeout}s",
                duration_ms=int((time.monotonic() - start) * 1000),
                timed_out=True,
            )
        except asyncio.CancelledError:
            process.kill()
            raise

        exit_code = process.returncode if process.returncode is not None else -1
        result = AgentResult(
            success=exit_code == 0,
            exit_code=exit_code,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        logger.info(
            f"Agent in {options.workdir} exited with {exit_code} after {result.duration_ms / 1000:.1f}s"
        )
        return result
