"""Git adapter - task worktrees, rebase and diff.

Conflicts are reported, never resolved: a conflicted rebase is aborted so
the worktree is returned to its pre-rebase state.
"""

import asyncio
from pathlib import Path
from typing import Protocol

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from taskgate.core.errors import GitCommandError, WorktreeError

CONFLICT_MARKERS = ("CONFLICT", "could not apply", "Resolve all conflicts")


class RebaseResult(BaseModel):
    """Outcome of rebasing onto a target branch."""

    model_config = ConfigDict(frozen=True)

    success: bool
    conflict_files: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflict_files)


class GitOutput(BaseModel):
    """Raw output of one git invocation."""

    model_config = ConfigDict(frozen=True)

    args: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class VersionControl(Protocol):
    """Version-control operations the pre-PR pipeline depends on."""

    async def rebase(self, target: str, cwd: str | Path) -> RebaseResult:
        ...

    async def diff(self, from_ref: str, to_ref: str, cwd: str | Path) -> list[str]:
        ...


def _split_lines(text: str) -> list[str]:
    return [line for line in text.strip().splitlines() if line]


class GitAdapter:
    """
    VersionControl implementation that shells out to ``git``.

    Example:
        >>> git = GitAdapter()
        >>> result = await git.rebase("main", "/worktrees/task-1a")
        >>> if not result.success:
        ...     print(result.conflict_files)
    """

    def __init__(self, git_path: str = "git", timeout: float | None = 120.0) -> None:
        self.git_path = git_path
        self.timeout = timeout

    async def run(self, args: list[str], cwd: str | Path, check: bool = True) -> GitOutput:
        """
        Run ``git <args>`` in ``cwd``.

        Args:
            args: Arguments after ``git``.
            cwd: Repository or worktree directory.
            check: Raise on non-zero exit.

        Raises:
            GitCommandError: If git exits non-zero (with ``check``), cannot be
                started, or times out.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.git_path,
                *args,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise GitCommandError(args, 127, str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise GitCommandError(args, -1, f"timed out after {self.timeout}s") from e
        except asyncio.CancelledError:
            process.kill()
            raise

        output = GitOutput(
            args=args,
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if check and not output.success:
            raise GitCommandError(args, output.exit_code, output.stderr)
        return output

    # =========================================================================
    # REBASE
    # =========================================================================

    async def rebase(self, target: str, cwd: str | Path) -> RebaseResult:
        """
        Rebase the current branch onto ``target``.

        On conflict the conflicting files are captured and the rebase is
        aborted. Non-conflict failures are returned with ``error`` set.
        """
        logger.debug(f"Rebasing {cwd} onto {target}")
        result = await self.run(["rebase", target], cwd, check=False)
        if result.success:
            return RebaseResult(success=True)

        is_conflict = any(marker in result.stderr for marker in CONFLICT_MARKERS) or (
            "CONFLICT" in result.stdout
        )
        if is_conflict:
            conflict_files = await self.get_conflict_files(cwd)
            await self.abort_rebase(cwd)
            logger.warning(f"Rebase onto {target} conflicted: {', '.join(conflict_files)}")
            return RebaseResult(success=False, conflict_files=conflict_files)

        error = result.stderr.strip() or result.stdout.strip()
        logger.warning(f"Rebase onto {target} failed: {error}")
        return RebaseResult(success=False, error=error)

    async def get_conflict_files(self, cwd: str | Path) -> list[str]:
        """Files with unmerged paths."""
        result = await self.run(["diff", "--name-only", "--diff-filter=U"], cwd, check=False)
        return _split_lines(result.stdout) if result.success else []

    async def is_rebase_in_progress(self, cwd: str | Path) -> bool:
        """True if ``rebase-merge`` or ``rebase-apply`` state exists."""
        for state_dir in ("rebase-merge", "rebase-apply"):
            result = await self.run(["rev-parse", "--git-path", state_dir], cwd, check=False)
            if not result.success:
                continue
            path = Path(result.stdout.strip())
            if not path.is_absolute():
                path = Path(cwd) / path
            if path.exists():
                return True
        return False

    async def abort_rebase(self, cwd: str | Path) -> bool:
        """
        Abort an in-progress rebase; no-op if none is in progress.

        Returns:
            False if git refused the abort; the failure is logged, not raised.
        """
        if not await self.is_rebase_in_progress(cwd):
            return True
        result = await self.run(["rebase", "--abort"], cwd, check=False)
        if not result.success:
            logger.warning(f"git rebase --abort failed in {cwd}: {result.stderr.strip()}")
        return result.success

    # =========================================================================
    # DIFF
    # =========================================================================

    async def diff(self, from_ref: str, to_ref: str, cwd: str | Path) -> list[str]:
        """
        Files changed on ``to_ref`` since it diverged from ``from_ref``.

        Raises:
            GitCommandError: If git fails (e.g. unknown ref).
        """
        result = await self.run(["diff", "--name-only", f"{from_ref}...{to_ref}"], cwd)
        return _split_lines(result.stdout)

    # =========================================================================
    # BRANCHES & WORKTREES
    # =========================================================================

    async def branch_exists(self, branch: str, cwd: str | Path) -> bool:
        """True if a local branch named ``branch`` exists."""
        result = await self.run(
            ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], cwd, check=False
        )
        return result.success

    async def list_worktrees(self, repo: str | Path) -> list[Path]:
        """Paths of every worktree attached to ``repo``, main worktree first."""
        result = await self.run(["worktree", "list", "--porcelain"], repo)
        return [
            Path(line.removeprefix("worktree "))
            for line in result.stdout.splitlines()
            if line.startswith("worktree ")
        ]

    async def create_worktree(
        self,
        repo: str | Path,
        path: str | Path,
        branch: str,
        base: str | None = None,
    ) -> Path:
        """
        Check out ``branch`` into a new worktree at ``path``.

        The branch is created from ``base`` (or HEAD) when it does not exist
        yet. An existing worktree at ``path`` is reused as is.

        Raises:
            WorktreeError: If git cannot add the worktree.
        """
        path = Path(path).resolve()
        if path in [p.resolve() for p in await self.list_worktrees(repo)]:
            logger.debug(f"Reusing worktree {path}")
            return path

        if await self.branch_exists(branch, repo):
            args = ["worktree", "add", str(path), branch]
        else:
            args = ["worktree", "add", "-b", branch, str(path)]
            if base:
                args.append(base)

        path.parent.mkdir(parents=True, exist_ok=True)
        result = await self.run(args, repo, check=False)
        if not result.success:
            raise WorktreeError(str(path), branch, result.stderr.strip())
        logger.info(f"Created worktree {path} on {branch}")
        return path

    async def remove_worktree(self, repo: str | Path, path: str | Path, force: bool = False) -> None:
        """
        Detach and delete a worktree.

        Raises:
            GitCommandError: If git refuses (e.g. uncommitted changes without ``force``).
        """
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))
        await self.run(args, repo)
        logger.debug(f"Removed worktree {path}")


def task_branch_name(phase_id: str, task_id: str) -> str:
    """Branch a task's agent commits to."""
    return f"taskgate/{phase_id}/{task_id}"


def task_worktree_path(root: str | Path, phase_id: str, task_id: str) -> Path:
    """Directory of a task's worktree under ``root``."""
    return Path(root) / phase_id / task_id
