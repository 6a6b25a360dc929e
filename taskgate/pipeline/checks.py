"""Pre-PR validation pipeline.

A finite-state pipeline run against one task's worktree:

    START -> REBASE -> BUILD -> TYPECHECK -> DIFF -> SAFETY_SCAN -> DONE

Any non-terminal state may move to FAILED. Failures are returned as data
on :class:`PrePRCheckResult`; callers that prefer exceptions use
:meth:`PrePRCheckResult.raise_for_failure`.
"""

import asyncio
import time
from enum import Enum
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from taskgate.core.config import ProjectConfig
from taskgate.core.errors import (
    BoundaryViolationError,
    BuildFailureError,
    DiffError,
    GitCommandError,
    RebaseConflictError,
    RebaseError,
    TaskCancelledError,
    TypecheckFailureError,
)
from taskgate.git.adapter import GitAdapter, RebaseResult, VersionControl
from taskgate.git.boundaries import BoundaryMatch, detect_caution_files, detect_never_touch_violations
from taskgate.pipeline.runner import CommandResult, ProcessRunner, SubprocessRunner

# =============================================================================
# STATES & OPTIONS
# =============================================================================


class PipelineState(str, Enum):
    """Pipeline states."""

    START = "start"
    REBASE = "rebase"
    BUILD = "build"
    TYPECHECK = "typecheck"
    DIFF = "diff"
    SAFETY_SCAN = "safety_scan"
    DONE = "done"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Why a pipeline run ended in FAILED."""

    REBASE_CONFLICT = "rebase_conflict"
    REBASE_ERROR = "rebase_error"
    BUILD_FAILURE = "build_failure"
    TYPECHECK_FAILURE = "typecheck_failure"
    DIFF_FAILURE = "diff_failure"
    BOUNDARY_VIOLATION = "boundary_violation"
    CANCELLED = "cancelled"


class PrePRCheckOptions(BaseModel):
    """Inputs for one pipeline run."""

    worktree_path: str = Field(..., description="Task worktree directory")
    target_branch: str = Field(..., description="Branch to rebase onto and diff against")
    build_command: str = Field(..., description="Build command")
    typecheck_command: str | None = Field(default=None, description="Typecheck command; None skips")
    never_touch_patterns: list[str] = Field(default_factory=list)
    require_review_patterns: list[str] = Field(default_factory=list)
    command_timeout: float | None = Field(default=None, gt=0, description="Seconds per command")

    @classmethod
    def from_config(
        cls,
        config: ProjectConfig,
        worktree_path: str | Path,
        target_branch: str,
        command_timeout: float | None = None,
    ) -> "PrePRCheckOptions":
        """Build options from the project's commands and boundaries."""
        return cls(
            worktree_path=str(worktree_path),
            target_branch=target_branch,
            build_command=config.commands.build,
            typecheck_command=config.commands.typecheck,
            never_touch_patterns=list(config.boundaries.never_touch),
            require_review_patterns=list(config.boundaries.require_review),
            command_timeout=command_timeout,
        )


# =============================================================================
# RESULT
# =============================================================================


class PrePRCheckResult(BaseModel):
    """Outcome of a pipeline run.

    Fields for steps that did not run are left at their empty defaults.
    """

    success: bool
    state: PipelineState
    failure_reason: FailureReason | None = None
    rebase: RebaseResult | None = None
    build: CommandResult | None = None
    typecheck: CommandResult | None = None
    typecheck_skipped: bool = False
    changed_files: list[str] = Field(default_factory=list)
    caution_files: list[str] = Field(default_factory=list)
    never_touch_violations: list[BoundaryMatch] = Field(default_factory=list)
    error_message: str | None = None
    step_durations_ms: dict[str, int] = Field(default_factory=dict)

    @property
    def requires_review(self) -> bool:
        return bool(self.caution_files)

    def raise_for_failure(self, target_branch: str = "target") -> None:
        """
        Raise the exception matching ``failure_reason``; no-op on success.

        Raises:
            RebaseConflictError, RebaseError, BuildFailureError,
            TypecheckFailureError, DiffError, BoundaryViolationError,
            TaskCancelledError
        """
        if self.success:
            return

        reason = self.failure_reason
        if reason is FailureReason.REBASE_CONFLICT:
            raise RebaseConflictError(self.rebase.conflict_files if self.rebase else [], target_branch)
        if reason is FailureReason.REBASE_ERROR:
            raise RebaseError(target_branch, self.error_message or "unknown error")
        if reason is FailureReason.BUILD_FAILURE and self.build is not None:
            raise BuildFailureError(self.build.command, self.build.exit_code, self.build.stderr)
        if reason is FailureReason.TYPECHECK_FAILURE and self.typecheck is not None:
            raise TypecheckFailureError(
                self.typecheck.command, self.typecheck.exit_code, self.typecheck.stderr
            )
        if reason is FailureReason.BOUNDARY_VIOLATION:
            raise BoundaryViolationError([(v.file, v.pattern) for v in self.never_touch_violations])
        if reason is FailureReason.CANCELLED:
            raise TaskCancelledError(self.error_message or "Pipeline cancelled")
        raise DiffError(self.error_message or "Pre-PR checks failed")


# =============================================================================
# PIPELINE
# =============================================================================


class ValidationPipeline:
    """
    Runs the pre-PR steps against a worktree.

    Collaborators are injected so tests can substitute fakes.

    Example:
        >>> pipeline = ValidationPipeline()
        >>> result = await pipeline.run(options)
        >>> result.state, result.failure_reason
        (<PipelineState.DONE: 'done'>, None)
    """

    def __init__(
        self,
        runner: ProcessRunner | None = None,
        vcs: VersionControl | None = None,
    ) -> None:
        self.runner = runner or SubprocessRunner()
        self.vcs = vcs or GitAdapter()

    async def run(
        self,
        options: PrePRCheckOptions,
        cancel_event: asyncio.Event | None = None,
    ) -> PrePRCheckResult:
        """
        Execute the pipeline.

        Args:
            options: Commands, target branch and boundary patterns.
            cancel_event: When set, the pipeline stops before the next step.

        Returns:
            PrePRCheckResult in state DONE or FAILED.
        """
        run = _PipelineRun(options, cancel_event)
        cwd = options.worktree_path

        # REBASE
        if run.enter(PipelineState.REBASE):
            return run.cancelled()
        try:
            rebase = await self.vcs.rebase(options.target_branch, cwd)
        except GitCommandError as e:
            run.finish_step()
            return run.fail(FailureReason.REBASE_ERROR, f"Rebase failed: {e}")
        run.finish_step()
        run.fields["rebase"] = rebase
        if not rebase.success:
            if rebase.conflict_files:
                return run.fail(
                    FailureReason.REBASE_CONFLICT,
                    f"Rebase conflicts in: {', '.join(rebase.conflict_files)}",
                )
            return run.fail(FailureReason.REBASE_ERROR, f"Rebase failed: {rebase.error or 'Unknown error'}")

        # BUILD
        if run.enter(PipelineState.BUILD):
            return run.cancelled()
        build = await self.runner.run(options.build_command, cwd, options.command_timeout)
        run.finish_step()
        run.fields["build"] = build
        if not build.success:
            return run.fail(FailureReason.BUILD_FAILURE, f"Build failed with exit code {build.exit_code}")

        # TYPECHECK
        if run.enter(PipelineState.TYPECHECK):
            return run.cancelled()
        if options.typecheck_command:
            typecheck = await self.runner.run(options.typecheck_command, cwd, options.command_timeout)
            run.finish_step()
            run.fields["typecheck"] = typecheck
            if not typecheck.success:
                return run.fail(
                    FailureReason.TYPECHECK_FAILURE,
                    f"Typecheck failed with exit code {typecheck.exit_code}",
                )
        else:
            run.finish_step()
            run.fields["typecheck_skipped"] = True
            logger.debug("No typecheck command configured, skipping")

        # DIFF
        if run.enter(PipelineState.DIFF):
            return run.cancelled()
        try:
            changed_files = await self.vcs.diff(options.target_branch, "HEAD", cwd)
        except GitCommandError as e:
            run.finish_step()
            return run.fail(FailureReason.DIFF_FAILURE, f"Could not compute changed files: {e}")
        run.finish_step()
        run.fields["changed_files"] = changed_files

        # SAFETY_SCAN
        if run.enter(PipelineState.SAFETY_SCAN):
            return run.cancelled()
        caution = detect_caution_files(changed_files, options.require_review_patterns)
        violations = detect_never_touch_violations(changed_files, options.never_touch_patterns)
        run.finish_step()
        run.fields["caution_files"] = caution.caution_files
        run.fields["never_touch_violations"] = violations
        if caution.caution_files:
            logger.info(f"Files requiring review: {', '.join(caution.caution_files)}")
        if violations:
            return run.fail(
                FailureReason.BOUNDARY_VIOLATION,
                "Forbidden files modified: "
                + ", ".join(f"{v.file} (pattern: {v.pattern})" for v in violations),
            )

        return run.done()


class _PipelineRun:
    """Mutable bookkeeping for a single pipeline execution."""

    def __init__(self, options: PrePRCheckOptions, cancel_event: asyncio.Event | None) -> None:
        self.options = options
        self.cancel_event = cancel_event
        self.state = PipelineState.START
        self.fields: dict = {}
        self.durations: dict[str, int] = {}
        self._step_started = 0.0

    def enter(self, state: PipelineState) -> bool:
        """Transition to ``state``; returns True if cancellation was requested."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        logger.debug(f"[{self.options.worktree_path}] {self.state.value} -> {state.value}")
        self.state = state
        self._step_started = time.monotonic()
        return False

    def finish_step(self) -> None:
        self.durations[self.state.value] = int((time.monotonic() - self._step_started) * 1000)

    def fail(self, reason: FailureReason, message: str) -> PrePRCheckResult:
        logger.warning(
            f"[{self.options.worktree_path}] Pre-PR checks failed at {self.state.value}: {message}"
        )
        return PrePRCheckResult(
            success=False,
            state=PipelineState.FAILED,
            failure_reason=reason,
            error_message=message,
            step_durations_ms=self.durations,
            **self.fields,
        )

    def cancelled(self) -> PrePRCheckResult:
        return self.fail(FailureReason.CANCELLED, f"Pipeline cancelled after {self.state.value}")

    def done(self) -> PrePRCheckResult:
        self.state = PipelineState.DONE
        logger.info(f"[{self.options.worktree_path}] Pre-PR checks passed")
        return PrePRCheckResult(
            success=True,
            state=PipelineState.DONE,
            step_durations_ms=self.durations,
            **self.fields,
        )


async def run_pre_pr_checks(
    options: PrePRCheckOptions,
    runner: ProcessRunner | None = None,
    vcs: VersionControl | None = None,
    cancel_event: asyncio.Event | None = None,
) -> PrePRCheckResult:
    """Run the pre-PR pipeline with default or injected collaborators."""
    return await ValidationPipeline(runner=runner, vcs=vcs).run(options, cancel_event)


def format_command_result(result: CommandResult, verbose: bool = False) -> str:
    """
    Render a command result for display.

    Failed results (or any result when ``verbose``) include the first 10
    lines of stderr; stdout is shown only when ``verbose``.
    """
    status = "✓" if result.success else "✗"
    lines = [f"{status} {result.command} ({result.duration_ms}ms)"]

    if not result.success or verbose:
        if result.stderr.strip():
            lines.append("  stderr:")
            lines.extend(f"    {line}" for line in result.stderr.strip().splitlines()[:10])
        if verbose and result.stdout.strip():
            lines.append("  stdout:")
            lines.extend(f"    {line}" for line in result.stdout.strip().splitlines()[:10])

    return "\n".join(lines)
