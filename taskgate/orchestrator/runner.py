"""
Phase orchestrator.

Plans a phase's tasks into waves and drives each task through agent
execution, cost accounting and the pre-PR pipeline. Wave members are
independent; they run concurrently up to ``max_parallel`` (1 by default).
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any

from loguru import logger

from taskgate.agents.engine import AgentEngine, AgentExecuteOptions, AgentResult, ClaudeCodeEngine
from taskgate.core.config import ProjectConfig, get_settings
from taskgate.core.errors import BudgetViolation, TaskCeilingExceeded
from taskgate.cost.estimate import CostEstimate, estimate_cost
from taskgate.cost.tracker import BudgetTracker, CostSummary
from taskgate.git.adapter import GitAdapter, task_branch_name, task_worktree_path
from taskgate.pipeline.checks import PrePRCheckOptions, PrePRCheckResult, ValidationPipeline
from taskgate.prd.models import Task
from taskgate.scheduling.scheduler import ExecutionPlan, Scheduler
from taskgate.structured_output.schemas import TaskResult
from taskgate.structured_output.validator import validate_output

WorktreeProvider = Callable[[Task], Awaitable[str]]
PromptBuilder = Callable[[Task], str]

# =============================================================================
# RESULT MODELS
# =============================================================================


class TaskStatus(str, Enum):
    """Final status of a task within a phase run."""

    PASSED = "passed"
    FAILED = "failed"
    BUDGET_EXCEEDED = "budget_exceeded"
    SKIPPED = "skipped"


class TaskOutcome:
    """Result of driving a single task."""

    def __init__(
        self,
        task_id: str,
        status: TaskStatus,
        wave_number: int,
        worktree: str | None = None,
        agent: AgentResult | None = None,
        report: TaskResult | None = None,
        cost: CostEstimate | None = None,
        checks: PrePRCheckResult | None = None,
        violations: list[BudgetViolation] | None = None,
        error: str | None = None,
    ):
        self.task_id = task_id
        self.status = status
        self.wave_number = wave_number
        self.worktree = worktree
        self.agent = agent
        self.report = report
        self.cost = cost
        self.checks = checks
        self.violations = violations or []
        self.error = error
        self.completed_at = datetime.now(timezone.utc).isoformat()

    @property
    def success(self) -> bool:
        return self.status is TaskStatus.PASSED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "wave_number": self.wave_number,
            "worktree": self.worktree,
            "cost": self.cost.model_dump() if self.cost else None,
            "failure_reason": (
                self.checks.failure_reason.value
                if self.checks and self.checks.failure_reason
                else None
            ),
            "caution_files": self.checks.caution_files if self.checks else [],
            "violations": [v.to_dict() for v in self.violations],
            "error": self.error,
            "completed_at": self.completed_at,
        }


class PhaseRunResult:
    """Result of running a whole phase."""

    def __init__(
        self,
        phase_id: str,
        plan: ExecutionPlan,
        outcomes: dict[str, TaskOutcome],
        cost_summary: CostSummary,
        violations: list[BudgetViolation],
        halt_reason: str | None = None,
    ):
        self.phase_id = phase_id
        self.plan = plan
        self.outcomes = outcomes
        self.cost_summary = cost_summary
        self.violations = violations
        self.halt_reason = halt_reason

    @property
    def halted(self) -> bool:
        return self.halt_reason is not None

    def _ids_with(self, status: TaskStatus) -> list[str]:
        return sorted(tid for tid, o in self.outcomes.items() if o.status is status)

    @property
    def completed_tasks(self) -> list[str]:
        return self._ids_with(TaskStatus.PASSED)

    @property
    def failed_tasks(self) -> list[str]:
        return sorted(
            tid
            for tid, o in self.outcomes.items()
            if o.status in (TaskStatus.FAILED, TaskStatus.BUDGET_EXCEEDED)
        )

    @property
    def skipped_tasks(self) -> list[str]:
        return self._ids_with(TaskStatus.SKIPPED)

    @property
    def success(self) -> bool:
        return not self.halted and len(self.completed_tasks) == len(self.outcomes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "phase_id": self.phase_id,
            "plan": self.plan.to_dict(),
            "outcomes": {tid: o.to_dict() for tid, o in sorted(self.outcomes.items())},
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "skipped_tasks": self.skipped_tasks,
            "total_cost": self.cost_summary.total_actual,
            "violations": [v.to_dict() for v in self.violations],
            "halt_reason": self.halt_reason,
        }


# =============================================================================
# PROMPTS
# =============================================================================


def build_task_prompt(task: Task, rules: list[str] | None = None) -> str:
    """Default agent prompt for a task, followed by the project rules."""
    lines = [f"# Task {task.id}: {task.title}", "", task.description.strip()]
    if task.success_criteria:
        lines += ["", "## Success criteria", *[f"- {c}" for c in task.success_criteria]]
    if task.files_affected:
        lines += ["", "## Files affected", *[f"- {f}" for f in task.files_affected]]
    if task.agent_context:
        lines += ["", "## Context", task.agent_context.strip()]
    if rules:
        lines += ["", "## Project rules", *[f"- {r}" for r in rules]]
    lines += [
        "",
        "When finished, print a JSON object with keys task_id, status, summary, "
        "files_modified, validation_checks and success_criteria_met.",
    ]
    return "\n".join(lines)


def git_worktree_provider(
    repo: str | Path,
    root: str | Path,
    phase_id: str,
    base_branch: str,
    git: GitAdapter | None = None,
) -> WorktreeProvider:
    """
    Provider giving each task its own branch and worktree.

    Task ``1a`` of ``phase-1`` gets branch ``taskgate/phase-1/1a``, created
    from ``base_branch``, checked out at ``<root>/phase-1/1a``. Worktrees are
    created one at a time.
    """
    git = git or GitAdapter()
    lock = asyncio.Lock()

    async def provide(task: Task) -> str:
        async with lock:
            path = await git.create_worktree(
                repo,
                task_worktree_path(root, phase_id, task.id),
                task_branch_name(phase_id, task.id),
                base=base_branch,
            )
        return str(path)

    return provide


def _agent_text(stdout: str) -> str:
    """Unwrap the ``result`` field of a CLI JSON envelope, if present."""
    try:
        envelope = json.loads(stdout)
    except json.JSONDecodeError:
        return stdout
    if isinstance(envelope, dict) and isinstance(envelope.get("result"), str):
        return envelope["result"]
    return stdout


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class PhaseOrchestrator:
    """
    Run one phase of tasks end to end.

    Example:
        >>> orchestrator = PhaseOrchestrator(
        ...     config=project_config,
        ...     phase_id="phase-1",
        ...     target_branch="feature/phase-1",
        ...     worktree_provider=git_worktree_provider(
        ...         ".", ".taskgate/worktrees", "phase-1", "feature/phase-1"
        ...     ),
        ... )
        >>> result = await orchestrator.run(parsed_prd.tasks)
        >>> result.completed_tasks
        ['1a', '1b']
    """

    def __init__(
        self,
        config: ProjectConfig,
        phase_id: str,
        target_branch: str,
        worktree_provider: WorktreeProvider,
        engine: AgentEngine | None = None,
        pipeline: ValidationPipeline | None = None,
        tracker: BudgetTracker | None = None,
        max_parallel: int | None = None,
        prompt_builder: PromptBuilder | None = None,
        agent_timeout_ms: int | None = None,
        command_timeout: float | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Project configuration (commands, boundaries, cost).
            phase_id: Phase being executed.
            target_branch: Branch every task is rebased onto.
            worktree_provider: Async callable returning a worktree path per task.
            engine: Agent engine (defaults to ClaudeCodeEngine on the
                configured model).
            pipeline: Pre-PR pipeline (defaults to real git and subprocesses).
            tracker: Budget tracker (defaults to one built from ``config.cost``).
            max_parallel: Concurrent tasks per wave (defaults to settings).
            prompt_builder: Task -> prompt (defaults to build_task_prompt with
                the project rules).
            agent_timeout_ms: Per-agent timeout (defaults to settings).
            command_timeout: Per-command timeout in seconds (defaults to settings).
        """
        settings = get_settings()
        self.config = config
        self.phase_id = phase_id
        self.target_branch = target_branch
        self.worktree_provider = worktree_provider
        self.engine = engine or ClaudeCodeEngine(
            claude_path=settings.taskgate_claude_path, model=config.cost.model_preference
        )
        self.pipeline = pipeline or ValidationPipeline()
        self.tracker = tracker or BudgetTracker(config.cost)
        self.max_parallel = max_parallel or settings.taskgate_max_parallel_tasks
        self.prompt_builder = prompt_builder or partial(build_task_prompt, rules=config.rules)
        self.agent_timeout_ms = agent_timeout_ms or settings.taskgate_agent_timeout * 1000
        self.command_timeout = command_timeout or float(settings.taskgate_command_timeout)

        self._semaphore = asyncio.Semaphore(self.max_parallel)
        self._cancel_event = asyncio.Event()
        self._halt_reason: str | None = None
        self._violations: list[BudgetViolation] = []

    def cancel(self) -> None:
        """Stop pipelines at their next step and dispatch no further waves."""
        self._cancel_event.set()
        self._halt_reason = self._halt_reason or "cancelled"

    async def run(self, tasks: list[Task]) -> PhaseRunResult:
        """
        Plan and execute all tasks.

        Raises:
            PlanningError: If the task set cannot be scheduled.
        """
        plan = Scheduler().plan(tasks)
        by_id = {task.id: task for task in tasks}
        self.tracker.register_tasks(tasks)
        outcomes: dict[str, TaskOutcome] = {}

        logger.info(
            f"Running phase {self.phase_id}: {len(tasks)} tasks in {plan.total_waves} waves "
            f"(max {self.max_parallel} parallel)"
        )

        for wave_number, wave in enumerate(plan.waves):
            if self._halt_reason is not None:
                for tid in wave:
                    outcomes[tid] = TaskOutcome(
                        tid, TaskStatus.SKIPPED, wave_number, error=f"Phase halted: {self._halt_reason}"
                    )
                continue

            runnable: list[Task] = []
            for tid in wave:
                blocked_by = [
                    dep for dep in by_id[tid].depends_on if not outcomes[dep].success
                ]
                if blocked_by:
                    logger.warning(f"Skipping {tid}: dependencies not passed ({', '.join(blocked_by)})")
                    outcomes[tid] = TaskOutcome(
                        tid,
                        TaskStatus.SKIPPED,
                        wave_number,
                        error=f"Dependencies not passed: {', '.join(blocked_by)}",
                    )
                else:
                    runnable.append(by_id[tid])

            logger.info(f"Starting wave {wave_number} with {len(runnable)} tasks")
            results = await asyncio.gather(
                *(self._run_with_semaphore(task, wave_number) for task in runnable),
                return_exceptions=True,
            )

            for task, result in zip(runnable, results, strict=True):
                if isinstance(result, BaseException):
                    if isinstance(result, asyncio.CancelledError):
                        raise result
                    logger.error(f"Task {task.id} raised: {result}")
                    outcomes[task.id] = TaskOutcome(
                        task.id, TaskStatus.FAILED, wave_number, error=str(result)
                    )
                else:
                    outcomes[task.id] = result

            passed = sum(1 for task in runnable if outcomes[task.id].success)
            logger.info(f"Wave {wave_number} complete: {passed}/{len(runnable)} passed")

        result = PhaseRunResult(
            phase_id=self.phase_id,
            plan=plan,
            outcomes=outcomes,
            cost_summary=self.tracker.summary(),
            violations=list(self._violations),
            halt_reason=self._halt_reason,
        )
        logger.info(
            f"Phase {self.phase_id} finished: {len(result.completed_tasks)} passed, "
            f"{len(result.failed_tasks)} failed, {len(result.skipped_tasks)} skipped, "
            f"${result.cost_summary.total_actual:.2f} spent"
        )
        return result

    async def _run_with_semaphore(self, task: Task, wave_number: int) -> TaskOutcome:
        async with self._semaphore:
            return await self.run_task(task, wave_number)

    async def run_task(self, task: Task, wave_number: int = 0) -> TaskOutcome:
        """Drive one task: agent, structured report, cost, pre-PR checks."""
        logger.info(f"Executing task: {task.id} - {task.title}")
        worktree = await self.worktree_provider(task)

        agent = await self.engine.execute(
            AgentExecuteOptions(
                prompt=self.prompt_builder(task),
                workdir=worktree,
                env={"TASKGATE_TASK_ID": task.id, "TASKGATE_PHASE_ID": self.phase_id},
                timeout_ms=self.agent_timeout_ms,
            )
        )

        report = validate_output(_agent_text(agent.stdout), TaskResult)
        if not report.success:
            logger.debug(f"Task {task.id}: no structured report recovered, keeping raw output")

        cost = estimate_cost(agent, self.config.cost)
        violations = self.tracker.record(
            task.id,
            self.phase_id,
            actual_cost=cost.cost,
            estimated_cost=cost.cost,
            engine=getattr(self.engine, "name", "agent"),
            source=cost.source,
        )
        self._handle_violations(violations)

        outcome_args: dict[str, Any] = {
            "worktree": worktree,
            "agent": agent,
            "report": report.data,
            "cost": cost,
            "violations": violations,
        }

        if any(isinstance(v, TaskCeilingExceeded) for v in violations):
            return TaskOutcome(
                task.id,
                TaskStatus.BUDGET_EXCEEDED,
                wave_number,
                error=str(next(v for v in violations if isinstance(v, TaskCeilingExceeded))),
                **outcome_args,
            )

        if not agent.success:
            return TaskOutcome(
                task.id,
                TaskStatus.FAILED,
                wave_number,
                error=f"Agent exited with code {agent.exit_code}",
                **outcome_args,
            )

        checks = await self.pipeline.run(
            PrePRCheckOptions.from_config(
                self.config, worktree, self.target_branch, self.command_timeout
            ),
            cancel_event=self._cancel_event,
        )
        status = TaskStatus.PASSED if checks.success else TaskStatus.FAILED
        return TaskOutcome(
            task.id,
            status,
            wave_number,
            checks=checks,
            error=checks.error_message,
            **outcome_args,
        )

    def _handle_violations(self, violations: list[BudgetViolation]) -> None:
        """Collect violations; phase or session overruns stop further waves."""
        self._violations.extend(violations)
        for violation in violations:
            if isinstance(violation, TaskCeilingExceeded):
                continue
            if self._halt_reason is None:
                self._halt_reason = str(violation)
                logger.error(f"Halting phase {self.phase_id}: {violation}")
