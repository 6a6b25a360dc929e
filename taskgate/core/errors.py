"""Error taxonomy for taskgate.

Errors fall into families with different blast radius:

- ``PlanningError``: fatal to the whole plan, no partial schedule.
- ``TaskCheckError``: fatal to one task's pre-PR pipeline run.
- ``BudgetViolation``: reported by the budget tracker, never raised by it.
- ``PRDError`` / ``ConfigError``: loading persisted inputs.
"""

from typing import Any


class TaskGateError(Exception):
    """Base exception for taskgate errors."""

    pass


# =============================================================================
# PLANNING (FATAL TO PLAN)
# =============================================================================


class PlanningError(TaskGateError):
    """Scheduling cannot produce a plan."""

    pass


class DanglingDependencyError(PlanningError):
    """A task depends on an id that is not in the task set."""

    def __init__(self, task_id: str, missing_dependency: str) -> None:
        self.task_id = task_id
        self.missing_dependency = missing_dependency
        super().__init__(
            f"Invalid task dependency.\n"
            f"  Task: {task_id}\n"
            f"  Missing dependency: {missing_dependency}\n\n"
            "Ensure all task IDs in depends_on reference valid tasks."
        )


class CyclicDependencyError(PlanningError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(
            f"Cyclic dependency detected in task graph.\n"
            f"  Cycle: {' -> '.join(cycle)}\n\n"
            "Remove or restructure dependencies to eliminate the cycle."
        )


class UnschedulableTaskSetError(PlanningError):
    """Overlap-group ordering contradicts a dependency edge."""

    def __init__(self, first_task: str, second_task: str, cycle: list[str] | None = None) -> None:
        self.first_task = first_task
        self.second_task = second_task
        self.cycle = cycle or []
        detail = f"\n  Order cycle: {' -> '.join(self.cycle)}" if self.cycle else ""
        super().__init__(
            f"Task set cannot be scheduled.\n"
            f"  Tasks {first_task} and {second_task} share files, so {first_task} must run "
            f"before {second_task}, but the declared dependencies require the opposite."
            f"{detail}"
        )


class DuplicateTaskIdError(PlanningError):
    """Two tasks share the same id."""

    def __init__(self, duplicate_id: str) -> None:
        self.duplicate_id = duplicate_id
        super().__init__(
            f"Duplicate task ID found.\n  ID: {duplicate_id}\n\n"
            "Ensure all task IDs are unique within the PRD."
        )


# =============================================================================
# TASK CHECKS (FATAL TO TASK)
# =============================================================================


class TaskCheckError(TaskGateError):
    """A pre-PR check failed for a single task."""

    pass


class RebaseConflictError(TaskCheckError):
    """Rebase onto the target branch produced conflicts."""

    def __init__(self, conflict_files: list[str], target_branch: str) -> None:
        self.conflict_files = conflict_files
        self.target_branch = target_branch
        super().__init__(
            f'Rebase onto "{target_branch}" has conflicts in: {", ".join(conflict_files)}'
        )


class RebaseError(TaskCheckError):
    """Rebase failed for a reason other than conflicts."""

    def __init__(self, target_branch: str, reason: str) -> None:
        self.target_branch = target_branch
        self.reason = reason
        super().__init__(f'Rebase onto "{target_branch}" failed: {reason}')


class CommandCheckError(TaskCheckError):
    """A configured command exited non-zero."""

    check_type = "command"

    def __init__(self, command: str, exit_code: int, stderr: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(
            f"Pre-PR {self.check_type} check failed: `{command}` exited with code {exit_code}"
        )


class BuildFailureError(CommandCheckError):
    """Build command failed."""

    check_type = "build"


class TypecheckFailureError(CommandCheckError):
    """Typecheck command failed."""

    check_type = "typecheck"


class DiffError(TaskCheckError):
    """Changed files could not be computed."""

    pass


class BoundaryViolationError(TaskCheckError):
    """Forbidden (never-touch) files were modified."""

    def __init__(self, violations: list[tuple[str, str]]) -> None:
        self.violations = violations
        listing = ", ".join(f"{file} (pattern: {pattern})" for file, pattern in violations)
        super().__init__(f"Forbidden files modified: {listing}")


class TaskCancelledError(TaskCheckError):
    """The pipeline was cancelled between steps."""

    pass


# =============================================================================
# BUDGET
# =============================================================================


class BudgetViolation(TaskGateError):
    """A cost ceiling was exceeded.

    Violations are returned by the budget tracker rather than raised, so
    several can be observed from one cost update.
    """

    scope = "budget"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"scope": self.scope, "message": str(self)}


class TaskCeilingExceeded(BudgetViolation):
    """A task's cumulative actual cost exceeded its cost ceiling."""

    scope = "task"

    def __init__(self, task_id: str, current_cost: float, ceiling: float) -> None:
        self.task_id = task_id
        self.current_cost = current_cost
        self.ceiling = ceiling
        super().__init__(
            f"Task {task_id} exceeded cost ceiling: ${current_cost:.2f} > ${ceiling:.2f}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "task_id": self.task_id,
            "current_cost": self.current_cost,
            "ceiling": self.ceiling,
        }


class PhaseBudgetExceeded(BudgetViolation):
    """A phase's cumulative actual cost exceeded its cap."""

    scope = "phase"

    def __init__(self, phase_id: str, spent: float, cap: float) -> None:
        self.phase_id = phase_id
        self.spent = spent
        self.cap = cap
        super().__init__(f"Phase {phase_id} exceeded budget cap: ${spent:.2f} > ${cap:.2f}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "phase_id": self.phase_id, "spent": self.spent, "cap": self.cap}


class SessionBudgetExceeded(BudgetViolation):
    """Session-wide cumulative actual cost exceeded the session cap."""

    scope = "session"

    def __init__(self, total: float, cap: float) -> None:
        self.total = total
        self.cap = cap
        super().__init__(f"Session exceeded budget cap: ${total:.2f} > ${cap:.2f}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "total": self.total, "cap": self.cap}


class BudgetExceededError(TaskGateError):
    """Raised by callers that choose to stop on budget violations."""

    def __init__(self, violations: list[BudgetViolation]) -> None:
        self.violations = violations
        super().__init__("; ".join(str(v) for v in violations))


# =============================================================================
# STRUCTURED OUTPUT
# =============================================================================


class OutputValidationError(TaskGateError):
    """Agent output did not parse or validate (strict mode only)."""

    def __init__(self, message: str, errors: list[Any] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


# =============================================================================
# GIT
# =============================================================================


class GitCommandError(TaskGateError):
    """A git invocation exited non-zero."""

    def __init__(self, args: list[str], exit_code: int, stderr: str) -> None:
        self.git_args = args
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(
            f"git {' '.join(args)} failed with exit code {exit_code}: {stderr.strip()}"
        )


class WorktreeError(TaskGateError):
    """A task worktree could not be created."""

    def __init__(self, worktree_path: str, branch: str, reason: str) -> None:
        self.worktree_path = worktree_path
        self.branch = branch
        super().__init__(f"Failed to create worktree {worktree_path} on {branch}: {reason}")


# =============================================================================
# PRD & CONFIG LOADING
# =============================================================================


class PRDError(TaskGateError):
    """Base class for PRD loading errors."""

    pass


class PRDNotFoundError(PRDError):
    """PRD file does not exist."""

    def __init__(self, prd_path: str) -> None:
        self.prd_path = prd_path
        super().__init__(f"PRD file not found.\n  Path: {prd_path}")


class PRDReadError(PRDError):
    """PRD file exists but could not be read."""

    def __init__(self, prd_path: str, reason: str) -> None:
        self.prd_path = prd_path
        self.reason = reason
        super().__init__(f"Failed to read PRD file.\n  Path: {prd_path}\n  Reason: {reason}")


class PRDExtractionError(PRDError):
    """Metadata or task block could not be located."""

    def __init__(self, source_file: str, reason: str) -> None:
        self.source_file = source_file
        self.reason = reason
        super().__init__(
            f"Failed to extract tasks from PRD.\n  File: {source_file}\n  Reason: {reason}"
        )


class PRDParseError(PRDError):
    """YAML inside the PRD is malformed."""

    def __init__(self, source_file: str, reason: str) -> None:
        self.source_file = source_file
        self.reason = reason
        super().__init__(
            f"Invalid YAML syntax in PRD file.\n  File: {source_file}\n  Reason: {reason}"
        )


class PRDValidationError(PRDError):
    """PRD YAML parsed but failed schema validation."""

    def __init__(self, source_file: str, issues: list[tuple[str, str]]) -> None:
        self.source_file = source_file
        self.issues = issues
        listing = "\n".join(f"  - {path}: {message}" for path, message in issues)
        super().__init__(f"PRD validation failed.\n  File: {source_file}\n  Issues:\n{listing}")

    def get_field_paths(self) -> list[str]:
        """Get the field paths that failed validation."""
        return [path for path, _ in self.issues]


class ConfigError(TaskGateError):
    """Base class for project configuration errors."""

    pass


class ConfigNotFoundError(ConfigError):
    """Config file does not exist."""

    def __init__(self, config_path: str) -> None:
        self.config_path = config_path
        super().__init__(f"Configuration file not found: {config_path}")


class ConfigParseError(ConfigError):
    """Config YAML is malformed."""

    def __init__(self, config_path: str, reason: str) -> None:
        self.config_path = config_path
        self.reason = reason
        super().__init__(f"Invalid YAML in configuration {config_path}: {reason}")


class ConfigValidationError(ConfigError):
    """Config parsed but failed validation."""

    def __init__(self, config_path: str, issues: list[tuple[str, str]]) -> None:
        self.config_path = config_path
        self.issues = issues
        listing = "\n".join(f"  - {path}: {message}" for path, message in issues)
        super().__init__(f"Configuration validation failed: {config_path}\n{listing}")
