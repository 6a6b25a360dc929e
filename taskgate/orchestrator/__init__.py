"""Phase orchestration."""

from taskgate.orchestrator.runner import (
    PhaseOrchestrator,
    PhaseRunResult,
    TaskOutcome,
    TaskStatus,
    build_task_prompt,
    git_worktree_provider,
)

__all__ = [
    "PhaseOrchestrator",
    "PhaseRunResult",
    "TaskOutcome",
    "TaskStatus",
    "build_task_prompt",
    "git_worktree_provider",
]
