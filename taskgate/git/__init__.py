"""Git integration - rebase/diff adapter and file boundary matching."""

from taskgate.git.adapter import (
    GitAdapter,
    GitOutput,
    RebaseResult,
    VersionControl,
    task_branch_name,
    task_worktree_path,
)
from taskgate.git.boundaries import (
    BoundaryMatch,
    CautionResult,
    detect_caution_files,
    detect_never_touch_violations,
    matches_pattern,
)

__all__ = [
    "BoundaryMatch",
    "CautionResult",
    "GitAdapter",
    "GitOutput",
    "RebaseResult",
    "VersionControl",
    "detect_caution_files",
    "detect_never_touch_violations",
    "matches_pattern",
    "task_branch_name",
    "task_worktree_path",
]
