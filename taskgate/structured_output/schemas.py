"""Schemas for structured agent reports.

Agents may emit either snake_case or camelCase keys; both are accepted.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _AgentSchema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    SUGGESTION = "suggestion"
    INFO = "info"


class CompletionStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


# =============================================================================
# TASK RESULT
# =============================================================================


class FileModification(_AgentSchema):
    path: str
    modification_type: str = Field(..., pattern="^(created|modified|deleted|renamed)$")
    old_path: str | None = None
    lines_added: int | None = Field(default=None, ge=0)
    lines_removed: int | None = Field(default=None, ge=0)


class ValidationCheck(_AgentSchema):
    name: str
    passed: bool
    output: str | None = None
    duration_ms: int | None = Field(default=None, ge=0)


class CriterionResult(_AgentSchema):
    criterion: str
    met: bool
    evidence: str | None = None


class TaskIssue(_AgentSchema):
    severity: Severity
    message: str
    file: str | None = None


class TaskResult(_AgentSchema):
    """Completion report an agent prints at the end of a task run.

    Example:
        >>> result = validate_output(stdout, TaskResult)
        >>> result.data.status
        <CompletionStatus.COMPLETED: 'completed'>
    """

    task_id: str
    status: CompletionStatus
    summary: str
    files_modified: list[FileModification] = Field(default_factory=list)
    validation_checks: list[ValidationCheck] = Field(default_factory=list)
    success_criteria_met: bool
    criteria_results: list[CriterionResult] | None = None
    issues: list[TaskIssue] | None = None
    recommendations: list[str] | None = None


# =============================================================================
# REVIEW RESULT
# =============================================================================


class ReviewIssueCategory(str, Enum):
    MISSING_ACCEPTANCE_CRITERIA = "missing-acceptance-criteria"
    HIGH_COMPLEXITY_NOT_SPLIT = "high-complexity-not-split"
    CONFLICTING_REQUIREMENTS = "conflicting-requirements"
    MISSING_EDGE_CASES = "missing-edge-cases"
    UNCLEAR_SCOPE = "unclear-scope"
    INSUFFICIENT_CONTEXT = "insufficient-context"
    SECURITY_CONCERN = "security-concern"
    PERFORMANCE_CONCERN = "performance-concern"
    MAINTAINABILITY_CONCERN = "maintainability-concern"
    OTHER = "other"


class ReviewIssue(_AgentSchema):
    severity: Severity
    category: ReviewIssueCategory
    description: str
    location: str
    suggestion: str | None = None
    affected_files: list[str] | None = None


class ReviewResult(_AgentSchema):
    """Reviewer verdict on a PRD or a task's changes."""

    score: int = Field(..., ge=1, le=10)
    issues: list[ReviewIssue] = Field(default_factory=list)
    summary: str
    recommendations: list[str] = Field(default_factory=list)
    ready_for_finalization: bool
    strengths: list[str] | None = None
