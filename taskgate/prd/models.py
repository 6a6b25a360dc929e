"""Pydantic models for PRD tasks.

A PRD (product requirements document) is a markdown file with YAML front
matter and an ``## Agent Tasks`` YAML block. Tasks are frozen once loaded.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskPriority(str, Enum):
    """MoSCoW priority of a task."""

    MUST = "must"
    SHOULD = "should"
    COULD = "could"


class PRDStatus(str, Enum):
    """Lifecycle status of a PRD."""

    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETE = "complete"


class ScopeType(str, Enum):
    """Kind of change a PRD describes."""

    NEW_FEATURE = "new-feature"
    REFACTOR = "refactor"
    MIGRATION = "migration"
    INTEGRATION = "integration"


# =============================================================================
# TASK
# =============================================================================


class Task(BaseModel):
    """A single unit of agent work.

    Example:
        >>> task = Task(
        ...     id="1a",
        ...     title="Add user table",
        ...     description="Create the users migration",
        ...     complexity=3,
        ...     cost_ceiling=9,
        ...     estimated_iterations=14,
        ...     files_affected=["db/migrations/001_users.sql"],
        ... )
        >>> task.is_ready({"1"})
        True
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1, description="Task identifier, unique within the phase")
    title: str = Field(..., min_length=1, max_length=255, description="Task title")
    description: str = Field(..., description="Detailed task description")
    success_criteria: tuple[str, ...] = Field(
        default=(),
        description="Checks that define done",
    )
    files_affected: tuple[str, ...] = Field(
        default=(),
        description="Paths the task is expected to touch",
    )
    complexity: int = Field(..., ge=1, le=10, description="Complexity score")
    cost_ceiling: float = Field(..., ge=0, description="Maximum spend for this task")
    estimated_iterations: int = Field(default=0, ge=0, description="Expected agent iterations")
    depends_on: tuple[str, ...] = Field(
        default=(),
        description="Task IDs this task depends on",
    )
    revision_budget: float = Field(default=0, ge=0, description="Spend reserved for revisions")
    priority: TaskPriority = Field(default=TaskPriority.SHOULD)
    assigned_to: str | None = Field(default=None)
    agent_context: str | None = Field(default=None)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """YAML reads ids like ``1`` as integers."""
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("depends_on", mode="before")
    @classmethod
    def coerce_dependency_ids(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, (list, tuple)):
            return tuple(str(d) if isinstance(d, int) else d for d in v)
        return v

    @field_validator("success_criteria", "files_affected", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return () if v is None else v

    def is_ready(self, completed_tasks: set[str]) -> bool:
        """Check if all dependencies are satisfied.

        Args:
            completed_tasks: Set of completed task IDs.

        Returns:
            True if all dependencies are in completed_tasks.
        """
        return all(dep in completed_tasks for dep in self.depends_on)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return self.model_dump(mode="json")


# =============================================================================
# PRD
# =============================================================================


class PRDMetadata(BaseModel):
    """Front matter of a PRD file."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    feature_name: str = Field(..., min_length=1)
    feature_slug: str = Field(..., min_length=1)
    owner: str = Field(default="")
    status: PRDStatus = Field(default=PRDStatus.DRAFT)
    created_date: str = Field(default="")
    target_date: str | None = Field(default=None)
    phase: str = Field(..., min_length=1, description="Phase identifier, e.g. phase-1")
    scope_type: ScopeType = Field(default=ScopeType.NEW_FEATURE)
    github_project: str | None = Field(default=None)
    links: list[str] = Field(default_factory=list)
    checkpoint_refs: list[str] = Field(default_factory=list)

    @field_validator("created_date", "target_date", mode="before")
    @classmethod
    def dates_as_text(cls, v: Any) -> Any:
        """YAML parses bare dates into ``date`` objects."""
        if v is None or isinstance(v, str):
            return v
        return str(v)


class TasksBlock(BaseModel):
    """The YAML mapping under ``## Agent Tasks``."""

    tasks: list[Task] = Field(..., min_length=1)


class ParsedPRD(BaseModel):
    """Result of parsing a PRD file."""

    model_config = ConfigDict(frozen=True)

    metadata: PRDMetadata
    tasks: list[Task]
    source_file: str

    @property
    def phase_id(self) -> str:
        """Phase the tasks belong to."""
        return self.metadata.phase

    def get_task(self, task_id: str) -> Task | None:
        """Get a task by ID."""
        return next((t for t in self.tasks if t.id == task_id), None)
