"""Computed-field validation for PRD tasks.

``cost_ceiling``, ``estimated_iterations`` and ``revision_budget`` are
derived from ``complexity`` and the project's cost config. PRD authors (or
agents) may hand-edit them; these helpers report and repair drift.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from taskgate.core.config import CostConfig
from taskgate.prd.models import Task

TOLERANCE = 0.001

ComputedField = Literal["cost_ceiling", "estimated_iterations", "revision_budget"]


class ComputedFieldDrift(BaseModel):
    """Mismatch between a task's stored and expected computed value."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    field: ComputedField
    expected: float
    actual: float


class DriftReport(BaseModel):
    """Result of validating computed fields."""

    drifts: list[ComputedFieldDrift] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.drifts


def calculate_cost_ceiling(complexity: int, config: CostConfig) -> float:
    """complexity x cost_multiplier"""
    return complexity * config.cost_multiplier


def calculate_estimated_iterations(complexity: int, config: CostConfig) -> int:
    """base_iterations + complexity x iteration_multiplier"""
    return round(config.base_iterations + complexity * config.iteration_multiplier)


def calculate_revision_budget(cost_ceiling: float, config: CostConfig) -> float:
    """cost_ceiling x revision_budget_percent / 100"""
    return cost_ceiling * (config.revision_budget_percent / 100)


def _is_equal(a: float, b: float) -> bool:
    return abs(a - b) < TOLERANCE


def validate_computed_fields(task: Task, config: CostConfig) -> DriftReport:
    """
    Validate computed fields for a single task.

    The revision budget is checked against the task's stored cost ceiling,
    not the expected one, so a single wrong ceiling reports one drift.
    """
    drifts: list[ComputedFieldDrift] = []

    expected_ceiling = calculate_cost_ceiling(task.complexity, config)
    if not _is_equal(task.cost_ceiling, expected_ceiling):
        drifts.append(
            ComputedFieldDrift(
                task_id=task.id,
                field="cost_ceiling",
                expected=expected_ceiling,
                actual=task.cost_ceiling,
            )
        )

    expected_iterations = calculate_estimated_iterations(task.complexity, config)
    if not _is_equal(task.estimated_iterations, expected_iterations):
        drifts.append(
            ComputedFieldDrift(
                task_id=task.id,
                field="estimated_iterations",
                expected=expected_iterations,
                actual=task.estimated_iterations,
            )
        )

    expected_revision = calculate_revision_budget(task.cost_ceiling, config)
    if not _is_equal(task.revision_budget, expected_revision):
        drifts.append(
            ComputedFieldDrift(
                task_id=task.id,
                field="revision_budget",
                expected=expected_revision,
                actual=task.revision_budget,
            )
        )

    return DriftReport(drifts=drifts)


def validate_all_tasks(tasks: list[Task], config: CostConfig) -> DriftReport:
    """Validate computed fields across tasks, aggregating drifts."""
    drifts: list[ComputedFieldDrift] = []
    for task in tasks:
        drifts.extend(validate_computed_fields(task, config).drifts)
    return DriftReport(drifts=drifts)


def recalculate_computed_fields(task: Task, config: CostConfig) -> Task:
    """Return a copy of the task with computed fields recalculated."""
    ceiling = calculate_cost_ceiling(task.complexity, config)
    return task.model_copy(
        update={
            "cost_ceiling": ceiling,
            "estimated_iterations": calculate_estimated_iterations(task.complexity, config),
            "revision_budget": calculate_revision_budget(ceiling, config),
        }
    )


def recalculate_all_tasks(tasks: list[Task], config: CostConfig) -> list[Task]:
    """Return copies of all tasks with computed fields recalculated."""
    return [recalculate_computed_fields(task, config) for task in tasks]
