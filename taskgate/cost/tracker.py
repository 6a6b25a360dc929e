"""Budget tracking at task, phase and session scope.

Spend is monotonic: every observation is appended and never rolled back,
even when the task later fails. Violations are returned to the caller,
who decides whether to stop.
"""

import threading
from datetime import datetime, timezone
from typing import Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from taskgate.core.config import CostConfig
from taskgate.core.errors import (
    BudgetViolation,
    PhaseBudgetExceeded,
    SessionBudgetExceeded,
    TaskCeilingExceeded,
)
from taskgate.prd.models import Task

CostSource = Literal["json-usage", "duration-estimate", "minimum-fallback", "manual"]

# =============================================================================
# MODELS
# =============================================================================


class CostRecord(BaseModel):
    """One cost observation for a task attempt."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    phase_id: str
    engine: str = "claude-code"
    estimated_cost: float = Field(default=0.0, ge=0)
    actual_cost: float = Field(default=0.0, ge=0)
    iterations: int = Field(default=1, ge=0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: CostSource = "json-usage"


class CostTotals(BaseModel):
    """Estimated and actual totals for one grouping key."""

    estimated: float = 0.0
    actual: float = 0.0


class CostSummary(BaseModel):
    """Aggregated view over cost records."""

    total_estimated: float = 0.0
    total_actual: float = 0.0
    by_phase: dict[str, CostTotals] = Field(default_factory=dict)
    by_engine: dict[str, CostTotals] = Field(default_factory=dict)
    by_task: list[CostRecord] = Field(default_factory=list)

    @classmethod
    def from_records(cls, records: list[CostRecord]) -> "CostSummary":
        summary = cls(by_task=list(records))
        for record in records:
            summary.total_estimated += record.estimated_cost
            summary.total_actual += record.actual_cost
            for key, bucket in ((record.phase_id, summary.by_phase), (record.engine, summary.by_engine)):
                totals = bucket.setdefault(key, CostTotals())
                totals.estimated += record.estimated_cost
                totals.actual += record.actual_cost
        return summary


# =============================================================================
# TRACKER
# =============================================================================


class BudgetTracker:
    """
    Accumulates spend and checks task, phase and session ceilings.

    Checks compare cumulative actual cost and use strict ``>``: spending
    exactly the ceiling is allowed. A cap of None disables its check.

    Example:
        >>> tracker = BudgetTracker(CostConfig(session_budget_cap=50))
        >>> tracker.register_tasks(parsed.tasks)
        >>> violations = tracker.record("1a", "phase-1", actual_cost=16.0)
        >>> [v.scope for v in violations]
        ['task']
    """

    def __init__(
        self,
        config: CostConfig | None = None,
        phase_caps: dict[str, float] | None = None,
    ) -> None:
        self.config = config or CostConfig()
        self._phase_caps = dict(phase_caps or {})
        self._task_ceilings: dict[str, float] = {}
        self._records: list[CostRecord] = []
        self._task_actual: dict[str, float] = {}
        self._phase_actual: dict[str, float] = {}
        self._session_actual = 0.0
        self._warned: set[str] = set()
        self._lock = threading.Lock()

    # =========================================================================
    # SETUP
    # =========================================================================

    def register_task(self, task_id: str, ceiling: float) -> None:
        """Set the cost ceiling for a task."""
        with self._lock:
            self._task_ceilings[task_id] = ceiling

    def register_tasks(self, tasks: list[Task]) -> None:
        """Register the cost ceilings of all tasks."""
        for task in tasks:
            self.register_task(task.id, task.cost_ceiling)

    def set_phase_cap(self, phase_id: str, cap: float | None) -> None:
        """Override the configured cap for one phase (before overflow)."""
        with self._lock:
            if cap is None:
                self._phase_caps.pop(phase_id, None)
            else:
                self._phase_caps[phase_id] = cap

    def phase_cap(self, phase_id: str) -> float | None:
        """Effective cap for a phase, including the overflow allowance."""
        base = self._phase_caps.get(phase_id, self.config.phase_budget_cap)
        if base is None:
            return None
        return base * (1 + self.config.phase_budget_overflow)

    @property
    def session_cap(self) -> float | None:
        return self.config.session_budget_cap

    # =========================================================================
    # RECORDING
    # =========================================================================

    def record(
        self,
        task_id: str,
        phase_id: str,
        actual_cost: float,
        estimated_cost: float = 0.0,
        engine: str = "claude-code",
        iterations: int = 1,
        source: CostSource = "json-usage",
    ) -> list[BudgetViolation]:
        """
        Record a cost observation and check all ceilings.

        Args:
            task_id: Task the spend belongs to.
            phase_id: Owning phase.
            actual_cost: Spend observed for this attempt.
            estimated_cost: Estimate for this attempt.
            engine: Engine name for grouping.
            iterations: Agent iterations consumed.
            source: Where the actual cost came from.

        Returns:
            Violations in check order (task, phase, session); empty if none.
        """
        entry = CostRecord(
            task_id=task_id,
            phase_id=phase_id,
            engine=engine,
            estimated_cost=estimated_cost,
            actual_cost=actual_cost,
            iterations=iterations,
            source=source,
        )
        return self.add_record(entry)

    def add_record(self, entry: CostRecord) -> list[BudgetViolation]:
        """Append an existing record and check all ceilings."""
        with self._lock:
            self._records.append(entry)
            task_total = self._task_actual.get(entry.task_id, 0.0) + entry.actual_cost
            phase_total = self._phase_actual.get(entry.phase_id, 0.0) + entry.actual_cost
            self._task_actual[entry.task_id] = task_total
            self._phase_actual[entry.phase_id] = phase_total
            self._session_actual += entry.actual_cost
            session_total = self._session_actual

            violations: list[BudgetViolation] = []

            ceiling = self._task_ceilings.get(entry.task_id)
            if ceiling is not None:
                self._check_warning(f"task:{entry.task_id}", task_total, ceiling)
                if task_total > ceiling:
                    violations.append(TaskCeilingExceeded(entry.task_id, task_total, ceiling))

            phase_cap = self.phase_cap(entry.phase_id)
            if phase_cap is not None:
                self._check_warning(f"phase:{entry.phase_id}", phase_total, phase_cap)
                if phase_total > phase_cap:
                    violations.append(PhaseBudgetExceeded(entry.phase_id, phase_total, phase_cap))

            session_cap = self.session_cap
            if session_cap is not None:
                self._check_warning("session", session_total, session_cap)
                if session_total > session_cap:
                    violations.append(SessionBudgetExceeded(session_total, session_cap))

        logger.debug(
            f"Recorded ${entry.actual_cost:.2f} for task {entry.task_id} "
            f"(task ${task_total:.2f}, phase ${phase_total:.2f}, session ${session_total:.2f})"
        )
        for violation in violations:
            logger.warning(f"Budget violation: {violation}")

        return violations

    def _check_warning(self, scope: str, spent: float, cap: float) -> None:
        """Warn once per scope when spend crosses the warning threshold."""
        if scope in self._warned or cap <= 0:
            return
        if spent >= cap * self.config.budget_warning_threshold:
            self._warned.add(scope)
            logger.warning(
                f"Budget warning: {scope} at ${spent:.2f} of ${cap:.2f} "
                f"({spent / cap:.0%})"
            )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def task_cost(self, task_id: str) -> float:
        with self._lock:
            return self._task_actual.get(task_id, 0.0)

    def phase_cost(self, phase_id: str) -> float:
        with self._lock:
            return self._phase_actual.get(phase_id, 0.0)

    @property
    def session_total(self) -> float:
        with self._lock:
            return self._session_actual

    @property
    def records(self) -> list[CostRecord]:
        with self._lock:
            return list(self._records)

    def remaining_for_task(self, task_id: str) -> float | None:
        """Headroom under the task ceiling, or None if no ceiling is registered."""
        with self._lock:
            ceiling = self._task_ceilings.get(task_id)
            if ceiling is None:
                return None
            return ceiling - self._task_actual.get(task_id, 0.0)

    def summary(self) -> CostSummary:
        """Aggregate all records by phase and engine."""
        return CostSummary.from_records(self.records)
