"""Unit tests for budget tracking and cost estimation."""

import threading

import pytest

from taskgate.agents.engine import AgentResult
from taskgate.core.config import CostConfig
from taskgate.core.errors import (
    BudgetExceededError,
    PhaseBudgetExceeded,
    SessionBudgetExceeded,
    TaskCeilingExceeded,
)
from taskgate.cost.estimate import estimate_cost, parse_usage_cost
from taskgate.cost.tracker import BudgetTracker


class TestTaskCeiling:
    """Task-scope ceiling checks."""

    def test_equality_does_not_violate(self) -> None:
        tracker = BudgetTracker()
        tracker.register_task("1a", 9.0)

        assert tracker.record("1a", "phase-1", actual_cost=4.5) == []
        assert tracker.record("1a", "phase-1", actual_cost=4.5) == []
        assert tracker.task_cost("1a") == 9.0

    def test_exceeding_by_any_amount_violates(self) -> None:
        tracker = BudgetTracker()
        tracker.register_task("1a", 9.0)

        violations = tracker.record("1a", "phase-1", actual_cost=9.01)

        assert len(violations) == 1
        violation = violations[0]
        assert isinstance(violation, TaskCeilingExceeded)
        assert violation.task_id == "1a"
        assert violation.current_cost == pytest.approx(9.01)
        assert violation.ceiling == 9.0
        assert violation.to_dict()["scope"] == "task"

    def test_register_tasks(self, sample_tasks) -> None:
        tracker = BudgetTracker()
        tracker.register_tasks(sample_tasks)

        assert tracker.remaining_for_task("1a") == 9.0
        assert tracker.remaining_for_task("unknown") is None

    def test_unregistered_task_has_no_ceiling(self) -> None:
        tracker = BudgetTracker()

        assert tracker.record("1a", "phase-1", actual_cost=1000) == []


class TestPhaseAndSession:
    """Phase and session caps."""

    def test_phase_cap_includes_overflow(self) -> None:
        tracker = BudgetTracker(CostConfig(phase_budget_cap=100, phase_budget_overflow=0.1))

        assert tracker.phase_cap("phase-1") == pytest.approx(110)
        assert tracker.record("a", "phase-1", actual_cost=105) == []

        violations = tracker.record("b", "phase-1", actual_cost=6)
        assert len(violations) == 1
        assert isinstance(violations[0], PhaseBudgetExceeded)
        assert violations[0].phase_id == "phase-1"
        assert violations[0].spent == pytest.approx(111)

    def test_phase_override(self) -> None:
        tracker = BudgetTracker(CostConfig(phase_budget_overflow=0), phase_caps={"phase-2": 10})

        assert tracker.phase_cap("phase-1") is None
        assert tracker.record("a", "phase-1", actual_cost=50) == []
        assert [v.scope for v in tracker.record("b", "phase-2", actual_cost=11)] == ["phase"]

    def test_session_cap(self) -> None:
        tracker = BudgetTracker(CostConfig(session_budget_cap=20))

        assert tracker.record("a", "phase-1", actual_cost=10) == []
        assert tracker.record("b", "phase-2", actual_cost=10) == []

        violations = tracker.record("c", "phase-2", actual_cost=0.5)
        assert len(violations) == 1
        assert isinstance(violations[0], SessionBudgetExceeded)
        assert violations[0].total == pytest.approx(20.5)
        assert violations[0].cap == 20

    def test_all_violations_reported_in_order(self) -> None:
        tracker = BudgetTracker(
            CostConfig(phase_budget_cap=5, phase_budget_overflow=0, session_budget_cap=5)
        )
        tracker.register_task("1a", 3)

        violations = tracker.record("1a", "phase-1", actual_cost=6)

        assert [v.scope for v in violations] == ["task", "phase", "session"]
        error = BudgetExceededError(violations)
        assert "1a" in str(error)
        assert error.violations == violations

    def test_spend_is_never_rolled_back(self) -> None:
        tracker = BudgetTracker(CostConfig(session_budget_cap=1))
        tracker.record("1a", "phase-1", actual_cost=5)

        assert tracker.session_total == 5
        assert tracker.phase_cost("phase-1") == 5
        assert len(tracker.records) == 1

    def test_estimates_alone_never_violate(self) -> None:
        tracker = BudgetTracker(CostConfig(session_budget_cap=1))
        tracker.register_task("1a", 1)

        assert tracker.record("1a", "phase-1", actual_cost=0, estimated_cost=50) == []


class TestSummaryAndConcurrency:
    """Summaries and lock behaviour."""

    def test_summary_groups_by_phase_and_engine(self) -> None:
        tracker = BudgetTracker()
        tracker.record("1a", "phase-1", actual_cost=2, estimated_cost=3, engine="claude-code")
        tracker.record("1b", "phase-1", actual_cost=1, estimated_cost=1, engine="codex")
        tracker.record("2a", "phase-2", actual_cost=4, estimated_cost=5, engine="claude-code")

        summary = tracker.summary()

        assert summary.total_actual == 7
        assert summary.total_estimated == 9
        assert summary.by_phase["phase-1"].actual == 3
        assert summary.by_phase["phase-2"].estimated == 5
        assert summary.by_engine["claude-code"].actual == 6
        assert summary.by_engine["codex"].actual == 1
        assert [r.task_id for r in summary.by_task] == ["1a", "1b", "2a"]

    def test_concurrent_updates_are_serialized(self) -> None:
        tracker = BudgetTracker()

        def spend() -> None:
            for _ in range(200):
                tracker.record("1a", "phase-1", actual_cost=0.01)

        threads = [threading.Thread(target=spend) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(tracker.records) == 1600
        assert tracker.session_total == pytest.approx(16.0)
        assert tracker.task_cost("1a") == pytest.approx(16.0)


class TestEstimateCost:
    """Tests for estimate_cost."""

    def test_json_usage(self) -> None:
        result = AgentResult(success=True, exit_code=0, stdout='{"total_cost_usd": 1.25}', duration_ms=60_000)

        estimate = estimate_cost(result)

        assert estimate.cost == 1.25
        assert estimate.source == "json-usage"
        assert estimate.confidence == "high"

    def test_stream_json_last_line(self) -> None:
        stdout = '{"type": "assistant"}\nnot json\n{"type": "result", "cost_usd": 0.3}\n'

        assert parse_usage_cost(stdout) == 0.3

    def test_duration_estimate(self) -> None:
        result = AgentResult(success=True, exit_code=0, stdout="plain text", duration_ms=120_000)

        estimate = estimate_cost(result, CostConfig(fallback_cost_per_minute=0.5))

        assert estimate.cost == pytest.approx(1.0)
        assert estimate.source == "duration-estimate"
        assert estimate.confidence == "low"

    def test_minimum_fallback(self) -> None:
        result = AgentResult(success=False, exit_code=127, stdout="", duration_ms=0)

        estimate = estimate_cost(result)

        assert estimate.cost == 0
        assert estimate.source == "minimum-fallback"
        assert estimate.confidence == "none"
