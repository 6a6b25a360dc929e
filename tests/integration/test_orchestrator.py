"""Integration tests for the phase orchestrator."""

import json
from pathlib import Path
from typing import Any

import pytest

from taskgate.agents.engine import AgentExecuteOptions, AgentResult, ClaudeCodeEngine
from taskgate.core.config import CostConfig
from taskgate.core.errors import PlanningError, WorktreeError
from taskgate.orchestrator.runner import PhaseOrchestrator, TaskStatus, build_task_prompt
from taskgate.pipeline.checks import ValidationPipeline

pytestmark = pytest.mark.integration


def _report(task_id: str) -> str:
    payload = {
        "task_id": task_id,
        "status": "completed",
        "summary": f"Finished {task_id}",
        "files_modified": [],
        "validation_checks": [],
        "success_criteria_met": True,
    }
    return f"Done.\n```json\n{json.dumps(payload)}\n```"


class FakeEngine:
    """Agent engine returning a CLI-style JSON envelope with a cost."""

    name = "fake"

    def __init__(self, costs: dict[str, float] | None = None, failing: set[str] | None = None) -> None:
        self.costs = costs or {}
        self.failing = failing or set()
        self.calls: list[AgentExecuteOptions] = []

    async def execute(self, options: AgentExecuteOptions) -> AgentResult:
        self.calls.append(options)
        task_id = options.env["TASKGATE_TASK_ID"]
        envelope = {"total_cost_usd": self.costs.get(task_id, 1.0), "result": _report(task_id)}
        if task_id in self.failing:
            return AgentResult(success=False, exit_code=2, stdout=json.dumps(envelope), stderr="crash")
        return AgentResult(success=True, exit_code=0, stdout=json.dumps(envelope), duration_ms=1000)


@pytest.fixture
def worktrees(tmp_path: Path) -> Any:
    async def provider(task) -> str:
        return str(tmp_path / "worktrees" / task.id)

    return provider


@pytest.fixture
def build_orchestrator(project_config, worktrees, make_runner, make_vcs):
    """Factory for orchestrators wired to fakes."""

    def _build(engine: FakeEngine, vcs=None, config=None, **kwargs: Any) -> PhaseOrchestrator:
        pipeline = ValidationPipeline(runner=make_runner(), vcs=vcs or make_vcs())
        return PhaseOrchestrator(
            config=config or project_config,
            phase_id="phase-1",
            target_branch="feature/phase-1",
            worktree_provider=worktrees,
            engine=engine,
            pipeline=pipeline,
            agent_timeout_ms=60_000,
            command_timeout=30,
            **kwargs,
        )

    return _build


class TestPhaseOrchestrator:
    """End-to-end phase runs with a fake agent and fake git."""

    @pytest.mark.asyncio
    async def test_all_tasks_pass(self, build_orchestrator, sample_tasks) -> None:
        engine = FakeEngine()
        orchestrator = build_orchestrator(engine, max_parallel=2)

        result = await orchestrator.run(sample_tasks)

        assert result.success
        assert result.completed_tasks == ["1a", "1b", "1c", "2a"]
        assert result.plan.waves == [["1a", "2a"], ["1b"], ["1c"]]
        assert result.cost_summary.total_actual == pytest.approx(4.0)
        assert result.cost_summary.by_engine["fake"].actual == pytest.approx(4.0)
        assert result.outcomes["1b"].report.task_id == "1b"
        assert result.outcomes["1c"].wave_number == 2

    @pytest.mark.asyncio
    async def test_agent_receives_task_context(self, build_orchestrator, sample_tasks, tmp_path) -> None:
        engine = FakeEngine()

        await build_orchestrator(engine).run(sample_tasks)

        first = engine.calls[0]
        assert first.env == {"TASKGATE_TASK_ID": "1a", "TASKGATE_PHASE_ID": "phase-1"}
        assert first.workdir == str(tmp_path / "worktrees" / "1a")
        assert first.timeout_ms == 60_000
        assert first.prompt == build_task_prompt(sample_tasks[0])

    @pytest.mark.asyncio
    async def test_failed_agent_skips_dependents(self, build_orchestrator, sample_tasks) -> None:
        engine = FakeEngine(failing={"1a"})

        result = await build_orchestrator(engine).run(sample_tasks)

        assert not result.success
        assert result.failed_tasks == ["1a"]
        assert result.completed_tasks == ["2a"]
        assert result.skipped_tasks == ["1b", "1c"]
        assert result.outcomes["1a"].error == "Agent exited with code 2"
        assert "1a" in result.outcomes["1b"].error
        # Spend is recorded even for failed runs.
        assert result.cost_summary.total_actual == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_task_ceiling_skips_checks(self, build_orchestrator, sample_tasks, make_vcs) -> None:
        vcs = make_vcs()
        engine = FakeEngine(costs={"2a": 9.5})

        result = await build_orchestrator(engine, vcs=vcs).run(sample_tasks)

        outcome = result.outcomes["2a"]
        assert outcome.status is TaskStatus.BUDGET_EXCEEDED
        assert outcome.checks is None
        assert [v.scope for v in outcome.violations] == ["task"]
        assert not result.halted
        assert result.completed_tasks == ["1a", "1b", "1c"]
        assert vcs.calls.count("rebase feature/phase-1") == 3

    @pytest.mark.asyncio
    async def test_session_cap_halts_later_waves(
        self, build_orchestrator, sample_tasks, project_config
    ) -> None:
        config = project_config.model_copy(update={"cost": CostConfig(session_budget_cap=1.5)})

        result = await build_orchestrator(FakeEngine(), config=config).run(sample_tasks)

        assert result.halted
        assert not result.success
        assert result.completed_tasks == ["1a", "2a"]
        assert result.skipped_tasks == ["1b", "1c"]
        assert result.outcomes["1b"].error.startswith("Phase halted: Session exceeded budget cap")
        assert [v.scope for v in result.violations] == ["session"]

    @pytest.mark.asyncio
    async def test_boundary_violation_fails_task(self, build_orchestrator, sample_tasks, make_vcs) -> None:
        vcs = make_vcs(changed_files=["src/api/users.ts", "bun.lock"])

        result = await build_orchestrator(FakeEngine(), vcs=vcs).run(sample_tasks[:1])

        outcome = result.outcomes["1a"]
        assert outcome.status is TaskStatus.FAILED
        assert outcome.to_dict()["failure_reason"] == "boundary_violation"
        assert "bun.lock" in outcome.error

    @pytest.mark.asyncio
    async def test_cancel_before_run_skips_everything(self, build_orchestrator, sample_tasks) -> None:
        engine = FakeEngine()
        orchestrator = build_orchestrator(engine)
        orchestrator.cancel()

        result = await orchestrator.run(sample_tasks)

        assert engine.calls == []
        assert result.skipped_tasks == ["1a", "1b", "1c", "2a"]
        assert result.halt_reason == "cancelled"

    @pytest.mark.asyncio
    async def test_planning_error_propagates(self, build_orchestrator, make_task) -> None:
        tasks = [make_task("a", depends_on=["b"]), make_task("b", depends_on=["a"])]

        with pytest.raises(PlanningError):
            await build_orchestrator(FakeEngine()).run(tasks)

    @pytest.mark.asyncio
    async def test_result_serializes(self, build_orchestrator, sample_tasks) -> None:
        result = await build_orchestrator(FakeEngine()).run(sample_tasks)

        data = result.to_dict()

        assert data["phase_id"] == "phase-1"
        assert data["plan"]["total_waves"] == 3
        assert data["outcomes"]["1a"]["status"] == "passed"
        assert data["outcomes"]["1a"]["cost"]["source"] == "json-usage"
        json.dumps(data)

    @pytest.mark.asyncio
    async def test_project_rules_reach_the_prompt(
        self, build_orchestrator, sample_tasks, project_config
    ) -> None:
        config = project_config.model_copy(update={"rules": ["Use strict TypeScript", "No default exports"]})
        engine = FakeEngine()

        await build_orchestrator(engine, config=config).run(sample_tasks[:1])

        prompt = engine.calls[0].prompt
        assert prompt == build_task_prompt(sample_tasks[0], rules=config.rules)
        assert "## Project rules\n- Use strict TypeScript\n- No default exports" in prompt

    def test_default_engine_uses_model_preference(self, project_config, worktrees) -> None:
        config = project_config.model_copy(update={"cost": CostConfig(model_preference="opus")})

        orchestrator = PhaseOrchestrator(
            config=config, phase_id="phase-1", target_branch="main", worktree_provider=worktrees
        )

        assert isinstance(orchestrator.engine, ClaudeCodeEngine)
        assert "--model" in orchestrator.engine.build_args("x")
        assert orchestrator.engine.model == "opus"

    @pytest.mark.asyncio
    async def test_worktree_failure_fails_task(self, build_orchestrator, sample_tasks) -> None:
        orchestrator = build_orchestrator(FakeEngine())

        async def broken(task) -> str:
            raise WorktreeError(f"/wt/{task.id}", f"taskgate/phase-1/{task.id}", "locked")

        orchestrator.worktree_provider = broken

        result = await orchestrator.run(sample_tasks[:1])

        assert result.failed_tasks == ["1a"]
        assert "locked" in result.outcomes["1a"].error
