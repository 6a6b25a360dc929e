"""Scheduler - merges dependencies and overlap groups into execution waves.

Overlap groups impose a total order on their members (ascending task id).
That order is added to the dependency edges and the combined graph is
layered with a topological sort: a task enters wave ``k`` once every
predecessor sits in a wave below ``k``.
"""

from collections import defaultdict
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from taskgate.core.errors import UnschedulableTaskSetError
from taskgate.prd.models import Task
from taskgate.scheduling.graph import DependencyGraph, build_dependency_graph, find_cycle
from taskgate.scheduling.overlaps import OverlapResult, detect_file_overlaps

# =============================================================================
# EXECUTION PLAN
# =============================================================================


class ExecutionPlan(BaseModel):
    """Ordered waves of task ids.

    Members of one wave are independent of each other and safe to run
    concurrently once all earlier waves have completed.

    Example:
        >>> plan = Scheduler().plan(tasks)
        >>> plan.waves
        [['1a', '2a'], ['1b'], ['1c']]
        >>> plan.wave_of("1b")
        1
    """

    model_config = ConfigDict(frozen=True)

    waves: list[list[str]] = Field(default_factory=list)
    sequential_groups: list[list[str]] = Field(
        default_factory=list,
        description="Overlap chains in execution order",
    )
    predecessors: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Task id -> ids that must complete first (dependencies and chain)",
    )

    @property
    def total_waves(self) -> int:
        return len(self.waves)

    @property
    def task_ids(self) -> list[str]:
        """All task ids in execution order."""
        return [tid for wave in self.waves for tid in wave]

    def wave_of(self, task_id: str) -> int:
        """Wave index of a task.

        Raises:
            KeyError: If the task is not in the plan.
        """
        for index, wave in enumerate(self.waves):
            if task_id in wave:
                return index
        raise KeyError(task_id)

    def ready_tasks(self, completed: set[str]) -> list[str]:
        """Uncompleted tasks whose predecessors have all completed."""
        return [
            tid
            for tid in self.task_ids
            if tid not in completed
            and all(p in completed for p in self.predecessors.get(tid, []))
        ]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "waves": self.waves,
            "total_waves": self.total_waves,
            "sequential_groups": self.sequential_groups,
        }


# =============================================================================
# SCHEDULER
# =============================================================================


def _chain_edges(overlaps: OverlapResult) -> list[tuple[str, str]]:
    """(earlier, later) pairs for consecutive members of each overlap group."""
    edges: list[tuple[str, str]] = []
    for group in overlaps.sequential:
        ordered = sorted(t.id for t in group)
        edges.extend(zip(ordered, ordered[1:]))
    return edges


def build_execution_plan(graph: DependencyGraph, overlaps: OverlapResult) -> ExecutionPlan:
    """
    Layer tasks into waves honouring dependencies and overlap order.

    Args:
        graph: Validated dependency graph (acyclic, no dangling edges).
        overlaps: Overlap grouping over the same task set.

    Returns:
        ExecutionPlan.

    Raises:
        UnschedulableTaskSetError: If overlap order contradicts dependencies.
    """
    predecessors: dict[str, set[str]] = {tid: set(graph.get_dependencies(tid)) for tid in graph.nodes}
    chain = _chain_edges(overlaps)
    chain_set = set(chain)
    for earlier, later in chain:
        predecessors[later].add(earlier)

    successors: dict[str, set[str]] = defaultdict(set)
    for tid, preds in predecessors.items():
        for pred in preds:
            successors[pred].add(tid)

    in_degree = {tid: len(preds) for tid, preds in predecessors.items()}
    current = sorted(tid for tid, deg in in_degree.items() if deg == 0)
    waves: list[list[str]] = []
    placed = 0

    while current:
        waves.append(current)
        placed += len(current)
        released: list[str] = []
        for tid in current:
            for succ in successors[tid]:
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    released.append(succ)
        current = sorted(released)

    if placed != len(predecessors):
        # Dependencies alone are acyclic, so every cycle uses a chain edge.
        cycle = find_cycle({tid: sorted(successors[tid]) for tid in predecessors}) or []
        pair = next(
            ((a, b) for a, b in zip(cycle, cycle[1:]) if (a, b) in chain_set),
            None,
        )
        if pair is None:
            pair = next(iter(sorted(chain_set)))
        logger.error(f"Unschedulable task set: overlap order {pair[0]} -> {pair[1]} conflicts")
        raise UnschedulableTaskSetError(pair[0], pair[1], cycle)

    plan = ExecutionPlan(
        waves=waves,
        sequential_groups=[sorted(t.id for t in group) for group in overlaps.sequential],
        predecessors={tid: sorted(preds) for tid, preds in sorted(predecessors.items())},
    )

    for index, wave in enumerate(waves):
        logger.debug(f"Wave {index}: {', '.join(wave)}")
    logger.info(f"Scheduled {placed} tasks into {plan.total_waves} waves")

    return plan


class Scheduler:
    """
    Build an execution plan from a flat task list.

    Example:
        >>> scheduler = Scheduler()
        >>> plan = scheduler.plan(parsed_prd.tasks)
        >>> scheduler.overlaps.overlaps
        [FileOverlap(file='src/app.ts', task_ids=['1a', '1b'])]
    """

    def __init__(self) -> None:
        self.graph: DependencyGraph | None = None
        self.overlaps: OverlapResult | None = None

    def plan(self, tasks: list[Task]) -> ExecutionPlan:
        """
        Resolve dependencies, group overlaps and assign waves.

        Raises:
            DuplicateTaskIdError: If two tasks share an id.
            DanglingDependencyError: If a dependency is unknown.
            CyclicDependencyError: If dependencies form a cycle.
            UnschedulableTaskSetError: If overlap order contradicts dependencies.
        """
        logger.info(f"Planning {len(tasks)} tasks")
        self.graph = build_dependency_graph(tasks)
        self.overlaps = detect_file_overlaps(tasks)
        return build_execution_plan(self.graph, self.overlaps)


def plan_tasks(tasks: list[Task]) -> ExecutionPlan:
    """Convenience wrapper around ``Scheduler().plan``."""
    return Scheduler().plan(tasks)
