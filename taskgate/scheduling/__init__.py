"""Scheduling - dependency graph, file-overlap grouping and wave planning."""

from taskgate.scheduling.graph import (
    DependencyGraph,
    DependencyNode,
    build_dependency_graph,
    find_cycle,
    get_blocked_tasks,
    get_ready_tasks,
    get_task_depths,
    get_transitive_dependents,
    topological_sort,
)
from taskgate.scheduling.overlaps import FileOverlap, OverlapResult, UnionFind, detect_file_overlaps
from taskgate.scheduling.scheduler import ExecutionPlan, Scheduler, build_execution_plan, plan_tasks

__all__ = [
    "DependencyGraph",
    "DependencyNode",
    "ExecutionPlan",
    "FileOverlap",
    "OverlapResult",
    "Scheduler",
    "UnionFind",
    "build_dependency_graph",
    "build_execution_plan",
    "detect_file_overlaps",
    "find_cycle",
    "get_blocked_tasks",
    "get_ready_tasks",
    "get_task_depths",
    "get_transitive_dependents",
    "plan_tasks",
    "topological_sort",
]
