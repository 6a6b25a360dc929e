"""Dependency graph - nodes, edges, cycle detection and topological order.

``depended_by`` back-edges are always derived from ``depends_on`` during
construction; nothing else writes them.
"""

from collections import deque
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from taskgate.core.errors import CyclicDependencyError, DanglingDependencyError, DuplicateTaskIdError
from taskgate.prd.models import Task

# =============================================================================
# MODELS
# =============================================================================


class DependencyNode(BaseModel):
    """A task plus its forward and back edges."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    task: Task
    depends_on: tuple[str, ...] = ()
    depended_by: tuple[str, ...] = ()


class DependencyGraph(BaseModel):
    """Task id -> DependencyNode mapping.

    Example:
        >>> graph = build_dependency_graph(tasks)
        >>> graph.get_dependents("1a")
        ['1b', '1c']
    """

    model_config = ConfigDict(frozen=True)

    nodes: dict[str, DependencyNode] = Field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.nodes

    @property
    def task_ids(self) -> list[str]:
        """All task ids, sorted."""
        return sorted(self.nodes)

    def get_node(self, task_id: str) -> DependencyNode | None:
        """Get a node by task id."""
        return self.nodes.get(task_id)

    def get_task(self, task_id: str) -> Task | None:
        """Get a task by id."""
        node = self.nodes.get(task_id)
        return node.task if node else None

    def get_dependencies(self, task_id: str) -> list[str]:
        """Ids this task depends on."""
        node = self.nodes.get(task_id)
        return list(node.depends_on) if node else []

    def get_dependents(self, task_id: str) -> list[str]:
        """Ids that depend on this task."""
        node = self.nodes.get(task_id)
        return list(node.depended_by) if node else []

    def edges(self) -> dict[str, list[str]]:
        """Task id -> dependency ids."""
        return {tid: list(node.depends_on) for tid, node in self.nodes.items()}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            tid: {"depends_on": list(node.depends_on), "depended_by": list(node.depended_by)}
            for tid, node in sorted(self.nodes.items())
        }


# =============================================================================
# CONSTRUCTION
# =============================================================================


def build_dependency_graph(tasks: list[Task]) -> DependencyGraph:
    """
    Build a dependency graph from a list of tasks.

    Args:
        tasks: Tasks to build the graph from.

    Returns:
        DependencyGraph mapping task IDs to their nodes.

    Raises:
        DuplicateTaskIdError: If two tasks share an id.
        DanglingDependencyError: If a task references a non-existent dependency.
        CyclicDependencyError: If the dependencies form a cycle.
    """
    by_id: dict[str, Task] = {}
    for task in tasks:
        if task.id in by_id:
            raise DuplicateTaskIdError(task.id)
        by_id[task.id] = task

    back_edges: dict[str, list[str]] = {tid: [] for tid in by_id}
    for task in tasks:
        for dep_id in task.depends_on:
            if dep_id not in by_id:
                raise DanglingDependencyError(task.id, dep_id)
            back_edges[dep_id].append(task.id)

    graph = DependencyGraph(
        nodes={
            tid: DependencyNode(
                task_id=tid,
                task=task,
                depends_on=tuple(task.depends_on),
                depended_by=tuple(sorted(back_edges[tid])),
            )
            for tid, task in by_id.items()
        }
    )

    cycle = find_cycle(graph.edges())
    if cycle:
        raise CyclicDependencyError(cycle)

    logger.debug(f"Built dependency graph with {len(graph)} tasks")
    return graph


def find_cycle(edges: dict[str, list[str]]) -> list[str] | None:
    """
    Find a cycle with an iterative three-colour DFS over ``edges``.

    Args:
        edges: Node -> successor list. Successors not present as keys are ignored.

    Returns:
        Cycle path with the first node repeated at the end, or None.

    Example:
        >>> find_cycle({"a": ["b"], "b": ["a"]})
        ['a', 'b', 'a']
    """
    WHITE, GRAY, BLACK = 0, 1, 2
    colors: dict[str, int] = {node: WHITE for node in edges}

    for root in sorted(edges):
        if colors[root] != WHITE:
            continue

        path: list[str] = [root]
        colors[root] = GRAY
        stack: list[tuple[str, list[str]]] = [(root, sorted(edges[root]))]

        while stack:
            node, pending = stack[-1]
            if not pending:
                stack.pop()
                path.pop()
                colors[node] = BLACK
                continue

            neighbor = pending.pop(0)
            if neighbor not in colors:
                continue
            if colors[neighbor] == GRAY:
                start = path.index(neighbor)
                return path[start:] + [neighbor]
            if colors[neighbor] == WHITE:
                colors[neighbor] = GRAY
                path.append(neighbor)
                stack.append((neighbor, sorted(edges[neighbor])))

    return None


# =============================================================================
# QUERIES
# =============================================================================


def topological_sort(graph: DependencyGraph) -> list[Task]:
    """
    Order tasks so dependencies come before dependents (Kahn's algorithm).

    Ties are broken by task id.

    Raises:
        CyclicDependencyError: If the graph contains a cycle.
    """
    in_degree = {tid: len(node.depends_on) for tid, node in graph.nodes.items()}
    queue: deque[str] = deque(sorted(tid for tid, deg in in_degree.items() if deg == 0))
    ordered: list[Task] = []

    while queue:
        tid = queue.popleft()
        node = graph.nodes[tid]
        ordered.append(node.task)
        released: list[str] = []
        for dependent in node.depended_by:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                released.append(dependent)
        queue.extend(sorted(released))

    if len(ordered) != len(graph):
        raise CyclicDependencyError(find_cycle(graph.edges()) or ["unknown cycle detected"])

    return ordered


def get_ready_tasks(graph: DependencyGraph, completed: set[str]) -> list[Task]:
    """Tasks not yet completed whose dependencies are all completed."""
    return [
        graph.nodes[tid].task
        for tid in graph.task_ids
        if tid not in completed and all(d in completed for d in graph.nodes[tid].depends_on)
    ]


def get_blocked_tasks(graph: DependencyGraph, completed: set[str]) -> list[Task]:
    """Tasks not yet completed with at least one uncompleted dependency."""
    return [
        graph.nodes[tid].task
        for tid in graph.task_ids
        if tid not in completed and any(d not in completed for d in graph.nodes[tid].depends_on)
    ]


def get_task_depths(graph: DependencyGraph) -> dict[str, int]:
    """Longest dependency chain below each task (roots have depth 0)."""
    depths: dict[str, int] = {}
    for task in topological_sort(graph):
        deps = graph.nodes[task.id].depends_on
        depths[task.id] = 1 + max(depths[d] for d in deps) if deps else 0
    return depths


def get_transitive_dependents(graph: DependencyGraph, task_id: str) -> set[str]:
    """Every task that directly or indirectly depends on ``task_id``."""
    seen: set[str] = set()
    queue: deque[str] = deque(graph.get_dependents(task_id))
    while queue:
        tid = queue.popleft()
        if tid in seen:
            continue
        seen.add(tid)
        queue.extend(graph.get_dependents(tid))
    return seen
