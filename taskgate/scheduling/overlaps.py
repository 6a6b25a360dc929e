"""File overlap detection.

Tasks that touch the same file, directly or transitively (A and B share
``x``, B and C share ``y``), land in one group and must run sequentially.
Paths are compared as exact strings.
"""

from collections import defaultdict

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from taskgate.prd.models import Task


class UnionFind:
    """Disjoint-set over string keys with path compression and union by rank.

    Build a fresh instance per grouping pass.

    Example:
        >>> uf = UnionFind()
        >>> uf.union("a", "b")
        >>> uf.find("a") == uf.find("b")
        True
    """

    def __init__(self) -> None:
        self._parent: dict[str, str] = {}
        self._rank: dict[str, int] = {}

    def add(self, x: str) -> None:
        """Register ``x`` as a singleton if it is new."""
        if x not in self._parent:
            self._parent[x] = x
            self._rank[x] = 0

    def find(self, x: str) -> str:
        """Root of ``x``'s set, compressing the path on the way."""
        self.add(x)
        root = x
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[x] != root:
            self._parent[x], x = root, self._parent[x]
        return root

    def union(self, x: str, y: str) -> None:
        """Merge the sets containing ``x`` and ``y``."""
        root_x = self.find(x)
        root_y = self.find(y)
        if root_x == root_y:
            return

        rank_x = self._rank[root_x]
        rank_y = self._rank[root_y]
        if rank_x < rank_y:
            self._parent[root_x] = root_y
        elif rank_x > rank_y:
            self._parent[root_y] = root_x
        else:
            self._parent[root_y] = root_x
            self._rank[root_x] = rank_x + 1

    def groups(self) -> list[list[str]]:
        """Connected components, members sorted, components sorted by first member."""
        components: dict[str, list[str]] = defaultdict(list)
        for element in self._parent:
            components[self.find(element)].append(element)
        return sorted((sorted(members) for members in components.values()), key=lambda g: g[0])


class FileOverlap(BaseModel):
    """A file touched by two or more tasks."""

    model_config = ConfigDict(frozen=True)

    file: str
    task_ids: list[str]


class OverlapResult(BaseModel):
    """Partition of tasks into parallel-safe singletons and sequential groups."""

    model_config = ConfigDict(frozen=True)

    safe: list[Task] = Field(default_factory=list, description="Tasks with no file overlaps")
    sequential: list[list[Task]] = Field(
        default_factory=list,
        description="Groups that must run one at a time, members in ascending id order",
    )
    overlaps: list[FileOverlap] = Field(default_factory=list, description="Overlap details")

    @property
    def has_overlaps(self) -> bool:
        return bool(self.sequential)

    def group_of(self, task_id: str) -> list[Task] | None:
        """Sequential group containing ``task_id``, if any."""
        for group in self.sequential:
            if any(t.id == task_id for t in group):
                return group
        return None


def detect_file_overlaps(tasks: list[Task]) -> OverlapResult:
    """
    Group tasks by shared files.

    Args:
        tasks: Tasks to analyze.

    Returns:
        OverlapResult. ``safe`` and the members of ``sequential`` together
        contain every input task exactly once.

    Example:
        >>> result = detect_file_overlaps(tasks)
        >>> [[t.id for t in g] for g in result.sequential]
        [['1a', '1b', '1c']]
    """
    file_to_tasks: dict[str, list[str]] = defaultdict(list)
    for task in tasks:
        for file in dict.fromkeys(task.files_affected):
            file_to_tasks[file].append(task.id)

    uf = UnionFind()
    for task in tasks:
        uf.add(task.id)

    overlaps: list[FileOverlap] = []
    for file in sorted(file_to_tasks):
        task_ids = file_to_tasks[file]
        if len(task_ids) < 2:
            continue
        overlaps.append(FileOverlap(file=file, task_ids=sorted(task_ids)))
        first = task_ids[0]
        for other in task_ids[1:]:
            uf.union(first, other)

    by_id = {task.id: task for task in tasks}
    safe: list[Task] = []
    sequential: list[list[Task]] = []
    for members in uf.groups():
        if len(members) == 1:
            safe.append(by_id[members[0]])
        else:
            sequential.append([by_id[tid] for tid in members])

    for overlap in overlaps:
        logger.warning(f"File overlap: {overlap.file} touched by {', '.join(overlap.task_ids)}")
    logger.info(
        f"Overlap grouping: {len(safe)} safe tasks, {len(sequential)} sequential groups"
    )

    return OverlapResult(safe=safe, sequential=sequential, overlaps=overlaps)
