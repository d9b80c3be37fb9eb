"""Blocked-by edges between tasks.

Edges live on the task records as two ID lists, ``blocked_by`` on the waiting
task and ``blocks`` on the blocker. The graph only ever sees IDs; nodes are
fetched from the :class:`TaskStore` on demand.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from ..errors import CircularDependencyError, DuplicateDependencyError, SelfDependencyError
from .interfaces import TaskStore
from .model import Task, TaskStatus


class DependencyGraph:
    def __init__(self, store: TaskStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def would_create_cycle(self, task_id: str, depends_on_id: str) -> bool:
        """Return True if making *task_id* wait on *depends_on_id* closes a cycle.

        Walks ``blocked_by`` edges depth-first from *depends_on_id*; reaching
        *task_id* means the new edge would point back into its own ancestry.
        Visited nodes are skipped so diamonds are walked once.
        """
        visited: set[str] = set()
        stack: list[str] = [depends_on_id]
        while stack:
            current = stack.pop()
            if current == task_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            for node in self.store.find_by_ids([current]):
                stack.extend(dep for dep in node.blocked_by if dep not in visited)
        return False

    def blocking_tasks(self, task: Task) -> list[Task]:
        """Blockers of *task* that are not done yet.

        Blockers that no longer exist are ignored so a deleted task can never
        leave a dependent stuck.
        """
        if not task.blocked_by:
            return []
        found = self.store.find_by_ids(task.blocked_by)
        order = {tid: i for i, tid in enumerate(task.blocked_by)}
        found.sort(key=lambda t: order.get(t.id, 0))
        return [t for t in found if t.status != TaskStatus.DONE]

    def can_start(self, task: Task) -> bool:
        return not self.blocking_tasks(task)

    # ------------------------------------------------------------------
    # Mutations (in memory; the caller persists both records)
    # ------------------------------------------------------------------

    def add_dependency(self, task: Task, depends_on: Task) -> None:
        """Record that *task* is blocked by *depends_on*.

        Raises before touching either record, so a rejected edge leaves no
        half-written state behind.
        """
        if task.id == depends_on.id:
            raise SelfDependencyError(task.id)
        if depends_on.id in task.blocked_by:
            raise DuplicateDependencyError(task.id, depends_on.id)
        if self.would_create_cycle(task.id, depends_on.id):
            raise CircularDependencyError(task.id, depends_on.id)

        task.add_blocked_by(depends_on.id)
        depends_on.add_blocks(task.id)
        logger.debug("Linked {} blocked_by {}", task.id, depends_on.id)

    @staticmethod
    def remove_dependency(task: Task, depends_on_id: str, depends_on: Optional[Task] = None) -> bool:
        """Drop both halves of the edge. Returns whether anything changed.

        *depends_on* may be ``None`` when the blocker record is already gone.
        """
        changed = depends_on_id in task.blocked_by
        task.remove_blocked_by(depends_on_id)
        if depends_on is not None:
            changed = changed or task.id in depends_on.blocks
            depends_on.remove_blocks(task.id)
        return changed

    def neighbours(self, task: Task) -> list[Task]:
        """Every task sharing an edge with *task*, in either direction."""
        ids = list(dict.fromkeys([*task.blocked_by, *task.blocks]))
        return self.store.find_by_ids(ids)

    @staticmethod
    def unlink(task_id: str, other: Task) -> bool:
        """Strip *task_id* from both edge lists of *other*."""
        changed = task_id in other.blocked_by or task_id in other.blocks
        other.remove_blocked_by(task_id)
        other.remove_blocks(task_id)
        return changed
