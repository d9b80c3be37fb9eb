"""Status transitions with the dependency guard and completion stamping."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from ..errors import BlockedError, ValidationError
from ..utils import utc_now
from .dependencies import DependencyGraph
from .model import Task, TaskStatus
from .progress import ProgressTracker


@dataclass
class TransitionResult:
    task: Task
    previous: TaskStatus
    completed: bool = False  # entered ``done`` with this transition
    reopened: bool = False  # left ``done`` with this transition


def parse_status(value: Any) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value))
    except ValueError:
        valid = [s.value for s in TaskStatus]
        raise ValidationError(f"'status' must be one of {valid}, got {value!r}", field="status") from None


class StatusMachine:
    """Validate and apply status changes.

    ``todo -> pending -> in_progress -> done`` is the normal flow and
    ``canceled`` is reachable from anywhere. Only entry into ``in_progress``
    is guarded (every blocker must be ``done``); moving out of a terminal
    state is an ordinary transition.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        progress: ProgressTracker,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.graph = graph
        self.progress = progress
        self.clock = clock

    def check_can_enter(self, task: Task, target: TaskStatus) -> None:
        if target != TaskStatus.IN_PROGRESS:
            return
        blockers = self.graph.blocking_tasks(task)
        if blockers:
            raise BlockedError(
                task.id,
                [{"id": b.id, "title": b.title, "status": b.status.value} for b in blockers],
            )

    def transition(self, task: Task, new_status: Any, actor: Optional[str]) -> TransitionResult:
        target = parse_status(new_status)
        previous = task.status
        if target == previous:
            return TransitionResult(task=task, previous=previous)
        self.check_can_enter(task, target)

        now = self.clock().isoformat()
        task.status = target
        task.record("status_changed", actor, now, **{"from": previous.value, "to": target.value})

        result = TransitionResult(task=task, previous=previous)
        if target == TaskStatus.DONE:
            self.stamp_completion(task, actor, now)
            result.completed = True
        elif previous == TaskStatus.DONE:
            task.completed_at = None
            task.completed_by = None
            self.progress.on_reopen(task)
            result.reopened = True
        return result

    @staticmethod
    def stamp_completion(task: Task, actor: Optional[str], now: str) -> None:
        task.completed_at = now
        task.completed_by = actor
        task.progress = 100
