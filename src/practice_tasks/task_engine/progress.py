"""Completion percentage of a task.

Progress is derived from the subtask completion ratio unless a person has
pinned a value (``manual_progress``). Every method that can push progress to
100 returns ``True`` when the task still has to be completed, leaving the
completion itself to the caller so it goes through the status machine.
"""

from __future__ import annotations

from typing import Any, Optional

from ..errors import ValidationError
from ..utils import round_half_up
from .model import Task, TaskStatus


class ProgressTracker:
    @staticmethod
    def derive(task: Task) -> Optional[int]:
        """Subtask completion ratio as 0-100, or None without subtasks."""
        total = len(task.subtasks)
        if total == 0:
            return None
        done = sum(1 for s in task.subtasks if s.completed)
        return round_half_up(100 * done / total)

    @staticmethod
    def _completion_due(task: Task) -> bool:
        return task.progress == 100 and task.status != TaskStatus.DONE

    def recalculate(self, task: Task) -> bool:
        """Refresh automatic progress. Pinned progress is left alone."""
        if task.manual_progress:
            return False
        value = self.derive(task)
        if value is None:
            return False
        task.progress = value
        return self._completion_due(task)

    def set_manual(self, task: Task, value: Any) -> bool:
        if (
            isinstance(value, bool)
            or not isinstance(value, (int, float))
            or (isinstance(value, float) and not value.is_integer())
        ):
            raise ValidationError(f"progress must be an integer between 0 and 100, got {value!r}", field="progress")
        value = int(value)
        if not 0 <= value <= 100:
            raise ValidationError(f"progress must be between 0 and 100, got {value}", field="progress")
        task.progress = value
        task.manual_progress = True
        return self._completion_due(task)

    def reset_to_automatic(self, task: Task) -> bool:
        task.manual_progress = False
        return self.recalculate(task)

    def on_reopen(self, task: Task) -> None:
        """Drop below 100 when a task leaves ``done``.

        The pin is cleared; with every subtask still complete the value stops
        at 99 until the task is completed again.
        """
        task.manual_progress = False
        derived = self.derive(task)
        task.progress = min(derived if derived is not None else 0, 99)
