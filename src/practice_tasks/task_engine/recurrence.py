"""Next-occurrence planning for recurring tasks.

``biweekly`` always adds 14 days and ``quarterly`` always adds 3 months; the
policy's ``interval`` only scales daily, weekly, monthly and yearly cadences.
"""

from __future__ import annotations

import calendar
import random
from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger

from ..utils import _parse_iso, utc_now
from .model import AssigneeStrategy, Frequency, HistoryEntry, RecurringPolicy, Task, TaskStatus


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping to the last day of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class RecurrenceScheduler:
    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.clock = clock
        self.rng = rng or random.Random()

    @staticmethod
    def next_due_date(current: datetime, policy: RecurringPolicy) -> datetime:
        interval = policy.interval or 1
        frequency = policy.frequency
        if frequency == Frequency.DAILY:
            return current + timedelta(days=interval)
        if frequency == Frequency.WEEKLY:
            return current + timedelta(days=7 * interval)
        if frequency == Frequency.BIWEEKLY:
            return current + timedelta(days=14)
        if frequency == Frequency.MONTHLY:
            return add_months(current, interval)
        if frequency == Frequency.QUARTERLY:
            return add_months(current, 3)
        if frequency == Frequency.YEARLY:
            return add_months(current, 12 * interval)
        return current + timedelta(days=1)

    @staticmethod
    def should_spawn(policy: RecurringPolicy, occurrences_completed: int, next_date: datetime) -> bool:
        """Whether another instance is due; *occurrences_completed* already counts this one."""
        end = _parse_iso(policy.end_date)
        if end is not None and next_date > end:
            return False
        if policy.max_occurrences and occurrences_completed >= policy.max_occurrences:
            return False
        return True

    def next_assignee(
        self,
        policy: RecurringPolicy,
        occurrences_completed: int,
        current: Optional[str],
    ) -> Optional[str]:
        pool = policy.assignee_pool
        if not pool:
            return current
        if policy.assignee_strategy == AssigneeStrategy.ROUND_ROBIN:
            return pool[occurrences_completed % len(pool)]
        if policy.assignee_strategy == AssigneeStrategy.RANDOM:
            return self.rng.choice(pool)
        return current

    def plan_next(self, task: Task) -> Optional[Task]:
        """Count the completed occurrence on *task* and build the next one.

        Returns the unsaved next task, or ``None`` when the policy is off or
        exhausted. *task* is mutated (its occurrence counter grows) either way
        if the policy is enabled.
        """
        policy = task.recurring
        if policy is None or not policy.enabled:
            return None

        policy.occurrences_completed += 1
        now = self.clock()
        base = _parse_iso(task.due_date) or now
        next_date = self.next_due_date(base, policy)
        if not self.should_spawn(policy, policy.occurrences_completed, next_date):
            logger.info(
                "Recurrence for {} finished after {} occurrences",
                task.id,
                policy.occurrences_completed,
            )
            return None

        assignee = self.next_assignee(policy, policy.occurrences_completed, task.assigned_to)
        return Task(
            tenant_id=task.tenant_id,
            title=task.title,
            description=task.description,
            priority=task.priority,
            status=TaskStatus.TODO,
            label=task.label,
            tags=list(task.tags),
            due_date=next_date.isoformat(),
            due_time=task.due_time,
            assigned_to=assignee,
            created_by=task.created_by,
            case_id=task.case_id,
            client_id=task.client_id,
            case_context=dict(task.case_context),
            recurring=RecurringPolicy.from_dict(policy.to_dict()),
            reminders=[dict(r) for r in task.reminders],
            notes=task.notes,
            points=task.points,
            created_at=now.isoformat(),
            history=[
                HistoryEntry(
                    action="created",
                    user_id=task.created_by,
                    changes={"recurred_from": task.id},
                    timestamp=now.isoformat(),
                )
            ],
        )
