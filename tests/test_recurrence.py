"""Tests for recurring task planning (task_engine/recurrence.py)."""

from __future__ import annotations

import random
from datetime import datetime, timezone

import pytest

from practice_tasks.task_engine.engine import TaskEngine
from practice_tasks.task_engine.model import (
    AssigneeStrategy,
    Frequency,
    RecurringPolicy,
    TaskStatus,
)
from practice_tasks.task_engine.recurrence import RecurrenceScheduler, add_months

BASE = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)


def _policy(**kwargs) -> RecurringPolicy:
    kwargs.setdefault("enabled", True)
    return RecurringPolicy(**kwargs)


class TestNextDueDate:
    @pytest.mark.parametrize(
        ("frequency", "interval", "expected"),
        [
            (Frequency.DAILY, 3, datetime(2024, 2, 3, 12, 0, tzinfo=timezone.utc)),
            (Frequency.WEEKLY, 2, datetime(2024, 2, 14, 12, 0, tzinfo=timezone.utc)),
            (Frequency.BIWEEKLY, 5, datetime(2024, 2, 14, 12, 0, tzinfo=timezone.utc)),
            (Frequency.MONTHLY, 1, datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)),
            (Frequency.QUARTERLY, 4, datetime(2024, 4, 30, 12, 0, tzinfo=timezone.utc)),
            (Frequency.YEARLY, 2, datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)),
        ],
    )
    def test_cadence(self, frequency: Frequency, interval: int, expected: datetime) -> None:
        policy = _policy(frequency=frequency, interval=interval)
        assert RecurrenceScheduler.next_due_date(BASE, policy) == expected

    def test_add_months_crosses_year(self) -> None:
        assert add_months(datetime(2023, 11, 30), 3) == datetime(2024, 2, 29)


class TestShouldSpawn:
    def test_max_occurrences_reached(self) -> None:
        policy = _policy(max_occurrences=3)
        assert RecurrenceScheduler.should_spawn(policy, 2, BASE) is True
        assert RecurrenceScheduler.should_spawn(policy, 3, BASE) is False

    def test_end_date_is_inclusive(self) -> None:
        policy = _policy(end_date="2024-01-31T12:00:00+00:00")
        assert RecurrenceScheduler.should_spawn(policy, 1, BASE) is True
        assert RecurrenceScheduler.should_spawn(policy, 1, datetime(2024, 2, 1, tzinfo=timezone.utc)) is False


class TestNextAssignee:
    def test_round_robin_cycles_through_pool(self) -> None:
        scheduler = RecurrenceScheduler()
        policy = _policy(assignee_strategy=AssigneeStrategy.ROUND_ROBIN, assignee_pool=["A", "B", "C"])
        assert [scheduler.next_assignee(policy, n, "X") for n in range(4)] == ["A", "B", "C", "A"]

    def test_random_picks_from_pool(self) -> None:
        scheduler = RecurrenceScheduler(rng=random.Random(7))
        policy = _policy(assignee_strategy=AssigneeStrategy.RANDOM, assignee_pool=["A", "B"])
        picks = {scheduler.next_assignee(policy, n, "X") for n in range(20)}
        assert picks <= {"A", "B"}

    def test_fixed_and_empty_pool_keep_current(self) -> None:
        scheduler = RecurrenceScheduler()
        assert scheduler.next_assignee(_policy(assignee_pool=["A"]), 1, "X") == "X"
        rr_empty = _policy(assignee_strategy=AssigneeStrategy.ROUND_ROBIN)
        assert scheduler.next_assignee(rr_empty, 1, "X") == "X"


class TestEngineRecurrence:
    def test_completion_spawns_next_instance(self, engine: TaskEngine) -> None:
        t = engine.create_task({
            "title": "Weekly trust reconciliation",
            "due_date": "2024-01-15T17:00:00+00:00",
            "assigned_to": "A",
            "tags": ["trust"],
            "subtasks": [{"title": "pull statements"}],
            "recurring": {
                "frequency": "weekly",
                "interval": 1,
                "assignee_strategy": "round_robin",
                "assignee_pool": ["A", "B", "C"],
            },
        })

        result = engine.complete_task(t.id, actor="A")

        assert result.task.status == TaskStatus.DONE
        assert result.task.recurring.occurrences_completed == 1
        nxt = result.next_task
        assert nxt is not None
        assert nxt.status == TaskStatus.TODO
        assert nxt.due_date == "2024-01-22T17:00:00+00:00"
        assert nxt.assigned_to == "B"
        assert nxt.tags == ["trust"]
        assert nxt.subtasks == []
        assert nxt.recurring.occurrences_completed == 1
        assert nxt.history[0].changes == {"recurred_from": t.id}
        assert engine.get_task(nxt.id).title == "Weekly trust reconciliation"

    def test_exhausted_policy_does_not_spawn(self, engine: TaskEngine) -> None:
        t = engine.create_task({
            "title": "Daily check",
            "due_date": "2024-01-15",
            "recurring": {"frequency": "daily", "max_occurrences": 3, "occurrences_completed": 3},
        })
        result = engine.complete_task(t.id, actor="u1")
        assert result.next_task is None
        assert len(engine.list_tasks()) == 1

    def test_chain_stops_after_max_occurrences(self, engine: TaskEngine) -> None:
        t = engine.create_task({
            "title": "Daily check",
            "due_date": "2024-01-15",
            "recurring": {"frequency": "daily", "max_occurrences": 3},
        })
        spawned = []
        current = t
        while current is not None:
            result = engine.complete_task(current.id, actor="u1")
            current = result.next_task
            if current is not None:
                spawned.append(current)
        assert len(spawned) == 2
        assert len(engine.list_tasks()) == 3

    def test_no_due_date_uses_now(self, engine: TaskEngine, clock) -> None:
        t = engine.create_task({"title": "x", "recurring": {"frequency": "daily"}})
        result = engine.complete_task(t.id)
        assert result.next_task.due_date == "2024-01-16T09:00:00+00:00"

    def test_completing_twice_does_not_spawn_twice(self, engine: TaskEngine) -> None:
        t = engine.create_task({"title": "x", "recurring": {"frequency": "daily"}})
        engine.complete_task(t.id)
        again = engine.complete_task(t.id)
        assert again.completed is False
        assert again.next_task is None
        assert len(engine.list_tasks()) == 2

    def test_disabled_policy(self, engine: TaskEngine) -> None:
        t = engine.create_task({"title": "x", "recurring": {"frequency": "daily", "enabled": False}})
        assert engine.complete_task(t.id).next_task is None

    def test_set_recurring_and_clear(self, engine: TaskEngine) -> None:
        t = engine.create_task({"title": "x"})
        updated = engine.set_recurring(t.id, {"frequency": "monthly", "interval": 2})
        assert updated.recurring.frequency == Frequency.MONTHLY
        cleared = engine.set_recurring(t.id, None)
        assert cleared.recurring is None
