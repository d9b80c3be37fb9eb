"""Tests for the task data model (task_engine/model.py)."""

from __future__ import annotations

import pytest

from practice_tasks.task_engine.model import (
    AssignUserAction,
    CreateTaskAction,
    Frequency,
    RecurringPolicy,
    Session,
    Subtask,
    Task,
    TaskPriority,
    TaskStatus,
    TimeTracking,
    TriggerType,
    UpdateFieldAction,
    WorkflowRule,
    action_from_dict,
)


class TestTaskSerialization:
    def test_round_trip_keeps_nested_structures(self) -> None:
        task = Task(
            id="t1",
            title="File motion",
            priority=TaskPriority.HIGH,
            status=TaskStatus.IN_PROGRESS,
            subtasks=[Subtask(id="s1", title="Draft", completed=True)],
            blocked_by=["t0"],
            time_tracking=TimeTracking(
                estimated_minutes=90,
                actual_minutes=30,
                sessions=[Session(id="x", started_at="2024-01-01T09:00:00+00:00",
                                  ended_at="2024-01-01T09:30:00+00:00", duration=30, user_id="u1")],
            ),
            recurring=RecurringPolicy(enabled=True, frequency=Frequency.MONTHLY, interval=2),
            workflow_rules=[
                WorkflowRule(
                    id="r1",
                    name="Hand off",
                    actions=[AssignUserAction(user_id="u2")],
                )
            ],
        )
        task.record("created", "u1", "2024-01-01T09:00:00+00:00", title="File motion")

        data = task.to_dict()
        assert data["priority"] == "high"
        assert data["status"] == "in_progress"
        assert data["recurring"]["frequency"] == "monthly"
        assert data["workflow_rules"][0]["trigger"] == {"type": "completion"}

        restored = Task.from_dict(data)
        assert restored.priority == TaskPriority.HIGH
        assert restored.subtasks[0].completed is True
        assert restored.time_tracking.sessions[0].duration == 30
        assert restored.recurring is not None
        assert restored.recurring.interval == 2
        assert isinstance(restored.workflow_rules[0].actions[0], AssignUserAction)
        assert restored.history[0].changes == {"title": "File motion"}

    def test_unknown_enum_values_fall_back_to_defaults(self) -> None:
        task = Task.from_dict({"id": "t1", "title": "x", "priority": "P0", "status": "weird"})
        assert task.priority == TaskPriority.MEDIUM
        assert task.status == TaskStatus.TODO

    def test_missing_optional_blocks_use_defaults(self) -> None:
        task = Task.from_dict({"id": "t1", "title": "x"})
        assert task.recurring is None
        assert task.time_tracking.sessions == []
        assert task.budget.hourly_rate == 0.0
        assert task.version == 0


class TestTaskHelpers:
    def test_edge_lists_behave_as_ordered_sets(self) -> None:
        task = Task(id="t1")
        task.add_blocked_by("a")
        task.add_blocked_by("b")
        task.add_blocked_by("a")
        assert task.blocked_by == ["a", "b"]
        task.remove_blocked_by("missing")
        task.remove_blocked_by("a")
        assert task.blocked_by == ["b"]

    def test_terminal_statuses(self) -> None:
        assert Task(status=TaskStatus.DONE).is_terminal
        assert Task(status=TaskStatus.CANCELED).is_terminal
        assert not Task(status=TaskStatus.PENDING).is_terminal

    def test_open_session_lookup(self) -> None:
        tracking = TimeTracking(sessions=[
            Session(ended_at="2024-01-01T10:00:00+00:00", duration=15),
            Session(ended_at=None),
        ])
        assert tracking.open_session() is tracking.sessions[1]
        assert tracking.closed_minutes() == 15


class TestWorkflowActions:
    def test_action_variants_by_type(self) -> None:
        create = action_from_dict({"type": "create_task", "template": {"title": "Next", "due_date_offset": "3"}})
        assert isinstance(create, CreateTaskAction)
        assert create.template.due_date_offset == 3

        update = action_from_dict({"type": "update_field", "field": "label", "value": "urgent"})
        assert isinstance(update, UpdateFieldAction)
        assert update.value == "urgent"

    def test_unknown_action_type_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown workflow action"):
            action_from_dict({"type": "send_email"})

    def test_rule_trigger_accepts_plain_string(self) -> None:
        rule = WorkflowRule.from_dict({"name": "r", "trigger": "status_change", "actions": []})
        assert rule.trigger == TriggerType.STATUS_CHANGE

    def test_policy_from_empty_is_none(self) -> None:
        assert RecurringPolicy.from_dict(None) is None
        assert RecurringPolicy.from_dict({}) is None
