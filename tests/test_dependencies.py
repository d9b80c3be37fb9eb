"""Tests for blocked-by edges, cycle detection and the start gate."""

from __future__ import annotations

import pytest

from practice_tasks.errors import (
    CircularDependencyError,
    DuplicateDependencyError,
    NotFoundError,
    SelfDependencyError,
    VersionConflictError,
)
from practice_tasks.task_engine.dependencies import DependencyGraph
from practice_tasks.task_engine.engine import TaskEngine
from practice_tasks.task_engine.model import Task, TaskStatus
from practice_tasks.task_engine.store import YamlTaskStore


def _make(engine: TaskEngine, title: str, **extra) -> Task:
    return engine.create_task({"title": title, **extra})


class TestDependencyGraph:
    def test_cycle_detection_walks_blocked_by(self, store: YamlTaskStore) -> None:
        store.save(Task(id="a", title="A"))
        store.save(Task(id="b", title="B", blocked_by=["a"]))
        store.save(Task(id="c", title="C", blocked_by=["b"]))
        graph = DependencyGraph(store)

        assert graph.would_create_cycle("a", "c") is True
        assert graph.would_create_cycle("c", "a") is False

    def test_diamond_is_not_a_cycle(self, store: YamlTaskStore) -> None:
        store.save(Task(id="root", title="root"))
        store.save(Task(id="l", title="l", blocked_by=["root"]))
        store.save(Task(id="r", title="r", blocked_by=["root"]))
        store.save(Task(id="tip", title="tip", blocked_by=["l", "r"]))
        graph = DependencyGraph(store)
        assert graph.would_create_cycle("new", "tip") is False

    def test_rejections_leave_records_untouched(self, store: YamlTaskStore) -> None:
        graph = DependencyGraph(store)
        a = Task(id="a", title="A", blocked_by=["b"])
        b = Task(id="b", title="B", blocks=["a"])
        store.save(a)
        store.save(b)

        with pytest.raises(SelfDependencyError):
            graph.add_dependency(a, a)
        with pytest.raises(DuplicateDependencyError):
            graph.add_dependency(a, b)
        with pytest.raises(CircularDependencyError):
            graph.add_dependency(b, a)
        assert a.blocked_by == ["b"] and a.blocks == []
        assert b.blocked_by == [] and b.blocks == ["a"]

    def test_missing_blockers_do_not_block(self, store: YamlTaskStore) -> None:
        store.save(Task(id="done", title="Done", status=TaskStatus.DONE))
        store.save(Task(id="open", title="Open"))
        graph = DependencyGraph(store)

        task = Task(id="t", title="T", blocked_by=["gone", "done", "open"])
        assert [b.id for b in graph.blocking_tasks(task)] == ["open"]
        assert graph.can_start(Task(id="u", title="U", blocked_by=["gone", "done"]))


class TestEngineDependencies:
    def test_add_dependency_writes_both_sides(self, engine: TaskEngine) -> None:
        t1 = _make(engine, "Research")
        t2 = _make(engine, "Draft")

        engine.add_dependency(t2.id, t1.id, actor="u1")

        assert engine.get_task(t2.id).blocked_by == [t1.id]
        assert engine.get_task(t1.id).blocks == [t2.id]
        assert engine.get_task(t2.id).history[-1].action == "dependency_added"

    def test_cycle_is_rejected_and_graph_unchanged(self, engine: TaskEngine) -> None:
        a = _make(engine, "A")
        b = _make(engine, "B")
        c = _make(engine, "C")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, b.id)

        with pytest.raises(CircularDependencyError):
            engine.add_dependency(a.id, c.id)

        assert engine.get_task(a.id).blocked_by == []
        assert engine.get_task(c.id).blocks == []
        assert engine.get_task(b.id).blocked_by == [a.id]
        assert engine.get_task(c.id).blocked_by == [b.id]

    def test_unknown_blocker(self, engine: TaskEngine) -> None:
        a = _make(engine, "A")
        with pytest.raises(NotFoundError):
            engine.add_dependency(a.id, "task-missing")
        assert engine.get_task(a.id).blocked_by == []

    def test_self_dependency(self, engine: TaskEngine) -> None:
        a = _make(engine, "A")
        with pytest.raises(SelfDependencyError):
            engine.add_dependency(a.id, a.id)

    def test_remove_dependency_is_idempotent(self, engine: TaskEngine) -> None:
        a = _make(engine, "A")
        b = _make(engine, "B")
        engine.add_dependency(b.id, a.id)

        engine.remove_dependency(b.id, a.id)
        engine.remove_dependency(b.id, a.id)

        assert engine.get_task(b.id).blocked_by == []
        assert engine.get_task(a.id).blocks == []

    def test_initial_blockers_from_draft(self, engine: TaskEngine) -> None:
        a = _make(engine, "A")
        b = _make(engine, "B", blocked_by=[a.id, a.id])
        assert b.blocked_by == [a.id]
        assert engine.get_task(a.id).blocks == [b.id]

    def test_delete_unlinks_neighbours(self, engine: TaskEngine) -> None:
        a = _make(engine, "A")
        b = _make(engine, "B")
        c = _make(engine, "C")
        engine.add_dependency(b.id, a.id)
        engine.add_dependency(c.id, b.id)

        engine.delete_task(b.id)

        assert engine.get_task(a.id).blocks == []
        assert engine.get_task(c.id).blocked_by == []
        with pytest.raises(NotFoundError):
            engine.get_task(b.id)

    def test_blocker_write_failure_rolls_back(self, engine: TaskEngine, monkeypatch: pytest.MonkeyPatch) -> None:
        a = _make(engine, "A")
        b = _make(engine, "B")
        real_save = engine.store.save

        def flaky_save(task: Task) -> Task:
            if task.id == a.id:
                raise VersionConflictError(task.id, task.version, task.version + 1)
            return real_save(task)

        monkeypatch.setattr(engine.store, "save", flaky_save)
        with pytest.raises(VersionConflictError):
            engine.add_dependency(b.id, a.id)
        monkeypatch.undo()

        assert engine.get_task(b.id).blocked_by == []
        assert engine.get_task(a.id).blocks == []
        assert engine.get_task(b.id).history[-1].action == "dependency_rolled_back"
