"""Tests for the YAML-backed task store (task_engine/store.py)."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
import yaml

from practice_tasks.errors import NotFoundError, VersionConflictError
from practice_tasks.task_engine.model import Task
from practice_tasks.task_engine.store import STORE_FILENAME, YamlTaskStore


class TestYamlTaskStore:
    def test_empty_list(self, store: YamlTaskStore) -> None:
        assert store.list() == []

    def test_save_and_get(self, store: YamlTaskStore) -> None:
        saved = store.save(Task(id="t1", title="First"))
        assert saved.version == 1

        fetched = store.get("t1")
        assert fetched.title == "First"
        assert fetched.version == 1

    def test_get_missing_raises(self, store: YamlTaskStore) -> None:
        with pytest.raises(NotFoundError):
            store.get("nope")

    def test_stale_version_is_rejected(self, store: YamlTaskStore) -> None:
        store.save(Task(id="t1", title="First"))
        a = store.get("t1")
        b = store.get("t1")

        a.title = "From A"
        store.save(a)

        b.title = "From B"
        with pytest.raises(VersionConflictError) as exc_info:
            store.save(b)
        assert exc_info.value.details["expected"] == 1
        assert exc_info.value.details["actual"] == 2
        assert store.get("t1").title == "From A"

    def test_new_task_with_version_is_rejected(self, store: YamlTaskStore) -> None:
        with pytest.raises(VersionConflictError):
            store.save(Task(id="ghost", title="x", version=4))

    def test_find_by_ids_skips_missing(self, store: YamlTaskStore) -> None:
        store.save(Task(id="t1", title="A"))
        store.save(Task(id="t2", title="B"))
        found = store.find_by_ids(["t2", "missing"])
        assert [t.id for t in found] == ["t2"]
        assert store.find_by_ids([]) == []

    def test_delete(self, store: YamlTaskStore) -> None:
        store.save(Task(id="t1", title="A"))
        assert store.delete("t1") is True
        assert store.delete("t1") is False
        with pytest.raises(NotFoundError):
            store.get("t1")

    def test_list_filters_by_tenant(self, store: YamlTaskStore) -> None:
        store.save(Task(id="t1", title="A", tenant_id="firm-a"))
        store.save(Task(id="t2", title="B", tenant_id="firm-b"))
        assert [t.id for t in store.list("firm-a")] == ["t1"]
        assert len(store.list()) == 2

    def test_file_layout(self, state_dir: Path, store: YamlTaskStore) -> None:
        store.save(Task(id="t1", title="A"))
        raw = yaml.safe_load((state_dir / STORE_FILENAME).read_text(encoding="utf-8"))
        assert raw["version"] == 1
        assert raw["tasks"][0]["id"] == "t1"
        assert raw["tasks"][0]["version"] == 1

    def test_corrupt_file_is_not_overwritten(self, state_dir: Path, store: YamlTaskStore) -> None:
        path = state_dir / STORE_FILENAME
        path.write_text("tasks: [unclosed\n", encoding="utf-8")
        with pytest.raises(RuntimeError, match="unreadable"):
            store.save(Task(id="t1", title="A"))
        assert path.read_text(encoding="utf-8") == "tasks: [unclosed\n"

    def test_persistence_survives_reload(self, state_dir: Path) -> None:
        YamlTaskStore(state_dir).save(Task(id="t1", title="Persistent"))
        assert YamlTaskStore(state_dir).get("t1").title == "Persistent"

    def test_concurrent_saves_of_distinct_tasks(self, store: YamlTaskStore) -> None:
        def worker(n: int) -> None:
            store.save(Task(id=f"t{n}", title=f"Task {n}"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store.list()) == 8
