"""File-based task store with optimistic versioning.

Stores tasks in a single YAML file (``tasks.yaml``) inside the state
directory. Every access goes through a :class:`FileLock`; writes are atomic
(write-tmp-then-rename) and each record carries a ``version`` that ``save``
checks and bumps, so two writers holding the same version cannot both
commit.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from ..errors import NotFoundError, VersionConflictError
from ..io_utils import FileLock, _atomic_write_yaml, _load_data_with_error
from ..utils import utc_now
from .interfaces import TaskStore
from .model import Task

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STORE_FILENAME = "tasks.yaml"
LOCK_FILENAME = "tasks.lock"
STORE_FORMAT_VERSION = 1


class YamlTaskStore(TaskStore):
    """Process- and thread-safe, file-backed :class:`TaskStore`.

    Parameters
    ----------
    state_dir:
        Directory holding ``tasks.yaml`` and its lock file.
    clock:
        Source of the ``updated_at`` stamp written on every save.
    """

    def __init__(self, state_dir: Path, clock: Callable[[], datetime] = utc_now) -> None:
        self.clock = clock
        self._state_dir = state_dir
        self._store_path = state_dir / STORE_FILENAME
        self._lock_path = state_dir / LOCK_FILENAME

    # -- internal helpers ---------------------------------------------------

    def _locked(self) -> FileLock:
        # A fresh handle per access; flock serialises threads as well as processes.
        return FileLock(self._lock_path)

    def _load_raw(self) -> list[dict[str, Any]]:
        data, err = _load_data_with_error(self._store_path, {})
        if err:
            # Refuse to continue rather than overwrite a damaged store.
            raise RuntimeError(f"Task store is unreadable: {err}")
        tasks = data.get("tasks")
        return [t for t in tasks if isinstance(t, dict)] if isinstance(tasks, list) else []

    def _save_raw(self, tasks: list[dict[str, Any]]) -> None:
        _atomic_write_yaml(self._store_path, {"version": STORE_FORMAT_VERSION, "tasks": tasks})

    # -- TaskStore ----------------------------------------------------------

    def get(self, task_id: str) -> Task:
        with self._locked():
            for raw in self._load_raw():
                if raw.get("id") == task_id:
                    return Task.from_dict(raw)
        raise NotFoundError("Task", task_id)

    def find_by_ids(self, task_ids: Iterable[str]) -> list[Task]:
        wanted = set(task_ids)
        if not wanted:
            return []
        with self._locked():
            return [Task.from_dict(raw) for raw in self._load_raw() if raw.get("id") in wanted]

    def save(self, task: Task) -> Task:
        """Commit *task* if its version matches the stored record.

        New tasks carry version ``0``. On success the stored version is
        bumped and the returned copy (and *task* itself) carry the new one.
        """
        with self._locked():
            records = self._load_raw()
            index: Optional[int] = None
            for i, raw in enumerate(records):
                if raw.get("id") == task.id:
                    index = i
                    break

            if index is None:
                if task.version != 0:
                    raise VersionConflictError(task.id, task.version, None)
            else:
                stored = int(records[index].get("version") or 0)
                if stored != task.version:
                    raise VersionConflictError(task.id, task.version, stored)

            task.touch(self.clock().isoformat())
            data = task.to_dict()
            data["version"] = task.version + 1
            if index is None:
                records.append(data)
            else:
                records[index] = data
            self._save_raw(records)
            task.version = data["version"]
            return Task.from_dict(data)

    def delete(self, task_id: str) -> bool:
        with self._locked():
            records = self._load_raw()
            kept = [r for r in records if r.get("id") != task_id]
            if len(kept) == len(records):
                return False
            self._save_raw(kept)
            return True

    def list(self, tenant_id: Optional[str] = None) -> list[Task]:
        with self._locked():
            return [
                Task.from_dict(raw)
                for raw in self._load_raw()
                if tenant_id is None or raw.get("tenant_id") == tenant_id
            ]
