from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from .model import Task


class TaskStore(ABC):
    """Durable task records keyed by task ID.

    ``save`` must implement optimistic concurrency: a record whose
    ``version`` no longer matches the stored one is rejected with
    :class:`~practice_tasks.errors.VersionConflictError`.
    """

    @abstractmethod
    def get(self, task_id: str) -> Task:
        raise NotImplementedError

    @abstractmethod
    def find_by_ids(self, task_ids: Iterable[str]) -> list[Task]:
        raise NotImplementedError

    @abstractmethod
    def save(self, task: Task) -> Task:
        raise NotImplementedError

    @abstractmethod
    def delete(self, task_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list(self, tenant_id: Optional[str] = None) -> list[Task]:
        raise NotImplementedError


class UserDirectory(ABC):
    @abstractmethod
    def exists(self, user_id: str) -> bool:
        raise NotImplementedError


class CaseDirectory(ABC):
    @abstractmethod
    def exists(self, case_id: str, tenant_id: Optional[str]) -> bool:
        raise NotImplementedError
