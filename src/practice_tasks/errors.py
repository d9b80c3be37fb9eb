"""Error kinds raised by the task engine.

Every error carries a stable ``code`` and renders to a JSON-friendly dict via
:meth:`TaskEngineError.to_dict` so hosts can map them onto responses.
"""

from __future__ import annotations

from typing import Any, Optional


class TaskEngineError(Exception):
    """Base class for all task engine failures."""

    code = "TASK_ENGINE_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(TaskEngineError, ValueError):
    """Bad enum value, out-of-range number or missing required field."""

    code = "VALIDATION_ERROR"


class NotFoundError(TaskEngineError, LookupError):
    """A referenced task, user or case does not exist."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}", kind=kind, id=identifier)
        self.kind = kind
        self.identifier = identifier


class DependencyError(TaskEngineError):
    """Dependency graph integrity violation."""

    code = "DEPENDENCY_ERROR"

    def __init__(self, message: str, task_id: str, depends_on_id: str) -> None:
        super().__init__(message, task_id=task_id, depends_on=depends_on_id)
        self.task_id = task_id
        self.depends_on_id = depends_on_id


class SelfDependencyError(DependencyError):
    code = "SELF_DEPENDENCY"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} cannot depend on itself", task_id, task_id)


class DuplicateDependencyError(DependencyError):
    code = "DUPLICATE_DEPENDENCY"

    def __init__(self, task_id: str, depends_on_id: str) -> None:
        super().__init__(
            f"Task {task_id} is already blocked by {depends_on_id}", task_id, depends_on_id
        )


class CircularDependencyError(DependencyError):
    code = "CIRCULAR_DEPENDENCY"

    def __init__(self, task_id: str, depends_on_id: str) -> None:
        super().__init__(
            f"Adding dependency {task_id} -> {depends_on_id} would create a cycle",
            task_id,
            depends_on_id,
        )


class BlockedError(TaskEngineError):
    """A status transition was refused because blockers are not done.

    ``blocking_tasks`` lists ``{"id", "title", "status"}`` for each
    incomplete blocker so callers can explain why the task cannot start.
    """

    code = "BLOCKED_BY_DEPENDENCIES"

    def __init__(self, task_id: str, blocking_tasks: list[dict[str, str]]) -> None:
        ids = ", ".join(b["id"] for b in blocking_tasks)
        super().__init__(
            f"Task {task_id} cannot start until these tasks are done: {ids}",
            task_id=task_id,
            blocking_tasks=blocking_tasks,
        )
        self.task_id = task_id
        self.blocking_tasks = blocking_tasks


class TimerStateError(TaskEngineError):
    code = "TIMER_STATE_ERROR"


class TimerAlreadyRunningError(TimerStateError):
    code = "TIMER_ALREADY_RUNNING"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"A timer is already running for task {task_id}", task_id=task_id)


class NoActiveTimerError(TimerStateError):
    code = "NO_ACTIVE_TIMER"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"No active timer found for task {task_id}", task_id=task_id)


class VersionConflictError(TaskEngineError):
    """Optimistic-concurrency collision; retry from a fresh read."""

    code = "VERSION_CONFLICT"

    def __init__(self, task_id: str, expected: Optional[int], actual: Optional[int]) -> None:
        super().__init__(
            f"Task {task_id} was modified concurrently (expected version {expected}, found {actual})",
            task_id=task_id,
            expected=expected,
            actual=actual,
        )
        self.task_id = task_id
        self.expected = expected
        self.actual = actual
