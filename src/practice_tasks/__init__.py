"""Provide the public `practice_tasks` package exports."""

from __future__ import annotations

from .config import TaskEngineSettings
from .errors import (
    BlockedError,
    CircularDependencyError,
    DependencyError,
    DuplicateDependencyError,
    NoActiveTimerError,
    NotFoundError,
    SelfDependencyError,
    TaskEngineError,
    TimerAlreadyRunningError,
    TimerStateError,
    ValidationError,
    VersionConflictError,
)
from .task_engine.directories import StaticCaseDirectory, StaticUserDirectory
from .task_engine.engine import CompletionResult, TaskEngine, TaskStats

__all__ = [
    "BlockedError",
    "CircularDependencyError",
    "CompletionResult",
    "DependencyError",
    "DuplicateDependencyError",
    "NoActiveTimerError",
    "NotFoundError",
    "SelfDependencyError",
    "StaticCaseDirectory",
    "StaticUserDirectory",
    "TaskEngine",
    "TaskEngineError",
    "TaskEngineSettings",
    "TaskStats",
    "TimerAlreadyRunningError",
    "TimerStateError",
    "ValidationError",
    "VersionConflictError",
]
