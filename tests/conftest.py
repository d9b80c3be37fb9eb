"""Shared fixtures for the task engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from practice_tasks.task_engine.engine import TaskEngine
from practice_tasks.task_engine.store import YamlTaskStore


class FakeClock:
    """Deterministic clock; call it for the current time, ``advance`` to move it."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".practice_tasks"
    d.mkdir()
    return d


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(state_dir: Path, clock: FakeClock) -> YamlTaskStore:
    return YamlTaskStore(state_dir, clock)


@pytest.fixture
def engine(state_dir: Path, clock: FakeClock) -> TaskEngine:
    return TaskEngine(state_dir, clock=clock)
