"""Timer sessions, manual time entries and the derived cost budget.

``actual_minutes`` is never edited directly: it is recomputed from the closed
sessions, and the budget block (estimated/actual cost, variance) follows
from minutes and the hourly rate.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union

from ..config import DEFAULT_MAX_MANUAL_MINUTES
from ..errors import NoActiveTimerError, TimerAlreadyRunningError, ValidationError
from ..utils import _parse_iso, round_half_up, utc_now
from .model import Session, Task, _minutes


@dataclass
class UserTime:
    user_id: str
    minutes: Union[int, float] = 0
    cost: float = 0.0


@dataclass
class BudgetSummary:
    estimated: float = 0.0
    actual: float = 0.0
    remaining: float = 0.0
    variance: float = 0.0
    variance_percent: int = 0


@dataclass
class TimeSummary:
    estimated_minutes: int
    actual_minutes: Union[int, float]
    remaining_minutes: Union[int, float]
    percent_complete: int
    is_over_budget: bool
    budget: BudgetSummary
    by_user: list[UserTime] = field(default_factory=list)
    sessions: list[Session] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _cost(minutes: float, hourly_rate: float) -> float:
    return round(minutes / 60 * hourly_rate, 2)


def _non_negative(name: str, value: Any) -> Union[int, float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValidationError(f"'{name}' must be a non-negative number, got {value!r}", field=name)
    return value


class TimeBudgetTracker:
    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        max_manual_minutes: int = DEFAULT_MAX_MANUAL_MINUTES,
    ) -> None:
        self.clock = clock
        self.max_manual_minutes = max_manual_minutes

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def start_timer(self, task: Task, actor: Optional[str], notes: Optional[str] = None) -> Session:
        tracking = task.time_tracking
        # A single open session per task, whatever the flag says.
        if tracking.is_tracking or tracking.open_session() is not None:
            raise TimerAlreadyRunningError(task.id)

        now = self.clock().isoformat()
        session = Session(started_at=now, user_id=actor, notes=notes, is_billable=True)
        tracking.sessions.append(session)
        tracking.is_tracking = True
        tracking.current_session_start = now
        return session

    def stop_timer(
        self,
        task: Task,
        notes: Optional[str] = None,
        is_billable: Optional[bool] = None,
    ) -> Session:
        tracking = task.time_tracking
        if not tracking.is_tracking:
            raise NoActiveTimerError(task.id)
        session = tracking.open_session()
        if session is None:
            raise NoActiveTimerError(task.id)

        ended = self.clock()
        started = _parse_iso(session.started_at) or ended
        session.ended_at = ended.isoformat()
        session.duration = max(0, round_half_up((ended - started).total_seconds() / 60))
        if notes is not None:
            session.notes = notes
        if is_billable is not None:
            session.is_billable = bool(is_billable)

        tracking.is_tracking = False
        tracking.current_session_start = None
        # actual_minutes is the sum of closed sessions.
        tracking.actual_minutes = tracking.closed_minutes()
        self.refresh_budget(task)
        return session

    def add_manual_time(
        self,
        task: Task,
        actor: Optional[str],
        minutes: Any,
        date: Union[datetime, str, None] = None,
        notes: Optional[str] = None,
        is_billable: bool = True,
    ) -> Session:
        if isinstance(minutes, bool) or not isinstance(minutes, (int, float)):
            raise ValidationError(f"minutes must be a positive number, got {minutes!r}", field="minutes")
        if minutes <= 0:
            raise ValidationError("minutes must be a positive number", field="minutes")
        if minutes > self.max_manual_minutes:
            raise ValidationError(
                f"minutes cannot exceed {self.max_manual_minutes} for a single entry",
                field="minutes",
            )
        minutes = _minutes(minutes)

        if date is None:
            started = self.clock()
        else:
            started = _parse_iso(date)
            if started is None:
                raise ValidationError(f"not a valid date: {date!r}", field="date")

        session = Session(
            started_at=started.isoformat(),
            ended_at=(started + timedelta(minutes=minutes)).isoformat(),
            duration=minutes,
            user_id=actor,
            notes=notes,
            is_billable=bool(is_billable),
        )
        task.time_tracking.sessions.append(session)
        task.time_tracking.actual_minutes = _minutes(task.time_tracking.actual_minutes + minutes)
        self.refresh_budget(task)
        return session

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def update_estimate(
        self,
        task: Task,
        estimated_minutes: Optional[Any] = None,
        hourly_rate: Optional[Any] = None,
    ) -> None:
        if estimated_minutes is not None:
            task.time_tracking.estimated_minutes = int(_non_negative("estimated_minutes", estimated_minutes))
        if hourly_rate is not None:
            task.budget.hourly_rate = float(_non_negative("hourly_rate", hourly_rate))
        self.refresh_budget(task)

    @staticmethod
    def refresh_budget(task: Task) -> None:
        budget = task.budget
        tracking = task.time_tracking
        budget.estimated_cost = _cost(tracking.estimated_minutes, budget.hourly_rate)
        budget.actual_cost = _cost(tracking.actual_minutes, budget.hourly_rate)
        budget.variance = round(budget.actual_cost - budget.estimated_cost, 2)
        if budget.estimated_cost > 0:
            budget.variance_percent = round_half_up(budget.variance / budget.estimated_cost * 100)
        else:
            budget.variance_percent = 0

    def summary(self, task: Task) -> TimeSummary:
        tracking = task.time_tracking
        budget = task.budget
        estimated = tracking.estimated_minutes
        actual = tracking.actual_minutes

        by_user: dict[str, UserTime] = {}
        for session in tracking.sessions:
            if session.is_open or not session.user_id:
                continue
            entry = by_user.setdefault(session.user_id, UserTime(user_id=session.user_id))
            entry.minutes = _minutes(entry.minutes + (session.duration or 0))
            entry.cost = _cost(entry.minutes, budget.hourly_rate)

        return TimeSummary(
            estimated_minutes=estimated,
            actual_minutes=actual,
            remaining_minutes=max(0, estimated - actual),
            percent_complete=round_half_up(100 * actual / estimated) if estimated > 0 else 0,
            is_over_budget=actual > estimated,
            budget=BudgetSummary(
                estimated=budget.estimated_cost,
                actual=budget.actual_cost,
                remaining=max(0.0, round(budget.estimated_cost - budget.actual_cost, 2)),
                variance=budget.variance,
                variance_percent=budget.variance_percent,
            ),
            by_user=list(by_user.values()),
            sessions=list(tracking.sessions),
        )
