"""Task model for the practice task engine.

This module defines the task record and its nested value objects: subtasks,
checklists, time-tracking sessions, budget, recurrence policy, workflow
rules and the audit history. Everything serializes to plain dicts for
YAML/JSON persistence through ``to_dict()`` / ``from_dict()``.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from ..utils import _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    TODO = "todo"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.DONE, TaskStatus.CANCELED)


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def sort_key(self) -> int:
        return {"urgent": 0, "high": 1, "medium": 2, "low": 3}[self.value]


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class AssigneeStrategy(str, Enum):
    FIXED = "fixed"
    ROUND_ROBIN = "round_robin"
    RANDOM = "random"


class TriggerType(str, Enum):
    COMPLETION = "completion"
    STATUS_CHANGE = "status_change"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


def _coerce_enum(enum_cls: type[Enum], raw: Any, default: Any) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except ValueError:
        return default


def _opt_int(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    return int(raw)


def _minutes(raw: Any) -> Union[int, float]:
    """Minutes as an int when whole, otherwise a float rounded to 2 places."""
    value = round(float(raw or 0), 2)
    return int(value) if value.is_integer() else value


def _plain(value: Any) -> Any:
    """Recursively turn enums into their values for serialization."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Structure: subtasks and checklists
# ---------------------------------------------------------------------------

@dataclass
class Subtask:
    id: str = field(default_factory=lambda: _id("sub"))
    title: str = ""
    completed: bool = False
    completed_at: Optional[str] = None
    auto_reset: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        return cls(
            id=str(data.get("id") or _id("sub")),
            title=str(data.get("title") or ""),
            completed=bool(data.get("completed", False)),
            completed_at=data.get("completed_at"),
            auto_reset=bool(data.get("auto_reset", False)),
        )


@dataclass
class ChecklistItem:
    text: str = ""
    completed: bool = False


@dataclass
class Checklist:
    id: str = field(default_factory=lambda: _id("chk"))
    title: str = ""
    items: list[ChecklistItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Checklist":
        items = [
            ChecklistItem(text=str(i.get("text") or ""), completed=bool(i.get("completed", False)))
            for i in list(data.get("items") or [])
            if isinstance(i, dict)
        ]
        return cls(id=str(data.get("id") or _id("chk")), title=str(data.get("title") or ""), items=items)


# ---------------------------------------------------------------------------
# Time tracking and budget
# ---------------------------------------------------------------------------

@dataclass
class Session:
    """One contiguous interval of tracked work time."""

    id: str = field(default_factory=lambda: _id("sess"))
    started_at: str = field(default_factory=_now_iso)
    ended_at: Optional[str] = None
    duration: Union[int, float] = 0  # minutes
    user_id: Optional[str] = None
    notes: Optional[str] = None
    is_billable: bool = True

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        return cls(
            id=str(data.get("id") or _id("sess")),
            started_at=str(data.get("started_at") or _now_iso()),
            ended_at=data.get("ended_at"),
            duration=_minutes(data.get("duration")),
            user_id=data.get("user_id"),
            notes=data.get("notes"),
            is_billable=bool(data.get("is_billable", True)),
        )


@dataclass
class TimeTracking:
    estimated_minutes: int = 0
    actual_minutes: Union[int, float] = 0
    is_tracking: bool = False
    current_session_start: Optional[str] = None
    sessions: list[Session] = field(default_factory=list)

    def open_session(self) -> Optional[Session]:
        for session in self.sessions:
            if session.is_open:
                return session
        return None

    def closed_minutes(self) -> Union[int, float]:
        return _minutes(sum(s.duration or 0 for s in self.sessions if not s.is_open))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["sessions"] = [s.to_dict() for s in self.sessions]
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "TimeTracking":
        data = data or {}
        return cls(
            estimated_minutes=int(data.get("estimated_minutes") or 0),
            actual_minutes=_minutes(data.get("actual_minutes")),
            is_tracking=bool(data.get("is_tracking", False)),
            current_session_start=data.get("current_session_start"),
            sessions=[Session.from_dict(s) for s in list(data.get("sessions") or []) if isinstance(s, dict)],
        )


@dataclass
class Budget:
    hourly_rate: float = 0.0
    estimated_cost: float = 0.0
    actual_cost: float = 0.0
    variance: float = 0.0
    variance_percent: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Budget":
        data = data or {}
        return cls(
            hourly_rate=float(data.get("hourly_rate") or 0),
            estimated_cost=float(data.get("estimated_cost") or 0),
            actual_cost=float(data.get("actual_cost") or 0),
            variance=float(data.get("variance") or 0),
            variance_percent=int(data.get("variance_percent") or 0),
        )


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------

@dataclass
class RecurringPolicy:
    enabled: bool = False
    frequency: Frequency = Frequency.WEEKLY
    interval: int = 1
    end_date: Optional[str] = None
    max_occurrences: Optional[int] = None
    occurrences_completed: int = 0
    assignee_strategy: AssigneeStrategy = AssigneeStrategy.FIXED
    assignee_pool: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["RecurringPolicy"]:
        if not data:
            return None
        return cls(
            enabled=bool(data.get("enabled", False)),
            frequency=_coerce_enum(Frequency, data.get("frequency"), Frequency.WEEKLY),
            interval=int(data.get("interval") or 1),
            end_date=data.get("end_date"),
            max_occurrences=_opt_int(data.get("max_occurrences")),
            occurrences_completed=int(data.get("occurrences_completed") or 0),
            assignee_strategy=_coerce_enum(AssigneeStrategy, data.get("assignee_strategy"), AssigneeStrategy.FIXED),
            assignee_pool=[str(u) for u in list(data.get("assignee_pool") or [])],
        )


# ---------------------------------------------------------------------------
# Workflow rules
# ---------------------------------------------------------------------------

@dataclass
class Condition:
    field: str
    operator: str  # a ConditionOperator value; unknown operators never match
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}


@dataclass
class TaskTemplate:
    """Blueprint for a follow-up task created by a workflow rule."""

    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    due_date_offset: Optional[int] = None  # days from now
    label: Optional[str] = None
    tags: list[str] = field(default_factory=list)


@dataclass
class CreateTaskAction:
    template: TaskTemplate
    type: str = "create_task"


@dataclass
class AssignUserAction:
    user_id: str
    type: str = "assign_user"


@dataclass
class UpdateFieldAction:
    field: str
    value: Any = None
    type: str = "update_field"


WorkflowAction = Union[CreateTaskAction, AssignUserAction, UpdateFieldAction]


def action_from_dict(data: dict[str, Any]) -> WorkflowAction:
    """Build the tagged action variant named by ``data["type"]``."""
    kind = data.get("type")
    if kind == "create_task":
        raw = data.get("template") or data.get("task_template") or {}
        template = TaskTemplate(
            title=raw.get("title"),
            description=raw.get("description"),
            priority=raw.get("priority"),
            assigned_to=raw.get("assigned_to"),
            due_date_offset=_opt_int(raw.get("due_date_offset")),
            label=raw.get("label"),
            tags=list(raw.get("tags") or []),
        )
        return CreateTaskAction(template=template)
    if kind == "assign_user":
        return AssignUserAction(user_id=str(data.get("user_id") or data.get("value") or ""))
    if kind == "update_field":
        return UpdateFieldAction(field=str(data.get("field") or ""), value=data.get("value"))
    raise ValueError(f"Unknown workflow action type: {kind!r}")


def action_to_dict(action: WorkflowAction) -> dict[str, Any]:
    return asdict(action)


@dataclass
class WorkflowRule:
    name: str
    trigger: TriggerType = TriggerType.COMPLETION
    conditions: list[Condition] = field(default_factory=list)
    actions: list[WorkflowAction] = field(default_factory=list)
    is_active: bool = True
    id: str = field(default_factory=lambda: _id("rule"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "trigger": {"type": self.trigger.value},
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [action_to_dict(a) for a in self.actions],
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowRule":
        trigger = data.get("trigger") or {}
        trigger_type = trigger.get("type") if isinstance(trigger, dict) else trigger
        return cls(
            id=str(data.get("id") or _id("rule")),
            name=str(data.get("name") or ""),
            trigger=_coerce_enum(TriggerType, trigger_type, TriggerType.COMPLETION),
            conditions=[
                Condition(
                    field=str(c.get("field") or ""),
                    operator=str(c.get("operator") or ""),
                    value=c.get("value"),
                )
                for c in list(data.get("conditions") or [])
            ],
            actions=[action_from_dict(a) for a in list(data.get("actions") or [])],
            is_active=bool(data.get("is_active", True)),
        )


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

@dataclass
class HistoryEntry:
    action: str
    user_id: Optional[str] = None
    changes: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            action=str(data.get("action") or ""),
            user_id=data.get("user_id"),
            changes=dict(data.get("changes") or {}),
            timestamp=str(data.get("timestamp") or _now_iso()),
        )


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A practice task with dependencies, time tracking and automation."""

    # Identity
    id: str = field(default_factory=lambda: _id("task"))
    tenant_id: Optional[str] = None
    version: int = 0

    # Classification
    title: str = ""
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    label: Optional[str] = None
    tags: list[str] = field(default_factory=list)

    # Scheduling
    due_date: Optional[str] = None
    due_time: Optional[str] = None
    start_date: Optional[str] = None

    # Ownership
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    parent_task_id: Optional[str] = None
    case_id: Optional[str] = None
    client_id: Optional[str] = None
    case_context: dict[str, Any] = field(default_factory=dict)  # {"case_number", "title"}

    # Structure
    subtasks: list[Subtask] = field(default_factory=list)
    checklists: list[Checklist] = field(default_factory=list)

    # Dependencies
    blocked_by: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)

    # Time and money
    time_tracking: TimeTracking = field(default_factory=TimeTracking)
    budget: Budget = field(default_factory=Budget)

    progress: int = 0
    manual_progress: bool = False

    # Automation
    recurring: Optional[RecurringPolicy] = None
    workflow_rules: list[WorkflowRule] = field(default_factory=list)
    reminders: list[dict[str, Any]] = field(default_factory=list)

    # Free-form extras
    notes: Optional[str] = None
    points: int = 0
    outcome: Optional[str] = None
    outcome_notes: Optional[str] = None
    outcome_date: Optional[str] = None

    history: list[HistoryEntry] = field(default_factory=list)

    completed_at: Optional[str] = None
    completed_by: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data = _plain(asdict(self))
        data["time_tracking"] = self.time_tracking.to_dict()
        data["recurring"] = self.recurring.to_dict() if self.recurring else None
        data["workflow_rules"] = [r.to_dict() for r in self.workflow_rules]
        data["history"] = [h.to_dict() for h in self.history]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        return cls(
            id=str(data.get("id") or _id("task")),
            tenant_id=data.get("tenant_id"),
            version=int(data.get("version") or 0),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            priority=_coerce_enum(TaskPriority, data.get("priority"), TaskPriority.MEDIUM),
            status=_coerce_enum(TaskStatus, data.get("status"), TaskStatus.TODO),
            label=data.get("label"),
            tags=list(data.get("tags") or []),
            due_date=data.get("due_date"),
            due_time=data.get("due_time"),
            start_date=data.get("start_date"),
            assigned_to=data.get("assigned_to"),
            created_by=data.get("created_by"),
            parent_task_id=data.get("parent_task_id"),
            case_id=data.get("case_id"),
            client_id=data.get("client_id"),
            case_context=dict(data.get("case_context") or {}),
            subtasks=[Subtask.from_dict(s) for s in list(data.get("subtasks") or []) if isinstance(s, dict)],
            checklists=[Checklist.from_dict(c) for c in list(data.get("checklists") or []) if isinstance(c, dict)],
            blocked_by=[str(i) for i in list(data.get("blocked_by") or [])],
            blocks=[str(i) for i in list(data.get("blocks") or [])],
            time_tracking=TimeTracking.from_dict(data.get("time_tracking")),
            budget=Budget.from_dict(data.get("budget")),
            progress=int(data.get("progress") or 0),
            manual_progress=bool(data.get("manual_progress", False)),
            recurring=RecurringPolicy.from_dict(data.get("recurring")),
            workflow_rules=[WorkflowRule.from_dict(r) for r in list(data.get("workflow_rules") or [])],
            reminders=list(data.get("reminders") or []),
            notes=data.get("notes"),
            points=int(data.get("points") or 0),
            outcome=data.get("outcome"),
            outcome_notes=data.get("outcome_notes"),
            outcome_date=data.get("outcome_date"),
            history=[HistoryEntry.from_dict(h) for h in list(data.get("history") or [])],
            completed_at=data.get("completed_at"),
            completed_by=data.get("completed_by"),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def touch(self, now: Optional[str] = None) -> None:
        """Set ``updated_at`` to *now* (an ISO string), or the wall clock."""
        self.updated_at = now or _now_iso()

    def record(self, action: str, user_id: Optional[str], timestamp: str, **changes: Any) -> HistoryEntry:
        """Append an audit entry. History is append-only."""
        entry = HistoryEntry(action=action, user_id=user_id, changes=changes, timestamp=timestamp)
        self.history.append(entry)
        return entry

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def find_subtask(self, subtask_id: str) -> Optional[Subtask]:
        for sub in self.subtasks:
            if sub.id == subtask_id:
                return sub
        return None

    # ------------------------------------------------------------------
    # Dependency helpers
    # ------------------------------------------------------------------

    def add_blocked_by(self, task_id: str) -> None:
        if task_id not in self.blocked_by:
            self.blocked_by.append(task_id)

    def remove_blocked_by(self, task_id: str) -> None:
        if task_id in self.blocked_by:
            self.blocked_by.remove(task_id)

    def add_blocks(self, task_id: str) -> None:
        if task_id not in self.blocks:
            self.blocks.append(task_id)

    def remove_blocks(self, task_id: str) -> None:
        if task_id in self.blocks:
            self.blocks.remove(task_id)
