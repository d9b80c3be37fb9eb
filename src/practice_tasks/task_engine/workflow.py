"""Declarative automation rules attached to a task.

A rule fires when its trigger matches the event and every condition holds
(an empty condition list always matches). Its actions run in order and each
one is best-effort: a failing action is logged, recorded on the outcome and
skipped, and the remaining actions still run.
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from ..utils import _to_iso, utc_now
from .interfaces import TaskStore, UserDirectory
from .model import (
    AssignUserAction,
    Checklist,
    Condition,
    ConditionOperator,
    CreateTaskAction,
    HistoryEntry,
    RecurringPolicy,
    Task,
    TaskPriority,
    TriggerType,
    UpdateFieldAction,
    WorkflowAction,
    WorkflowRule,
)

# Fields owned by the engine's own operations; rules may not overwrite them.
PROTECTED_FIELDS = frozenset({
    "id",
    "tenant_id",
    "version",
    "status",
    "progress",
    "manual_progress",
    "subtasks",
    "blocked_by",
    "blocks",
    "history",
    "time_tracking",
    "budget",
    "completed_at",
    "completed_by",
    "created_at",
    "updated_at",
    "workflow_rules",
})

_TASK_FIELDS = {f.name: f for f in dataclasses.fields(Task)}
_ENUM_FIELDS: dict[str, type[Enum]] = {"priority": TaskPriority}
_PLACEHOLDER_RE = re.compile(r"\$\{(caseNumber|caseTitle|taskTitle)\}")


@dataclass
class ActionFailure:
    rule: str
    action: str
    error: str


@dataclass
class WorkflowOutcome:
    matched_rules: list[str] = field(default_factory=list)
    changes: dict[str, Any] = field(default_factory=dict)
    created: list[Task] = field(default_factory=list)
    failures: list[ActionFailure] = field(default_factory=list)


class WorkflowActionError(Exception):
    """An individual action could not be carried out."""


def _field_value(task: Task, name: str) -> Any:
    value = getattr(task, name, None)
    return value.value if isinstance(value, Enum) else value


def condition_holds(task: Task, condition: Condition) -> bool:
    actual = _field_value(task, condition.field)
    expected = condition.value
    op = condition.operator
    if op == ConditionOperator.EQUALS.value:
        return actual == expected
    if op == ConditionOperator.NOT_EQUALS.value:
        return actual != expected
    if op == ConditionOperator.CONTAINS.value:
        if isinstance(actual, str):
            return isinstance(expected, str) and expected in actual
        if isinstance(actual, (list, tuple, set)):
            return expected in actual
        return False
    if op in (ConditionOperator.GREATER_THAN.value, ConditionOperator.LESS_THAN.value):
        if actual is None or expected is None:
            return False
        try:
            return actual > expected if op == ConditionOperator.GREATER_THAN.value else actual < expected
        except TypeError:
            return False
    return False


def interpolate(text: Optional[str], task: Task) -> Optional[str]:
    """Fill ``${caseNumber}``, ``${caseTitle}`` and ``${taskTitle}`` from *task*."""
    if not text:
        return text
    values = {
        "caseNumber": str(task.case_context.get("case_number") or ""),
        "caseTitle": str(task.case_context.get("title") or ""),
        "taskTitle": task.title or "",
    }
    return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], text)


class WorkflowEngine:
    def __init__(
        self,
        store: TaskStore,
        users: Optional[UserDirectory] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.users = users
        self.clock = clock

    def matching_rules(self, task: Task, trigger_type: TriggerType) -> list[WorkflowRule]:
        matched: list[WorkflowRule] = []
        for rule in task.workflow_rules:
            if not rule.is_active or rule.trigger != trigger_type:
                continue
            if all(condition_holds(task, c) for c in rule.conditions):
                matched.append(rule)
        return matched

    def evaluate(self, task: Task, trigger_type: TriggerType, actor: Optional[str]) -> WorkflowOutcome:
        """Run every matching rule's actions against *task*.

        Field changes are applied to *task* in memory and listed in
        ``outcome.changes`` for the caller to persist; follow-up tasks are
        saved straight away.
        """
        outcome = WorkflowOutcome()
        for rule in self.matching_rules(task, trigger_type):
            outcome.matched_rules.append(rule.name)
            logger.debug("Workflow rule {!r} matched {} on {}", rule.name, task.id, trigger_type.value)
            for action in rule.actions:
                try:
                    self._execute(task, action, rule, actor, outcome)
                except Exception as exc:
                    logger.warning(
                        "Workflow action {} of rule {!r} on {} failed: {}",
                        action.type,
                        rule.name,
                        task.id,
                        exc,
                    )
                    outcome.failures.append(ActionFailure(rule=rule.name, action=action.type, error=str(exc)))
        return outcome

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _execute(
        self,
        task: Task,
        action: WorkflowAction,
        rule: WorkflowRule,
        actor: Optional[str],
        outcome: WorkflowOutcome,
    ) -> None:
        if isinstance(action, CreateTaskAction):
            outcome.created.append(self._create_follow_up(task, action, rule, actor))
        elif isinstance(action, AssignUserAction):
            if self.users is not None and not self.users.exists(action.user_id):
                raise WorkflowActionError(f"user not found: {action.user_id}")
            task.assigned_to = action.user_id
            outcome.changes["assigned_to"] = action.user_id
        elif isinstance(action, UpdateFieldAction):
            value = coerce_field_value(action.field, action.value)
            setattr(task, action.field, value)
            outcome.changes[action.field] = value
        else:
            raise WorkflowActionError(f"unsupported action: {action!r}")

    def _create_follow_up(
        self,
        task: Task,
        action: CreateTaskAction,
        rule: WorkflowRule,
        actor: Optional[str],
    ) -> Task:
        template = action.template
        now = self.clock()
        due_date = None
        if template.due_date_offset is not None:
            due_date = (now + timedelta(days=template.due_date_offset)).isoformat()
        priority = TaskPriority(template.priority) if template.priority else task.priority

        follow_up = Task(
            tenant_id=task.tenant_id,
            title=interpolate(template.title, task) or f"Follow-up: {task.title}",
            description=interpolate(template.description, task) or "",
            priority=priority,
            label=template.label,
            tags=list(template.tags),
            due_date=due_date,
            assigned_to=template.assigned_to or task.assigned_to,
            created_by=actor,
            parent_task_id=task.id,
            case_id=task.case_id,
            client_id=task.client_id,
            case_context=dict(task.case_context),
            created_at=now.isoformat(),
            history=[
                HistoryEntry(
                    action="created",
                    user_id=actor,
                    changes={"rule": rule.name, "source_task": task.id},
                    timestamp=now.isoformat(),
                )
            ],
        )
        saved = self.store.save(follow_up)
        logger.info("Workflow rule {!r} created follow-up {} for {}", rule.name, saved.id, task.id)
        return saved


def _expect(name: str, value: Any, kind: type, optional: bool = False) -> Any:
    if value is None and optional:
        return None
    if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
        raise WorkflowActionError(f"{name} expects {kind.__name__}, got {type(value).__name__}")
    return value


def _list_of(name: str, value: Any, kind: type) -> list[Any]:
    items = _expect(name, value, list)
    if not all(isinstance(item, kind) for item in items):
        raise WorkflowActionError(f"{name} expects a list of {kind.__name__}")
    return list(items)


def _as_date(name: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    iso = _to_iso(value)
    if iso is None:
        raise WorkflowActionError(f"{name} expects a date, got {value!r}")
    return iso


# Nested records are rebuilt through their own loaders.
_STRUCTURED: dict[str, Callable[[str, Any], Any]] = {
    "recurring": lambda name, v: RecurringPolicy.from_dict(_expect(name, v, dict, optional=True)),
    "checklists": lambda name, v: [Checklist.from_dict(c) for c in _list_of(name, v, dict)],
    "reminders": lambda name, v: [dict(r) for r in _list_of(name, v, dict)],
    "case_context": lambda name, v: dict(_expect(name, v, dict)),
    "tags": lambda name, v: [str(t) for t in _list_of(name, v, str)],
    "due_date": _as_date,
    "start_date": _as_date,
    "outcome_date": _as_date,
}

# Declared annotation -> (python type, None allowed)
_SCALARS: dict[str, tuple[type, bool]] = {
    "str": (str, False),
    "Optional[str]": (str, True),
    "int": (int, False),
    "bool": (bool, False),
}


def coerce_field_value(name: str, value: Any) -> Any:
    """Validate an ``update_field`` target and build a value of the field's type.

    Raises :class:`WorkflowActionError` for protected or unknown fields and
    for values that do not fit the field, so the task is never left holding
    a value it cannot serialize.
    """
    if name in PROTECTED_FIELDS:
        raise WorkflowActionError(f"field {name!r} cannot be set by a workflow rule")
    if name not in _TASK_FIELDS:
        raise WorkflowActionError(f"unknown task field {name!r}")
    enum_cls = _ENUM_FIELDS.get(name)
    if enum_cls is not None:
        try:
            return enum_cls(value)
        except ValueError as exc:
            raise WorkflowActionError(f"invalid value for {name}: {value!r}") from exc
    builder = _STRUCTURED.get(name)
    if builder is not None:
        try:
            return builder(name, value)
        except (TypeError, ValueError) as exc:
            raise WorkflowActionError(f"invalid value for {name}: {exc}") from exc
    declared = _TASK_FIELDS[name].type
    if declared not in _SCALARS:
        raise WorkflowActionError(f"field {name!r} cannot be set by a workflow rule")
    kind, optional = _SCALARS[declared]
    value = _expect(name, value, kind, optional)
    if name == "title" and not value.strip():
        raise WorkflowActionError("title must not be blank")
    return value
