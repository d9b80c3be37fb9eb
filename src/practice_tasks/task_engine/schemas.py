"""Pydantic input models for the task engine operations.

Callers may pass plain dicts; :func:`parse_input` validates them and turns
pydantic's errors into the engine's :class:`ValidationError`.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, TypeVar, Union

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from ..errors import ValidationError
from ..utils import _to_iso
from .model import (
    AssigneeStrategy,
    AssignUserAction,
    Checklist,
    Condition,
    ConditionOperator,
    CreateTaskAction,
    Frequency,
    RecurringPolicy,
    Subtask,
    TaskPriority,
    TaskStatus,
    TaskTemplate,
    TriggerType,
    UpdateFieldAction,
    WorkflowAction,
    WorkflowRule,
)

M = TypeVar("M", bound=BaseModel)


def _iso_or_error(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    iso = _to_iso(value)
    if iso is None:
        raise ValueError(f"not a valid date: {value!r}")
    return iso


IsoDate = Annotated[Optional[Union[datetime, date, str]], AfterValidator(_iso_or_error)]


def parse_input(model_cls: type[M], data: Any) -> M:
    """Validate *data* (dict or model instance) as *model_cls*."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except pydantic.ValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ValidationError(
            f"Invalid {model_cls.__name__}: " + "; ".join(problems),
            problems=problems,
        ) from exc


# ---------------------------------------------------------------------------
# Workflow rules
# ---------------------------------------------------------------------------

class TriggerInput(BaseModel):
    type: TriggerType


class ConditionInput(BaseModel):
    field: str = Field(min_length=1)
    operator: ConditionOperator
    value: Any = None


class TemplateInput(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = None
    due_date_offset: Optional[int] = None
    label: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class CreateTaskActionInput(BaseModel):
    type: Literal["create_task"]
    template: TemplateInput


class AssignUserActionInput(BaseModel):
    type: Literal["assign_user"]
    user_id: str = Field(min_length=1)


class UpdateFieldActionInput(BaseModel):
    type: Literal["update_field"]
    field: str = Field(min_length=1)
    value: Any = None


ActionInput = Annotated[
    Union[CreateTaskActionInput, AssignUserActionInput, UpdateFieldActionInput],
    Field(discriminator="type"),
]


def _to_action(item: Union[CreateTaskActionInput, AssignUserActionInput, UpdateFieldActionInput]) -> WorkflowAction:
    if isinstance(item, CreateTaskActionInput):
        t = item.template
        return CreateTaskAction(
            template=TaskTemplate(
                title=t.title,
                description=t.description,
                priority=t.priority.value if t.priority else None,
                assigned_to=t.assigned_to,
                due_date_offset=t.due_date_offset,
                label=t.label,
                tags=list(t.tags),
            )
        )
    if isinstance(item, AssignUserActionInput):
        return AssignUserAction(user_id=item.user_id)
    return UpdateFieldAction(field=item.field, value=item.value)


class WorkflowRuleInput(BaseModel):
    name: str = Field(min_length=1)
    trigger: TriggerInput
    conditions: list[ConditionInput] = Field(default_factory=list)
    actions: list[ActionInput] = Field(min_length=1)
    is_active: bool = True

    def to_rule(self) -> WorkflowRule:
        return WorkflowRule(
            name=self.name,
            trigger=self.trigger.type,
            conditions=[Condition(field=c.field, operator=c.operator.value, value=c.value) for c in self.conditions],
            actions=[_to_action(a) for a in self.actions],
            is_active=self.is_active,
        )


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------

class RecurringInput(BaseModel):
    enabled: bool = True
    frequency: Frequency = Frequency.WEEKLY
    interval: int = Field(default=1, ge=1)
    end_date: IsoDate = None
    max_occurrences: Optional[int] = Field(default=None, ge=1)
    occurrences_completed: int = Field(default=0, ge=0)
    assignee_strategy: AssigneeStrategy = AssigneeStrategy.FIXED
    assignee_pool: list[str] = Field(default_factory=list)

    def to_policy(self) -> RecurringPolicy:
        return RecurringPolicy(
            enabled=self.enabled,
            frequency=self.frequency,
            interval=self.interval,
            end_date=self.end_date,
            max_occurrences=self.max_occurrences,
            occurrences_completed=self.occurrences_completed,
            assignee_strategy=self.assignee_strategy,
            assignee_pool=list(self.assignee_pool),
        )


# ---------------------------------------------------------------------------
# Task draft
# ---------------------------------------------------------------------------

class SubtaskInput(BaseModel):
    title: str = Field(min_length=1)
    completed: bool = False
    auto_reset: bool = False


class TaskDraft(BaseModel):
    """Everything a caller may supply when creating a task."""

    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    label: Optional[str] = None
    tags: list[str] = Field(default_factory=list)

    due_date: IsoDate = None
    due_time: Optional[str] = None
    start_date: IsoDate = None

    tenant_id: Optional[str] = None
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    parent_task_id: Optional[str] = None
    case_id: Optional[str] = None
    client_id: Optional[str] = None
    case_context: dict[str, Any] = Field(default_factory=dict)

    subtasks: list[SubtaskInput] = Field(default_factory=list)
    checklists: list[dict[str, Any]] = Field(default_factory=list)

    estimated_minutes: int = Field(default=0, ge=0)
    hourly_rate: float = Field(default=0.0, ge=0)

    recurring: Optional[RecurringInput] = None
    workflow_rules: list[WorkflowRuleInput] = Field(default_factory=list)
    blocked_by: list[str] = Field(default_factory=list)
    reminders: list[dict[str, Any]] = Field(default_factory=list)

    notes: Optional[str] = None
    points: int = Field(default=0, ge=0)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    def build_subtasks(self, now_iso: str) -> list[Subtask]:
        return [
            Subtask(
                title=s.title,
                completed=s.completed,
                completed_at=now_iso if s.completed else None,
                auto_reset=s.auto_reset,
            )
            for s in self.subtasks
        ]

    def build_checklists(self) -> list[Checklist]:
        return [Checklist.from_dict(c) for c in self.checklists]


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

class ProgressInput(BaseModel):
    """Either a pinned ``value`` or ``auto_calculate=True``."""

    value: Optional[int] = Field(default=None, ge=0, le=100)
    auto_calculate: bool = False

    @model_validator(mode="after")
    def _one_mode(self) -> "ProgressInput":
        if self.auto_calculate and self.value is not None:
            raise ValueError("pass either value or auto_calculate, not both")
        if not self.auto_calculate and self.value is None:
            raise ValueError("value is required unless auto_calculate is set")
        return self


class TaskUpdate(BaseModel):
    """Partial update of the plain task fields; only fields sent are applied."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    label: Optional[str] = None
    tags: Optional[list[str]] = None
    due_date: IsoDate = None
    due_time: Optional[str] = None
    start_date: IsoDate = None
    assigned_to: Optional[str] = None
    case_id: Optional[str] = None
    client_id: Optional[str] = None
    case_context: Optional[dict[str, Any]] = None
    reminders: Optional[list[dict[str, Any]]] = None
    notes: Optional[str] = None
    points: Optional[int] = Field(default=None, ge=0)

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class BulkUpdate(BaseModel):
    """Fields that may be set on many tasks at once."""

    model_config = ConfigDict(extra="forbid")

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = None
    due_date: IsoDate = None
    label: Optional[str] = None

    @model_validator(mode="after")
    def _not_empty(self) -> "BulkUpdate":
        if not self.model_fields_set:
            raise ValueError("at least one field is required")
        return self

    def field_changes(self) -> dict[str, Any]:
        """The sent fields other than ``status``."""
        return {name: getattr(self, name) for name in self.model_fields_set if name != "status"}
