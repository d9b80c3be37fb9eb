"""Task engine: the operations hosts call to manipulate practice tasks.

This is the primary entry-point. It wraps a :class:`TaskStore` with the
business rules (dependency gating, progress-driven completion, time and
budget accounting, recurrence and workflow automation).

Every mutation is a read-modify-write against the store's optimistic
versioning: the task is re-read and the change re-applied when a concurrent
writer got there first. Completion side effects (workflow rules, then the
next recurring instance) run only after the completing write has committed,
so a retried write can never fire them twice.
"""

from __future__ import annotations

import random
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar, Union

from loguru import logger

from ..config import TaskEngineSettings
from ..errors import NotFoundError, ValidationError, VersionConflictError
from ..utils import _parse_iso, utc_now
from .dependencies import DependencyGraph
from .interfaces import CaseDirectory, TaskStore, UserDirectory
from .model import (
    AssignUserAction,
    Subtask,
    Task,
    TaskPriority,
    TaskStatus,
    TimeTracking,
    TriggerType,
    _coerce_enum,
)
from .progress import ProgressTracker
from .recurrence import RecurrenceScheduler
from .schemas import (
    BulkUpdate,
    ProgressInput,
    RecurringInput,
    TaskDraft,
    TaskUpdate,
    WorkflowRuleInput,
    parse_input,
)
from .status import StatusMachine, TransitionResult
from .store import YamlTaskStore
from .time_budget import TimeBudgetTracker, TimeSummary
from .workflow import WorkflowEngine, WorkflowOutcome

T = TypeVar("T")

COMPLETION_NOTE_PREFIX = "[Completion Note]: "

# Plain fields update_task may change but never set to None.
_REQUIRED_FIELDS = frozenset({"title", "description", "priority", "tags", "case_context", "reminders", "points"})


@dataclass
class CompletionResult:
    """What completing a task produced."""

    task: Task
    next_task: Optional[Task] = None
    workflow: WorkflowOutcome = field(default_factory=WorkflowOutcome)
    completed: bool = True  # False when the task was already done


@dataclass
class TaskStats:
    """Counts over a set of tasks; overdue and due-today only count open tasks."""

    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)
    overdue: int = 0
    due_today: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class TaskEngine:
    """Manage the full lifecycle of practice tasks.

    Parameters
    ----------
    state_dir:
        Directory holding ``tasks.yaml`` and the optional ``config.yaml``.
        May be ``None`` when both *store* and *settings* are supplied.
    store:
        Overrides the default :class:`YamlTaskStore`.
    users, cases:
        Directories used to validate assignees and linked cases. ``None``
        skips that check.
    clock:
        Returns the current time; every timestamp the engine writes comes
        from it.
    """

    def __init__(
        self,
        state_dir: Optional[Path] = None,
        *,
        store: Optional[TaskStore] = None,
        users: Optional[UserDirectory] = None,
        cases: Optional[CaseDirectory] = None,
        settings: Optional[TaskEngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ) -> None:
        if store is None:
            if state_dir is None:
                raise ValueError("state_dir is required when no store is given")
            store = YamlTaskStore(state_dir, clock)
        if settings is None:
            settings = TaskEngineSettings.load(state_dir) if state_dir is not None else TaskEngineSettings()

        self.store = store
        self.users = users
        self.cases = cases
        self.settings = settings
        self.clock = clock

        self.graph = DependencyGraph(store)
        self.progress = ProgressTracker()
        self.status = StatusMachine(self.graph, self.progress, clock)
        self.time = TimeBudgetTracker(clock, settings.max_manual_minutes)
        self.recurrence = RecurrenceScheduler(clock, rng)
        self.workflow = WorkflowEngine(store, users, clock)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _now(self) -> str:
        return self.clock().isoformat()

    def _mutate(self, task_id: str, fn: Callable[[Task], T]) -> tuple[Task, T]:
        """Read *task_id*, apply *fn* and save, retrying on version conflicts.

        *fn* runs against a fresh copy on every attempt, so it must only
        touch the task it is given. Errors raised by *fn* abort the write.
        """
        attempt = 0
        while True:
            task = self.store.get(task_id)
            result = fn(task)
            try:
                return self.store.save(task), result
            except VersionConflictError:
                attempt += 1
                if attempt > self.settings.max_retries:
                    logger.error("Giving up on {} after {} version conflicts", task_id, attempt)
                    raise
                logger.warning(
                    "Version conflict on {}; retrying ({}/{})",
                    task_id,
                    attempt,
                    self.settings.max_retries,
                )

    def _require_user(self, user_id: Optional[str]) -> None:
        if user_id and self.users is not None and not self.users.exists(user_id):
            raise NotFoundError("User", user_id)

    def _require_case(self, case_id: Optional[str], tenant_id: Optional[str]) -> None:
        if case_id and self.cases is not None and not self.cases.exists(case_id, tenant_id):
            raise NotFoundError("Case", case_id)

    def _complete_in_place(self, task: Task, actor: Optional[str]) -> TransitionResult:
        return self.status.transition(task, TaskStatus.DONE, actor)

    def _finish(self, saved: Task, result: Any, actor: Optional[str]) -> CompletionResult:
        """Run the post-commit automation for a committed status change."""
        if not isinstance(result, TransitionResult):
            return CompletionResult(task=saved, completed=False)
        if result.previous != saved.status:
            self._run_workflow(saved, TriggerType.STATUS_CHANGE, actor)
            saved = self.store.get(saved.id)
        if not result.completed:
            return CompletionResult(task=saved, completed=False)
        return self._after_completion(saved, actor)

    def _after_completion(self, task: Task, actor: Optional[str]) -> CompletionResult:
        outcome = self._run_workflow(task, TriggerType.COMPLETION, actor)
        # Rules mutate the object they are handed; spawn from the stored record.
        task, next_task = self._spawn_next(task.id)
        return CompletionResult(task=task, next_task=next_task, workflow=outcome)

    def _run_workflow(self, task: Task, trigger: TriggerType, actor: Optional[str]) -> WorkflowOutcome:
        """Evaluate *task*'s rules for *trigger* and persist the field changes."""
        outcome = self.workflow.evaluate(task, trigger, actor)
        if not outcome.changes:
            return outcome
        changes = dict(outcome.changes)

        def apply(current: Task) -> None:
            for name, value in changes.items():
                setattr(current, name, value)
            current.record("workflow_applied", actor, self._now(), rules=list(outcome.matched_rules), **changes)

        try:
            self._mutate(task.id, apply)
        except Exception:
            logger.exception("Failed to persist workflow changes on {}", task.id)
        return outcome

    def _spawn_next(self, task_id: str) -> tuple[Task, Optional[Task]]:
        """Count the occurrence and save the next instance of a recurring task."""
        try:
            task = self.store.get(task_id)
            if task.recurring is None or not task.recurring.enabled:
                return task, None
            saved, next_task = self._mutate(task_id, self.recurrence.plan_next)
            if next_task is None:
                return saved, None
            spawned = self.store.save(next_task)
        except Exception:
            logger.exception("Failed to spawn the next occurrence of {}", task_id)
            return self.store.get(task_id), None
        logger.info("Spawned recurring task {} (due {}) from {}", spawned.id, spawned.due_date, task_id)
        return saved, spawned

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_task(self, draft: Union[TaskDraft, dict[str, Any]], actor: Optional[str] = None) -> Task:
        """Validate *draft*, persist the task and link its initial blockers."""
        draft = parse_input(TaskDraft, draft)
        now = self._now()
        created_by = draft.created_by or actor
        assigned_to = draft.assigned_to or created_by

        self._require_user(assigned_to)
        self._require_case(draft.case_id, draft.tenant_id)
        if draft.parent_task_id:
            self.store.get(draft.parent_task_id)
        recurring = draft.recurring.to_policy() if draft.recurring else None
        if recurring is not None:
            for user_id in recurring.assignee_pool:
                self._require_user(user_id)
        rules = [r.to_rule() for r in draft.workflow_rules]
        self._check_rule_users(rules)

        blocker_ids = list(dict.fromkeys(draft.blocked_by))
        blockers = self.store.find_by_ids(blocker_ids)
        missing = set(blocker_ids) - {b.id for b in blockers}
        if missing:
            raise NotFoundError("Task", sorted(missing)[0])

        priority = draft.priority or _coerce_enum(TaskPriority, self.settings.default_priority, TaskPriority.MEDIUM)
        status = draft.status or _coerce_enum(TaskStatus, self.settings.default_status, TaskStatus.TODO)

        task = Task(
            tenant_id=draft.tenant_id,
            title=draft.title,
            description=draft.description,
            priority=priority,
            status=status,
            label=draft.label,
            tags=list(draft.tags),
            due_date=draft.due_date,
            due_time=draft.due_time,
            start_date=draft.start_date,
            assigned_to=assigned_to,
            created_by=created_by,
            parent_task_id=draft.parent_task_id,
            case_id=draft.case_id,
            client_id=draft.client_id,
            case_context=dict(draft.case_context),
            subtasks=draft.build_subtasks(now),
            checklists=draft.build_checklists(),
            time_tracking=TimeTracking(estimated_minutes=draft.estimated_minutes),
            recurring=recurring,
            workflow_rules=rules,
            reminders=list(draft.reminders),
            notes=draft.notes,
            points=draft.points,
            created_at=now,
            updated_at=now,
        )
        task.budget.hourly_rate = draft.hourly_rate
        self.time.refresh_budget(task)

        if blocker_ids:
            self.status.check_can_enter(_with_blockers(task, blocker_ids), status)
        if status == TaskStatus.DONE:
            self.status.stamp_completion(task, created_by, now)
        completion_due = status != TaskStatus.DONE and self.progress.recalculate(task)

        task.record("created", created_by, now, title=task.title, status=task.status.value)
        saved = self.store.save(task)
        logger.info("Created task {}: {}", saved.id, saved.title)

        for blocker_id in blocker_ids:
            saved = self.add_dependency(saved.id, blocker_id, actor=created_by)
        if completion_due:
            saved = self.complete_task(saved.id, created_by).task
        return saved

    def get_task(self, task_id: str) -> Task:
        return self.store.get(task_id)

    def list_tasks(
        self,
        tenant_id: Optional[str] = None,
        *,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None,
        case_id: Optional[str] = None,
    ) -> list[Task]:
        tasks = self.store.list(tenant_id)
        if status is not None:
            tasks = [t for t in tasks if t.status.value == status]
        if assigned_to is not None:
            tasks = [t for t in tasks if t.assigned_to == assigned_to]
        if case_id is not None:
            tasks = [t for t in tasks if t.case_id == case_id]
        return tasks

    def update_task(self, task_id: str, changes: Union[TaskUpdate, dict[str, Any]], actor: Optional[str] = None) -> Task:
        """Apply partial updates to the plain fields of a task.

        Status, progress, dependencies, time and rules have their own
        operations; passing them here is a validation error.
        """
        update = parse_input(TaskUpdate, changes)
        values = update.changes()
        if "title" in values:
            title = (values["title"] or "").strip()
            if not title:
                raise ValidationError("title must not be blank", field="title")
            values["title"] = title
        for name in sorted(_REQUIRED_FIELDS & set(values)):
            if values[name] is None:
                raise ValidationError(f"'{name}' cannot be cleared", field=name)

        def apply(task: Task) -> None:
            if "assigned_to" in values:
                self._require_user(values["assigned_to"])
            if "case_id" in values:
                self._require_case(values["case_id"], task.tenant_id)
            diff: dict[str, Any] = {}
            for name, value in values.items():
                before = getattr(task, name)
                if before == value:
                    continue
                setattr(task, name, value)
                diff[name] = {"from": before, "to": value}
            if diff:
                task.record("updated", actor, self._now(), **diff)

        saved, _ = self._mutate(task_id, apply)
        logger.info("Updated task {} ({})", task_id, ", ".join(sorted(values)) or "no fields")
        return saved

    def delete_task(self, task_id: str) -> bool:
        """Remove a task and strip it from every neighbour's edge lists."""
        task = self.store.get(task_id)
        for neighbour in self.graph.neighbours(task):
            try:
                self._mutate(neighbour.id, lambda other: self.graph.unlink(task_id, other))
            except NotFoundError:
                continue
        deleted = self.store.delete(task_id)
        if deleted:
            logger.info("Deleted task {}", task_id)
        return deleted

    def bulk_update(
        self,
        task_ids: list[str],
        updates: Union[BulkUpdate, dict[str, Any]],
        actor: Optional[str] = None,
    ) -> list[Task]:
        """Apply the same changes to several tasks.

        Every ID must exist and any move into ``in_progress`` must pass each
        task's blocker check before the first write. Field changes go through
        :meth:`update_task` and the status through :meth:`transition_status`,
        so history and automation run per task.
        """
        ids = _require_ids(task_ids)
        update = parse_input(BulkUpdate, updates)
        tasks = self._find_all(ids)
        changes = update.field_changes()
        if "assigned_to" in changes:
            self._require_user(changes["assigned_to"])
        if update.status is not None:
            for task in tasks:
                if task.status != update.status:
                    self.status.check_can_enter(task, update.status)

        updated: list[Task] = []
        for task_id in ids:
            if changes:
                self.update_task(task_id, changes, actor)
            if update.status is not None:
                self.transition_status(task_id, update.status, actor)
            updated.append(self.store.get(task_id))
        logger.info("Bulk updated {} tasks ({})", len(updated), ", ".join(sorted(update.model_fields_set)))
        return updated

    def bulk_delete(self, task_ids: list[str]) -> int:
        """Delete several tasks, unlinking each; every ID must exist."""
        ids = _require_ids(task_ids)
        self._find_all(ids)
        deleted = sum(1 for task_id in ids if self.delete_task(task_id))
        logger.info("Bulk deleted {} tasks", deleted)
        return deleted

    def _find_all(self, ids: list[str]) -> list[Task]:
        tasks = self.store.find_by_ids(ids)
        missing = set(ids) - {t.id for t in tasks}
        if missing:
            raise NotFoundError("Task", sorted(missing)[0])
        return tasks

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def transition_status(self, task_id: str, new_status: Union[TaskStatus, str], actor: Optional[str] = None) -> Task:
        saved, result = self._mutate(task_id, lambda task: self.status.transition(task, new_status, actor))
        logger.info("Task {} status {} -> {}", task_id, result.previous.value, saved.status.value)
        return self._finish(saved, result, actor).task

    def complete_task(
        self,
        task_id: str,
        actor: Optional[str] = None,
        completion_note: Optional[str] = None,
    ) -> CompletionResult:
        """Mark a task done and run its completion automation.

        Completing a task that is already done only appends the note.
        """

        def apply(task: Task) -> TransitionResult:
            result = self._complete_in_place(task, actor)
            if completion_note:
                note = COMPLETION_NOTE_PREFIX + completion_note
                task.notes = f"{task.notes}\n\n{note}" if task.notes else note
            return result

        saved, result = self._mutate(task_id, apply)
        if result.completed:
            logger.info("Completed task {}", task_id)
        return self._finish(saved, result, actor)

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependency(self, task_id: str, depends_on_id: str, actor: Optional[str] = None) -> Task:
        """Make *task_id* wait on *depends_on_id*.

        The dependent record is written first, then the blocker. If the
        blocker cannot be written the first write is undone and the error
        re-raised, so the edge never ends up on one side only.
        """

        def link(task: Task) -> None:
            depends_on = self.store.get(depends_on_id)
            self.graph.add_dependency(task, depends_on)
            task.record("dependency_added", actor, self._now(), depends_on=depends_on.id, title=depends_on.title)

        saved, _ = self._mutate(task_id, link)
        try:
            self._mutate(depends_on_id, lambda blocker: blocker.add_blocks(task_id))
        except Exception:
            logger.warning("Rolling back dependency {} -> {}", task_id, depends_on_id)

            def undo(task: Task) -> None:
                task.remove_blocked_by(depends_on_id)
                task.record("dependency_rolled_back", actor, self._now(), depends_on=depends_on_id)

            self._mutate(task_id, undo)
            raise
        logger.info("Task {} now blocked by {}", task_id, depends_on_id)
        return saved

    def remove_dependency(self, task_id: str, depends_on_id: str, actor: Optional[str] = None) -> Task:
        """Drop the edge in both records. Removing a missing edge is a no-op."""
        task = self.store.get(task_id)
        blocker = next(iter(self.store.find_by_ids([depends_on_id])), None)
        linked = depends_on_id in task.blocked_by or (blocker is not None and task_id in blocker.blocks)
        if not linked:
            return task

        def unlink(current: Task) -> None:
            if self.graph.remove_dependency(current, depends_on_id):
                current.record("dependency_removed", actor, self._now(), depends_on=depends_on_id)

        saved, _ = self._mutate(task_id, unlink)
        if blocker is not None:
            try:
                self._mutate(depends_on_id, lambda other: other.remove_blocks(task_id))
            except NotFoundError:
                pass
        logger.info("Task {} no longer blocked by {}", task_id, depends_on_id)
        return saved

    def blocking_tasks(self, task_id: str) -> list[Task]:
        return self.graph.blocking_tasks(self.store.get(task_id))

    def can_start(self, task_id: str) -> bool:
        return self.graph.can_start(self.store.get(task_id))

    # ------------------------------------------------------------------
    # Time and budget
    # ------------------------------------------------------------------

    def start_timer(self, task_id: str, actor: Optional[str] = None, notes: Optional[str] = None) -> TimeTracking:
        saved, _ = self._mutate(task_id, lambda task: self.time.start_timer(task, actor, notes))
        logger.info("Timer started on {} by {}", task_id, actor)
        return saved.time_tracking

    def stop_timer(
        self,
        task_id: str,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        is_billable: Optional[bool] = None,
    ) -> TimeTracking:
        saved, session = self._mutate(task_id, lambda task: self.time.stop_timer(task, notes, is_billable))
        logger.info("Timer stopped on {} by {} after {} min", task_id, actor, session.duration)
        return saved.time_tracking

    def add_manual_time(
        self,
        task_id: str,
        actor: Optional[str],
        minutes: Any,
        date: Union[datetime, str, None] = None,
        notes: Optional[str] = None,
        is_billable: bool = True,
    ) -> TimeTracking:
        saved, _ = self._mutate(
            task_id,
            lambda task: self.time.add_manual_time(task, actor, minutes, date, notes, is_billable),
        )
        logger.info("Logged {} min on {} for {}", minutes, task_id, actor)
        return saved.time_tracking

    def update_estimate(
        self,
        task_id: str,
        estimated_minutes: Optional[Any] = None,
        hourly_rate: Optional[Any] = None,
        actor: Optional[str] = None,
    ) -> Task:
        def apply(task: Task) -> None:
            self.time.update_estimate(task, estimated_minutes, hourly_rate)
            task.record(
                "estimate_updated",
                actor,
                self._now(),
                estimated_minutes=task.time_tracking.estimated_minutes,
                hourly_rate=task.budget.hourly_rate,
            )

        saved, _ = self._mutate(task_id, apply)
        return saved

    def time_summary(self, task_id: str) -> TimeSummary:
        return self.time.summary(self.store.get(task_id))

    # ------------------------------------------------------------------
    # Progress and subtasks
    # ------------------------------------------------------------------

    def set_progress(
        self,
        task_id: str,
        value: Union[int, float, dict[str, Any], ProgressInput],
        actor: Optional[str] = None,
    ) -> Task:
        """Pin progress to *value*, or pass ``{"auto_calculate": True}`` to unpin.

        Reaching 100 completes the task.
        """
        if isinstance(value, (dict, ProgressInput)):
            request = parse_input(ProgressInput, value)
            auto = request.auto_calculate
            pinned = request.value
        else:
            auto, pinned = False, value

        def apply(task: Task) -> Optional[TransitionResult]:
            due = self.progress.reset_to_automatic(task) if auto else self.progress.set_manual(task, pinned)
            task.record("progress_updated", actor, self._now(), progress=task.progress, manual=task.manual_progress)
            return self._complete_in_place(task, actor) if due else None

        saved, result = self._mutate(task_id, apply)
        return self._finish(saved, result, actor).task

    def _mutate_subtasks(
        self,
        task_id: str,
        actor: Optional[str],
        fn: Callable[[Task], T],
    ) -> tuple[Task, T]:
        """Apply a subtask edit, refresh progress and complete at 100."""
        outcome: dict[str, Any] = {}

        def apply(task: Task) -> T:
            value = fn(task)
            due = self.progress.recalculate(task)
            outcome["transition"] = self._complete_in_place(task, actor) if due else None
            return value

        saved, value = self._mutate(task_id, apply)
        return self._finish(saved, outcome.get("transition"), actor).task, value

    def _get_subtask(self, task: Task, subtask_id: str) -> Subtask:
        subtask = task.find_subtask(subtask_id)
        if subtask is None:
            raise NotFoundError("Subtask", subtask_id)
        return subtask

    def add_subtask(self, task_id: str, title: str, actor: Optional[str] = None, auto_reset: bool = False) -> Task:
        title = (title or "").strip()
        if not title:
            raise ValidationError("subtask title must not be blank", field="title")

        def apply(task: Task) -> None:
            subtask = Subtask(title=title, auto_reset=auto_reset)
            task.subtasks.append(subtask)
            task.record("subtask_added", actor, self._now(), subtask_id=subtask.id, title=title)

        saved, _ = self._mutate_subtasks(task_id, actor, apply)
        return saved

    def toggle_subtask(self, task_id: str, subtask_id: str, actor: Optional[str] = None) -> Task:
        def apply(task: Task) -> None:
            subtask = self._get_subtask(task, subtask_id)
            subtask.completed = not subtask.completed
            subtask.completed_at = self._now() if subtask.completed else None
            task.record("subtask_toggled", actor, self._now(), subtask_id=subtask_id, completed=subtask.completed)

        saved, _ = self._mutate_subtasks(task_id, actor, apply)
        return saved

    def update_subtask(
        self,
        task_id: str,
        subtask_id: str,
        actor: Optional[str] = None,
        *,
        title: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> Task:
        if title is not None and not title.strip():
            raise ValidationError("subtask title must not be blank", field="title")

        def apply(task: Task) -> None:
            subtask = self._get_subtask(task, subtask_id)
            if title is not None:
                subtask.title = title.strip()
            if completed is not None and completed != subtask.completed:
                subtask.completed = completed
                subtask.completed_at = self._now() if completed else None
            task.record("subtask_updated", actor, self._now(), subtask_id=subtask_id)

        saved, _ = self._mutate_subtasks(task_id, actor, apply)
        return saved

    def delete_subtask(self, task_id: str, subtask_id: str, actor: Optional[str] = None) -> Task:
        def apply(task: Task) -> None:
            subtask = self._get_subtask(task, subtask_id)
            task.subtasks.remove(subtask)
            task.record("subtask_deleted", actor, self._now(), subtask_id=subtask_id)

        saved, _ = self._mutate_subtasks(task_id, actor, apply)
        return saved

    # ------------------------------------------------------------------
    # Automation
    # ------------------------------------------------------------------

    def _check_rule_users(self, rules: list[Any]) -> None:
        for rule in rules:
            for action in rule.actions:
                if isinstance(action, AssignUserAction):
                    self._require_user(action.user_id)

    def add_workflow_rule(
        self,
        task_id: str,
        rule: Union[WorkflowRuleInput, dict[str, Any]],
        actor: Optional[str] = None,
    ) -> Task:
        parsed = parse_input(WorkflowRuleInput, rule).to_rule()
        self._check_rule_users([parsed])

        def apply(task: Task) -> None:
            task.workflow_rules.append(parsed)
            task.record("workflow_rule_added", actor, self._now(), rule_id=parsed.id, name=parsed.name)

        saved, _ = self._mutate(task_id, apply)
        logger.info("Added workflow rule {!r} to {}", parsed.name, task_id)
        return saved

    def remove_workflow_rule(self, task_id: str, rule_id: str, actor: Optional[str] = None) -> Task:
        def apply(task: Task) -> None:
            kept = [r for r in task.workflow_rules if r.id != rule_id]
            if len(kept) == len(task.workflow_rules):
                raise NotFoundError("Workflow rule", rule_id)
            task.workflow_rules = kept
            task.record("workflow_rule_removed", actor, self._now(), rule_id=rule_id)

        saved, _ = self._mutate(task_id, apply)
        return saved

    def set_recurring(
        self,
        task_id: str,
        policy: Union[RecurringInput, dict[str, Any], None],
        actor: Optional[str] = None,
    ) -> Task:
        """Attach, replace or (with ``None``) remove the recurrence policy."""
        parsed = parse_input(RecurringInput, policy).to_policy() if policy is not None else None
        if parsed is not None:
            for user_id in parsed.assignee_pool:
                self._require_user(user_id)

        def apply(task: Task) -> None:
            task.recurring = parsed
            task.record(
                "recurring_updated",
                actor,
                self._now(),
                recurring=parsed.to_dict() if parsed is not None else None,
            )

        saved, _ = self._mutate(task_id, apply)
        return saved

    def update_outcome(
        self,
        task_id: str,
        outcome: str,
        outcome_notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Task:
        """Record the task's outcome and re-run its completion rules.

        Rules may condition on ``outcome``, so a completed task whose outcome
        is filled in later still gets its follow-ups.
        """
        if not outcome:
            raise ValidationError("outcome is required", field="outcome")

        def apply(task: Task) -> None:
            task.outcome = outcome
            task.outcome_notes = outcome_notes
            task.outcome_date = self._now()
            task.record("outcome_updated", actor, self._now(), outcome=outcome)

        saved, _ = self._mutate(task_id, apply)
        self._run_workflow(saved, TriggerType.COMPLETION, actor)
        return self.store.get(task_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def upcoming_tasks(self, days: int = 7, tenant_id: Optional[str] = None) -> list[Task]:
        """Open tasks due between now and *days* from now, soonest first."""
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            raise ValidationError(f"days must be a non-negative integer, got {days!r}", field="days")
        now = self.clock()
        horizon = now + timedelta(days=days)
        return self._due_between(tenant_id, lambda due: now <= due <= horizon)

    def overdue_tasks(self, tenant_id: Optional[str] = None) -> list[Task]:
        """Open tasks whose due date has passed, most overdue first."""
        now = self.clock()
        return self._due_between(tenant_id, lambda due: due < now)

    def tasks_due_today(self, tenant_id: Optional[str] = None, user_id: Optional[str] = None) -> list[Task]:
        """Open tasks due on the clock's current day, by due time then priority."""
        start, end = _day_bounds(self.clock())
        tasks = _for_user(self._due_between(tenant_id, lambda due: start <= due < end), user_id)
        tasks.sort(key=lambda t: (t.due_time is None, t.due_time or "", t.priority.sort_key))
        return tasks

    def task_stats(self, tenant_id: Optional[str] = None, user_id: Optional[str] = None) -> TaskStats:
        """Count tasks by status and priority, plus open overdue and due-today ones.

        *user_id* narrows the set to tasks assigned to or created by that user.
        """
        tasks = _for_user(self.store.list(tenant_id), user_id)
        now = self.clock()
        start, end = _day_bounds(now)
        stats = TaskStats(
            total=len(tasks),
            by_status={s.value: 0 for s in TaskStatus},
            by_priority={p.value: 0 for p in TaskPriority},
        )
        for task in tasks:
            stats.by_status[task.status.value] += 1
            stats.by_priority[task.priority.value] += 1
            due = _parse_iso(task.due_date)
            if task.is_terminal or due is None:
                continue
            if due < now:
                stats.overdue += 1
            if start <= due < end:
                stats.due_today += 1
        return stats

    def _due_between(self, tenant_id: Optional[str], predicate: Callable[[datetime], bool]) -> list[Task]:
        selected: list[tuple[datetime, Task]] = []
        for task in self.store.list(tenant_id):
            if task.is_terminal:
                continue
            due = _parse_iso(task.due_date)
            if due is not None and predicate(due):
                selected.append((due, task))
        selected.sort(key=lambda pair: (pair[0], pair[1].priority.sort_key))
        return [task for _, task in selected]


def _with_blockers(task: Task, blocker_ids: list[str]) -> Task:
    candidate = Task.from_dict(task.to_dict())
    candidate.blocked_by = list(blocker_ids)
    return candidate


def _require_ids(task_ids: Any) -> list[str]:
    if isinstance(task_ids, str) or not task_ids:
        raise ValidationError("task_ids must be a non-empty list of task IDs", field="task_ids")
    return list(dict.fromkeys(str(i) for i in task_ids))


def _for_user(tasks: list[Task], user_id: Optional[str]) -> list[Task]:
    if user_id is None:
        return tasks
    return [t for t in tasks if user_id in (t.assigned_to, t.created_by)]


def _day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)
