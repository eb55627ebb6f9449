"""
State Container

Normalized in-memory store for one user's planner: tasks by id, a date index
over them, recurring parents, recurring patterns, fetch bookkeeping and the
reorder rollback slot. The read selectors at the bottom of the module are
pure and re-derive everything from current state on every call.
"""

from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from planner.schemas.pattern import RecurringPattern
from planner.schemas.task import (
    PRIORITY_LETTERS,
    Task,
    TaskKind,
    TaskPriority,
    TaskStatus,
)
from planner.services import priority as priority_engine
from planner.services.errors import ValidationError
from planner.services.recurrence import (
    apply_instance_modification,
    expand,
    is_date_in_exceptions,
)
from planner.utils.dates import normalize_to_date, to_date_string


class SyncStatus(str, Enum):
    SYNCED = "synced"
    SYNCING = "syncing"
    ERROR = "error"


class FetchCategory(str, Enum):
    TASKS_FOR_DATE = "tasks-for-date"
    RECURRING_PARENTS = "recurring-parents"
    RECURRING_PATTERNS = "recurring-patterns"
    CATEGORIES = "categories"


class PlannerState:
    """Committed state for one user."""

    def __init__(self, user_id: str):
        if not user_id or not isinstance(user_id, str):
            raise ValidationError("A user id is required", code="UNAUTHORIZED")
        self.user_id = user_id
        self.tasks: Dict[str, Task] = {}
        self.task_ids_by_date: Dict[str, List[str]] = {}
        self.recurring_parents: Dict[str, Task] = {}
        self.recurring_parents_loaded = False
        self.patterns: Dict[str, RecurringPattern] = {}
        self.patterns_loaded = False
        self.loaded_dates: Set[str] = set()
        self.in_flight: Dict[FetchCategory, Set[str]] = {category: set() for category in FetchCategory}
        # Single slot, overwritten per reorder gesture
        self.reorder_rollback: Optional[Dict[str, TaskPriority]] = None
        self.selected_date: Optional[date] = None
        self.sync_status = SyncStatus.SYNCED
        self.error: Optional[str] = None

    # ------------------------------------------------------------------
    # Date index. Every task mutation goes through this pair.
    # ------------------------------------------------------------------

    def _index_task(self, task: Task):
        key = task.date_key
        if not key:
            return
        ids = self.task_ids_by_date.setdefault(key, [])
        if task.id not in ids:
            ids.append(task.id)

    def _unindex_task(self, task: Task):
        key = task.date_key
        ids = self.task_ids_by_date.get(key)
        if not ids:
            return
        if task.id in ids:
            ids.remove(task.id)
        if not ids:
            del self.task_ids_by_date[key]

    # ------------------------------------------------------------------
    # Task mutations
    # ------------------------------------------------------------------

    def upsert_task(self, task: Task):
        """Insert or replace a stored task, keeping indexes consistent."""
        if not task.materialized:
            raise ValueError(f"Virtual occurrence {task.id} cannot be stored")
        if task.deleted_at is not None:
            self.remove_task(task.id)
            return

        previous = self.tasks.get(task.id)
        if previous is not None:
            self._unindex_task(previous)
        self.tasks[task.id] = task
        self._index_task(task)

        if task.kind is TaskKind.RECURRING_PARENT:
            self.recurring_parents[task.id] = task
        else:
            self.recurring_parents.pop(task.id, None)

    def upsert_tasks(self, tasks: Iterable[Task]):
        for task in tasks:
            self.upsert_task(task)

    def remove_task(self, task_id: str) -> Optional[Task]:
        task = self.tasks.pop(task_id, None)
        if task is not None:
            self._unindex_task(task)
        self.recurring_parents.pop(task_id, None)
        return task

    def set_task_priority(self, task_id: str, priority: TaskPriority):
        task = self.tasks[task_id]
        self.upsert_task(task.model_copy(update={"priority": priority}))

    def set_tasks_for_date(self, day, tasks: Iterable[Task]):
        """Replace the stored tasks of one day with a fresh fetch result."""
        key = to_date_string(day)
        for task_id in list(self.task_ids_by_date.get(key, [])):
            task = self.tasks.get(task_id)
            # Recurring parents are owned by set_recurring_parents
            if task is not None and task.kind is not TaskKind.RECURRING_PARENT:
                self.remove_task(task_id)
        for task in tasks:
            if task.date_key == key:
                self.upsert_task(task)
        self.loaded_dates.add(key)

    def set_recurring_parents(self, parents: Iterable[Task]):
        for parent_id in list(self.recurring_parents):
            self.remove_task(parent_id)
        for parent in parents:
            self.upsert_task(parent)
        self.recurring_parents_loaded = True

    def tasks_on(self, day) -> List[Task]:
        """Stored tasks indexed on a day, without any recurrence logic."""
        key = to_date_string(day)
        return [self.tasks[task_id] for task_id in self.task_ids_by_date.get(key, []) if task_id in self.tasks]

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def upsert_pattern(self, pattern: RecurringPattern):
        if pattern.deleted_at is not None:
            self.patterns.pop(pattern.id, None)
            return
        self.patterns[pattern.id] = pattern

    def remove_pattern(self, pattern_id: str) -> Optional[RecurringPattern]:
        return self.patterns.pop(pattern_id, None)

    def set_patterns(self, patterns: Iterable[RecurringPattern]):
        self.patterns = {}
        for pattern in patterns:
            self.upsert_pattern(pattern)
        self.patterns_loaded = True

    def instances_of_pattern(self, pattern_id: str) -> List[Task]:
        return [task for task in self.tasks.values() if task.recurring_pattern_id == pattern_id]

    # ------------------------------------------------------------------
    # Fetch bookkeeping
    # ------------------------------------------------------------------

    def begin_fetch(self, category: FetchCategory, key: str) -> bool:
        """Claim a fetch slot; False if the same key is already in flight."""
        keys = self.in_flight[category]
        if key in keys:
            return False
        keys.add(key)
        return True

    def end_fetch(self, category: FetchCategory, key: str):
        self.in_flight[category].discard(key)

    def is_fetching(self, category: FetchCategory, key: str) -> bool:
        return key in self.in_flight[category]

    def fail(self, message: str):
        self.error = message
        self.sync_status = SyncStatus.ERROR

    def clear_error(self):
        self.error = None
        if self.sync_status is SyncStatus.ERROR:
            self.sync_status = SyncStatus.SYNCED


# =============================================================================
# Selectors
# =============================================================================

def select_task(state: PlannerState, task_id: str) -> Optional[Task]:
    return state.tasks.get(task_id)


def is_date_loaded(state: PlannerState, day) -> bool:
    return to_date_string(day) in state.loaded_dates


def active_recurring_patterns(state: PlannerState) -> List[RecurringPattern]:
    """Patterns that are not deleted, ordered by title."""
    return sorted(
        (pattern for pattern in state.patterns.values() if pattern.deleted_at is None),
        key=lambda pattern: (pattern.title.lower(), pattern.id),
    )


def _stored_tasks_for_date(state: PlannerState, day: date) -> List[Task]:
    key = to_date_string(day)
    visible = []
    for task in state.tasks_on(day):
        if task.kind is TaskKind.RECURRING_PARENT:
            rule = task.recurrence
            # A parent only stands for its own scheduled day
            if task.date_key != key or is_date_in_exceptions(day, rule.exceptions):
                continue
            task = apply_instance_modification(task, rule.instance_modifications.get(key))
        visible.append(task)
    return visible


def _virtual_tasks_for_date(state: PlannerState, day: date, stored: List[Task]) -> List[Task]:
    stored_ids = {task.id for task in stored}
    # Parents and patterns that already have a stored task on this day
    occupied_sources = {task.source_id for task in stored if task.source_id}

    virtual = []
    for parent in state.recurring_parents.values():
        if parent.id in stored_ids or parent.id in occupied_sources:
            continue
        if parent.scheduled_date is None or parent.scheduled_date > day:
            continue
        virtual.extend(expand(parent, day, day))

    for pattern in active_recurring_patterns(state):
        if pattern.id in occupied_sources:
            continue
        # Instances up to the high-water mark are stored tasks already
        if pattern.generated_until is not None and day <= pattern.generated_until:
            continue
        virtual.extend(expand(pattern, day, day))
    return virtual


def tasks_visible_on_date(state: PlannerState, day) -> List[Task]:
    """
    Tasks to show for a day, sorted by priority.

    Stored tasks come first; virtual occurrences of recurring parents and
    patterns are merged in, numbered after the day's stored tasks of the same
    letter, deduplicated by id and stripped of the ``delete`` status.
    """
    day = normalize_to_date(day)
    stored = _stored_tasks_for_date(state, day)

    next_numbers = {
        letter: priority_engine.next_priority_number(stored, letter) for letter in PRIORITY_LETTERS
    }
    numbered = []
    for occurrence in _virtual_tasks_for_date(state, day, stored):
        letter = occurrence.priority.letter
        numbered.append(occurrence.model_copy(update={
            "priority": TaskPriority(letter=letter, number=next_numbers[letter]),
        }))
        next_numbers[letter] += 1

    seen = set()
    visible = []
    for task in stored + numbered:
        if task.status is TaskStatus.DELETE or task.id in seen:
            continue
        seen.add(task.id)
        visible.append(task)
    return priority_engine.sort_by_priority(visible)


def tasks_by_priority_for_date(state: PlannerState, day) -> Dict[str, List[Task]]:
    return priority_engine.group_by_priority(tasks_visible_on_date(state, day))


def task_count_for_date(state: PlannerState, day) -> int:
    return len(tasks_visible_on_date(state, day))


def completed_task_count_for_date(state: PlannerState, day) -> int:
    return sum(1 for task in tasks_visible_on_date(state, day) if task.status is TaskStatus.COMPLETE)


def find_visible_task(state: PlannerState, day, task_id: str) -> Optional[Task]:
    """A stored task by id, or the virtual occurrence with that id on ``day``."""
    if task_id in state.tasks and state.tasks[task_id].kind is not TaskKind.RECURRING_PARENT:
        return state.tasks[task_id]
    for task in tasks_visible_on_date(state, day):
        if task.id == task_id:
            return task
    return state.tasks.get(task_id)
