"""Task service: fetches and direct task CRUD over the state container."""
import logging
from collections import defaultdict
from datetime import datetime
from typing import List, Optional

from planner.schemas.task import (
    CleanupResult,
    Task,
    TaskCreate,
    TaskKind,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
)
from planner.services.base import StateBoundService
from planner.services.errors import NotFoundError, PartialFailureError, ValidationError
from planner.services.priority import next_priority_number
from planner.services.recurrence import dedupe_exceptions
from planner.services.state import FetchCategory
from planner.utils.dates import date_range, normalize_to_date, to_date_string

logger = logging.getLogger(__name__)

ALL_KEY = "all"


class TaskService(StateBoundService):
    """
    Task operations for one user.

    Nothing here writes state optimistically: the state container is only
    touched after the repository call succeeded.
    """

    # ------------------------------------------------------------------
    # Fetches
    # ------------------------------------------------------------------

    async def fetch_tasks_for_date(self, day) -> Optional[List[Task]]:
        """Load one day. Returns None when a fetch for that day is already in flight."""
        day = normalize_to_date(day)
        key = to_date_string(day)
        if not self.state.begin_fetch(FetchCategory.TASKS_FOR_DATE, key):
            logger.debug(f"Fetch for {key} already in flight, skipping")
            return None
        try:
            async with self._syncing("Failed to fetch tasks"):
                tasks = await self.repository.get_tasks_by_date(self.user_id, day)
                self.state.set_tasks_for_date(day, tasks)
        finally:
            self.state.end_fetch(FetchCategory.TASKS_FOR_DATE, key)
        return tasks

    async def fetch_tasks_for_range(self, start, end) -> Optional[List[Task]]:
        start = normalize_to_date(start)
        end = normalize_to_date(end)
        if end < start:
            raise ValidationError("Range end must not be before range start")

        key = f"{to_date_string(start)}..{to_date_string(end)}"
        if not self.state.begin_fetch(FetchCategory.TASKS_FOR_DATE, key):
            return None
        try:
            async with self._syncing("Failed to fetch tasks"):
                tasks = await self.repository.get_tasks_by_range(self.user_id, start, end)
                by_date = defaultdict(list)
                for task in tasks:
                    by_date[task.date_key].append(task)
                for day in date_range(start, end):
                    self.state.set_tasks_for_date(day, by_date.get(to_date_string(day), []))
        finally:
            self.state.end_fetch(FetchCategory.TASKS_FOR_DATE, key)
        return tasks

    async def fetch_recurring_parents(self) -> Optional[List[Task]]:
        if not self.state.begin_fetch(FetchCategory.RECURRING_PARENTS, ALL_KEY):
            return None
        try:
            async with self._syncing("Failed to fetch recurring tasks"):
                parents = await self.repository.get_recurring_tasks(self.user_id)
                self.state.set_recurring_parents(parents)
        finally:
            self.state.end_fetch(FetchCategory.RECURRING_PARENTS, ALL_KEY)
        return parents

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def _require_task(self, task_id: str) -> Task:
        task = self.state.tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found", {"task_id": task_id})
        return task

    async def create_task(self, data: TaskCreate) -> Task:
        """Create a task; a priority number of 0 is replaced by the day's next number."""
        async with self._syncing("Failed to create task"):
            if data.priority.number == 0:
                letter = data.priority.letter
                number = next_priority_number(self.state.tasks_on(data.scheduled_date), letter)
                data = data.model_copy(update={"priority": TaskPriority(letter=letter, number=number)})
            task = await self.repository.create_task(data, self.user_id)
            self.state.upsert_task(task)
        logger.info(f"Created task {task.id} ({task.priority}) on {task.date_key}")
        return task

    async def update_task(self, update: TaskUpdate) -> Task:
        async with self._syncing("Failed to update task"):
            task = await self.repository.update_task(update, self.user_id)
            self.state.upsert_task(task)
        return task

    async def soft_delete_task(self, task_id: str):
        async with self._syncing("Failed to delete task"):
            await self.repository.soft_delete_task(task_id, self.user_id)
            self.state.remove_task(task_id)

    async def hard_delete_task(self, task_id: str):
        async with self._syncing("Failed to permanently delete task"):
            await self.repository.hard_delete_task(task_id, self.user_id)
            self.state.remove_task(task_id)

    async def restore_task(self, task_id: str) -> Task:
        async with self._syncing("Failed to restore task"):
            task = await self.repository.restore_task(task_id, self.user_id)
            self.state.upsert_task(task)
        return task

    async def batch_update_tasks(self, updates: List[TaskUpdate]) -> List[Task]:
        async with self._syncing("Failed to update tasks"):
            tasks = await self.repository.batch_update_tasks(updates, self.user_id)
            self.state.upsert_tasks(tasks)
        return tasks

    # ------------------------------------------------------------------
    # Day planning
    # ------------------------------------------------------------------

    async def forward_task(self, task_id: str, new_date) -> Task:
        """
        Copy a task to another day and mark the original as forwarded.

        The copy gets the next free number for its letter on the new day and
        carries no recurrence.
        """
        async with self._syncing("Failed to forward task"):
            task = self._require_task(task_id)
            new_date = normalize_to_date(new_date)
            if task.kind is TaskKind.RECURRING_PARENT:
                raise ValidationError("Recurring tasks are forwarded one occurrence at a time")
            if task.date_key == to_date_string(new_date):
                raise ValidationError("Task is already scheduled on that day")

            letter = task.priority.letter
            copy = TaskCreate(
                title=task.title,
                description=task.description,
                category_id=task.category_id,
                priority=TaskPriority(
                    letter=letter,
                    number=next_priority_number(self.state.tasks_on(new_date), letter),
                ),
                status=TaskStatus.IN_PROGRESS,
                scheduled_date=new_date,
                scheduled_time=task.scheduled_time,
            )
            forwarded = await self.repository.create_task(copy, self.user_id)
            try:
                original = await self.repository.update_task(
                    TaskUpdate(id=task.id, status=TaskStatus.FORWARD), self.user_id
                )
            except Exception as exc:
                await self._compensate_create(forwarded, exc, source_id=task.id)
                raise PartialFailureError(
                    f"Failed to mark task {task.id} as forwarded; the copy was removed",
                    {"task_id": task.id},
                ) from exc
            self.state.upsert_task(forwarded)
            self.state.upsert_task(original)
        return forwarded

    async def cleanup_duplicate_exceptions(self) -> CleanupResult:
        """Rewrite recurring parents whose exception lists hold the same day twice."""
        result = CleanupResult()
        async with self._syncing("Failed to clean up exceptions"):
            parents = await self.repository.get_recurring_tasks(self.user_id)
            for parent in parents:
                result.tasks_checked += 1
                cleaned, removed = dedupe_exceptions(parent.recurrence.exceptions)
                if not removed:
                    continue
                rule = parent.recurrence.model_copy(update={"exceptions": cleaned})
                updated = await self.repository.update_task(
                    TaskUpdate(id=parent.id, recurrence=rule), self.user_id
                )
                self.state.upsert_task(updated)
                result.tasks_cleaned += 1
                result.total_duplicates_removed += removed
        logger.info(
            f"Exception cleanup checked {result.tasks_checked} tasks, "
            f"cleaned {result.tasks_cleaned}, removed {result.total_duplicates_removed} duplicates"
        )
        return result

    async def set_status(self, task_id: str, status: TaskStatus) -> Task:
        """Set the status of a stored, non-recurring-parent task."""
        async with self._syncing("Failed to update task status"):
            task = self._require_task(task_id)
            completed_at = datetime.utcnow() if status is TaskStatus.COMPLETE else None
            updated = await self.repository.update_task(
                TaskUpdate(id=task.id, status=status, completed_at=completed_at), self.user_id
            )
            self.state.upsert_task(updated)
        return updated
