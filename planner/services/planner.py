"""
Planner facade.

Wires one user's state container to the task, materializer, reorder,
pattern and migration services so callers deal with a single object.
"""

import logging
from datetime import date
from typing import Callable, Dict, List, Optional

from planner.repositories.base import PlannerRepository
from planner.schemas.task import Task, TaskKind, TaskStatus, next_status
from planner.services import state as selectors
from planner.services.errors import NotFoundError
from planner.services.materializer import InstanceMaterializer
from planner.services.migrator import LegacyMigrator
from planner.services.pattern_service import PatternService
from planner.services.reorder import ReorderTransactionManager
from planner.services.state import PlannerState
from planner.services.task_service import TaskService
from planner.utils.dates import normalize_to_date

logger = logging.getLogger(__name__)


class Planner:
    """All engine operations for one user."""

    def __init__(
        self,
        user_id: str,
        repository: PlannerRepository,
        clock: Optional[Callable[[], date]] = None,
        generation_days: Optional[int] = None,
    ):
        self.state = PlannerState(user_id)
        self.repository = repository
        args = (self.state, repository, clock, generation_days)
        self.tasks = TaskService(*args)
        self.materializer = InstanceMaterializer(*args)
        self.reorder = ReorderTransactionManager(*args)
        self.patterns = PatternService(*args)
        self.migrator = LegacyMigrator(*args)

    @property
    def user_id(self) -> str:
        return self.state.user_id

    async def load_date(self, day) -> List[Task]:
        """
        Load everything needed to show a day and return its visible tasks.

        Recurring parents and patterns are fetched once; pattern instances
        past the generated window are materialized before the day is read.
        """
        day = normalize_to_date(day)
        self.state.selected_date = day
        await self.ensure_sources()
        await self.patterns.ensure_instances_for_all(day)
        await self.tasks.fetch_tasks_for_date(day)
        return self.visible_tasks(day)

    async def ensure_sources(self):
        """Fetch recurring parents and patterns unless they are loaded already."""
        if not self.state.recurring_parents_loaded:
            await self.tasks.fetch_recurring_parents()
        if not self.state.patterns_loaded:
            await self.patterns.fetch_recurring_patterns()

    async def ensure_task(self, task_id: str) -> Task:
        """
        Return a stored task, loading its day when it is not in state yet.

        Raises:
            NotFoundError: If the task does not exist for this user
        """
        task = self.state.tasks.get(task_id)
        if task is not None:
            return task
        task = await self.repository.get_task(task_id, self.user_id)
        if task.scheduled_date is not None:
            await self.tasks.fetch_tasks_for_date(task.scheduled_date)
        if task_id not in self.state.tasks:
            self.state.upsert_task(task)
        return self.state.tasks[task_id]

    async def forward_task(self, task_id: str, new_date) -> Task:
        await self.ensure_task(task_id)
        if not selectors.is_date_loaded(self.state, new_date):
            await self.tasks.fetch_tasks_for_date(new_date)
        return await self.tasks.forward_task(task_id, new_date)

    async def complete_after_completion(self, task_id: str) -> Optional[Task]:
        await self.ensure_sources()
        await self.ensure_task(task_id)
        return await self.materializer.complete_after_completion(task_id)

    def visible_tasks(self, day) -> List[Task]:
        return selectors.tasks_visible_on_date(self.state, day)

    def tasks_by_priority(self, day) -> Dict[str, List[Task]]:
        return selectors.tasks_by_priority_for_date(self.state, day)

    def find_task(self, day, task_id: str) -> Task:
        task = selectors.find_visible_task(self.state, day, task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found", {"task_id": task_id})
        return task

    async def cycle_status(self, day, task_id: str) -> Task:
        """Advance a visible task to the next status in the click cycle."""
        task = self.find_task(day, task_id)
        return await self.set_status(day, task_id, next_status(task.status))

    async def set_status(self, day, task_id: str, status: TaskStatus) -> Task:
        task = self.find_task(day, task_id)
        if task.materialized and task.kind is TaskKind.PLAIN:
            return await self.tasks.set_status(task.id, status)
        return await self.materializer.update_occurrence_status(task, status)
