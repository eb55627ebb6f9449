"""
Persistence boundary.

The engine talks to storage only through this interface. Every method is a
coroutine, may fail, and is idempotent on ids. Every call is scoped to a
user; an id that does not exist for that user raises NotFoundError.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import List, Optional

from planner.schemas.pattern import PatternCreate, PatternUpdate, RecurringPattern
from planner.schemas.task import Task, TaskCreate, TaskUpdate


class PlannerRepository(ABC):
    """Asynchronous storage for tasks and recurring patterns."""

    # Tasks

    @abstractmethod
    async def get_tasks_by_date(self, user_id: str, day: date) -> List[Task]:
        """Non-deleted tasks scheduled on ``day``."""

    @abstractmethod
    async def get_tasks_by_range(self, user_id: str, start: date, end: date) -> List[Task]:
        """Non-deleted tasks scheduled between ``start`` and ``end`` inclusive."""

    @abstractmethod
    async def get_recurring_tasks(self, user_id: str) -> List[Task]:
        """Non-deleted legacy recurring parents."""

    @abstractmethod
    async def get_task(self, task_id: str, user_id: str, include_deleted: bool = False) -> Task:
        ...

    @abstractmethod
    async def get_instances_for_parent(self, parent_id: str, user_id: str) -> List[Task]:
        """Non-deleted legacy instances materialized from a recurring parent."""

    @abstractmethod
    async def create_task(self, data: TaskCreate, user_id: str) -> Task:
        ...

    @abstractmethod
    async def update_task(self, update: TaskUpdate, user_id: str) -> Task:
        ...

    @abstractmethod
    async def soft_delete_task(self, task_id: str, user_id: str) -> None:
        ...

    @abstractmethod
    async def hard_delete_task(self, task_id: str, user_id: str) -> None:
        ...

    @abstractmethod
    async def restore_task(self, task_id: str, user_id: str) -> Task:
        ...

    @abstractmethod
    async def batch_update_tasks(self, updates: List[TaskUpdate], user_id: str) -> List[Task]:
        """Apply all updates or none of them."""

    # Recurring patterns

    @abstractmethod
    async def create_recurring_pattern(self, data: PatternCreate, user_id: str) -> RecurringPattern:
        ...

    @abstractmethod
    async def get_recurring_pattern(self, pattern_id: str, user_id: str) -> RecurringPattern:
        ...

    @abstractmethod
    async def get_recurring_patterns(self, user_id: str) -> List[RecurringPattern]:
        """Non-deleted patterns."""

    @abstractmethod
    async def update_recurring_pattern(self, update: PatternUpdate, user_id: str) -> RecurringPattern:
        ...

    @abstractmethod
    async def delete_recurring_pattern(self, pattern_id: str, user_id: str, cascade: bool = True) -> None:
        """Soft-delete a pattern and, with ``cascade``, all of its instances."""

    @abstractmethod
    async def get_instances_for_pattern(
        self,
        pattern_id: str,
        user_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Task]:
        """Non-deleted instances of a pattern, optionally limited to an instance-date window."""

    @abstractmethod
    async def soft_delete_pattern_instances(
        self,
        pattern_id: str,
        user_id: str,
        start: Optional[date] = None,
    ) -> List[str]:
        """Soft-delete instances of a pattern dated on or after ``start``; returns their ids."""
