"""
Instance Materializer

Turns virtual occurrences into stored tasks and keeps the exception lists of
recurring parents and patterns in step, so an occurrence is never shown both
as a virtual task and as a stored one.

Materialization is a two-step write (create the instance, then record the
exception on its source). When the second step fails the first is undone by
a hard delete; when that undo fails as well a ManualAttentionError is raised.
State is committed only after both writes succeeded.
"""

import logging
from datetime import datetime
from typing import List, Optional, Union

from planner.schemas.pattern import PatternUpdate, RecurringPattern
from planner.schemas.task import (
    EndCondition,
    EndConditionType,
    InstanceModification,
    OccurrenceOverrides,
    RecurrenceType,
    Task,
    TaskCreate,
    TaskKind,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
)
from planner.services.base import StateBoundService
from planner.services.errors import (
    NotFoundError,
    NotRecurringError,
    PartialFailureError,
    ValidationError,
)
from planner.services.priority import next_priority_number
from planner.services.recurrence import (
    add_exception_with_dedup,
    generate_occurrence_dates,
    is_date_in_exceptions,
    next_occurrence,
    pin_rule_anchor,
)
from planner.utils.dates import add_days, is_same_day, normalize_to_date, to_date_string
from planner.utils.logger import engine_logger
from planner.utils.metrics import OCCURRENCES_MATERIALIZED, metrics_collector

logger = logging.getLogger(__name__)

RecurrenceSource = Union[Task, RecurringPattern]


class InstanceMaterializer(StateBoundService):
    """Single-occurrence edits, deletes and completions for recurring tasks."""

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _resolve_source(self, source_id: str) -> RecurrenceSource:
        parent = self.state.recurring_parents.get(source_id)
        if parent is not None:
            return parent
        pattern = self.state.patterns.get(source_id)
        if pattern is not None:
            return pattern
        if source_id in self.state.tasks:
            raise NotRecurringError(f"Task {source_id} is not recurring", {"task_id": source_id})
        raise NotFoundError(f"Recurring task {source_id} not found", {"source_id": source_id})

    def _resolve_parent(self, parent_id: str) -> Task:
        source = self._resolve_source(parent_id)
        if not isinstance(source, Task):
            raise NotRecurringError(f"{parent_id} is a recurring pattern, not a recurring task")
        return source

    def _stored_instances_on(self, source_id: str, day) -> List[Task]:
        key = to_date_string(day)
        return [
            task for task in self.state.tasks.values()
            if task.kind in (TaskKind.LEGACY_INSTANCE, TaskKind.PATTERN_INSTANCE)
            and task.source_id == source_id
            and to_date_string(task.instance_date) == key
        ]

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------

    def _instance_input(self, source: RecurrenceSource, day, overrides: OccurrenceOverrides) -> TaskCreate:
        fields = {
            "title": source.title,
            "description": source.description,
            "category_id": source.category_id,
            "status": TaskStatus.IN_PROGRESS,
        }
        if isinstance(source, Task):
            fields["scheduled_time"] = source.scheduled_time
            # Carry over a per-date overlay recorded before materialization
            modification = source.recurrence.instance_modifications.get(to_date_string(day))
            if modification is not None:
                fields.update({
                    name: value for name, value in modification.model_dump().items() if value is not None
                })
            links = {"recurring_parent_id": source.id}
        else:
            fields["scheduled_time"] = source.start_time
            links = {"recurring_pattern_id": source.id}

        explicit = overrides.model_dump(exclude_unset=True, exclude={"priority"})
        fields.update({name: value for name, value in explicit.items() if value is not None})

        letter = overrides.priority.letter if overrides.priority else source.priority.letter
        if overrides.priority is not None and overrides.priority.number > 0:
            number = overrides.priority.number
        else:
            number = next_priority_number(self.state.tasks_on(day), letter)

        return TaskCreate(
            priority=TaskPriority(letter=letter, number=number),
            scheduled_date=day,
            instance_date=day,
            is_recurring_instance=True,
            **links,
            **fields,
        )

    async def _record_exception(self, source: RecurrenceSource, day) -> RecurrenceSource:
        if isinstance(source, Task):
            rule = source.recurrence
            new_rule = rule.model_copy(update={"exceptions": add_exception_with_dedup(rule.exceptions, day)})
            return await self.repository.update_task(TaskUpdate(id=source.id, recurrence=new_rule), self.user_id)
        return await self.repository.update_recurring_pattern(
            PatternUpdate(id=source.id, exceptions=add_exception_with_dedup(source.exceptions, day)),
            self.user_id,
        )

    def _commit_source(self, source: RecurrenceSource):
        if isinstance(source, Task):
            self.state.upsert_task(source)
        else:
            self.state.upsert_pattern(source)

    async def materialize(
        self,
        source_id: str,
        occurrence_date,
        overrides: Optional[OccurrenceOverrides] = None,
    ) -> Task:
        """
        Store one occurrence of a recurring parent or pattern as its own task.

        Args:
            source_id: Recurring parent task id or pattern id
            occurrence_date: The occurrence being materialized
            overrides: Fields that differ from the template on this occurrence

        Returns:
            The stored instance

        Raises:
            ValidationError: If the date is not an open occurrence of the source
            PartialFailureError: If the exception write failed (instance removed again)
            ManualAttentionError: If the instance could not be removed either
        """
        overrides = overrides or OccurrenceOverrides()
        async with self._syncing("Failed to edit recurring task instance"):
            source = self._resolve_source(source_id)
            day = normalize_to_date(occurrence_date)

            if isinstance(source, RecurringPattern) and source.type is RecurrenceType.AFTER_COMPLETION:
                raise ValidationError("afterCompletion occurrences are created when the current one is completed")
            rule = source.recurrence if isinstance(source, Task) else source
            if is_date_in_exceptions(day, rule.exceptions):
                raise ValidationError(f"{to_date_string(day)} is not an open occurrence of {source_id}")
            if day not in generate_occurrence_dates(source, day, day):
                raise ValidationError(f"{to_date_string(day)} is not an occurrence of {source_id}")
            if self._stored_instances_on(source.id, day):
                raise ValidationError(f"{to_date_string(day)} is already stored for {source_id}")

            instance = await self.repository.create_task(self._instance_input(source, day, overrides), self.user_id)
            try:
                updated_source = await self._record_exception(source, day)
            except Exception as exc:
                await self._compensate_create(instance, exc, source_id=source.id)
                raise PartialFailureError(
                    f"Failed to update recurring task {source.id}; the new instance was removed",
                    {"source_id": source.id, "occurrence_date": to_date_string(day)},
                ) from exc

            self.state.upsert_task(instance)
            self._commit_source(updated_source)

        metrics_collector.increment_counter(OCCURRENCES_MATERIALIZED)
        engine_logger.info(
            "occurrence_materialized",
            user_id=self.user_id,
            source_id=source_id,
            occurrence_date=to_date_string(day),
            task_id=instance.id,
        )
        return instance

    async def edit_occurrence(self, occurrence: Task, overrides: OccurrenceOverrides) -> Task:
        """Edit "this occurrence only" by materializing it with the overrides."""
        if occurrence.materialized and occurrence.kind is not TaskKind.RECURRING_PARENT:
            update = TaskUpdate(id=occurrence.id, **overrides.model_dump(exclude_unset=True))
            async with self._syncing("Failed to update task"):
                updated = await self.repository.update_task(update, self.user_id)
                self.state.upsert_task(updated)
            return updated
        day = occurrence.instance_date or occurrence.scheduled_date
        return await self.materialize(occurrence.source_id, day, overrides)

    async def edit_future(self, source_id: str, overrides: OccurrenceOverrides):
        """Edit "this and all future" by changing the series template itself."""
        changes = overrides.model_dump(exclude_unset=True, exclude={"status"})
        async with self._syncing("Failed to update recurring task"):
            source = self._resolve_source(source_id)
            if isinstance(source, Task):
                updated = await self.repository.update_task(TaskUpdate(id=source.id, **changes), self.user_id)
            else:
                if "scheduled_time" in changes:
                    changes["start_time"] = changes.pop("scheduled_time")
                updated = await self.repository.update_recurring_pattern(
                    PatternUpdate(id=source.id, **changes), self.user_id
                )
            self._commit_source(updated)
        return updated

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def _set_modification(self, parent_id: str, day, status: TaskStatus) -> Task:
        parent = self._resolve_parent(parent_id)
        key = to_date_string(day)
        rule = parent.recurrence
        modifications = dict(rule.instance_modifications)
        current = modifications.get(key) or InstanceModification()
        modifications[key] = current.model_copy(update={"status": status})
        new_rule = rule.model_copy(update={"instance_modifications": modifications})
        updated = await self.repository.update_task(TaskUpdate(id=parent.id, recurrence=new_rule), self.user_id)
        self.state.upsert_task(updated)
        return updated

    async def update_occurrence_status(self, task: Task, status: TaskStatus) -> Task:
        """
        Change the status of whatever a visible task stands for.

        A recurring parent on its own day and virtual legacy occurrences keep
        the status in the parent's per-date overlay; virtual pattern
        occurrences are materialized; stored tasks are updated directly.
        Completing an afterCompletion instance schedules the next one.
        """
        status = TaskStatus(status)
        async with self._syncing("Failed to update task status"):
            if task.kind is TaskKind.RECURRING_PARENT:
                await self._set_modification(task.id, task.scheduled_date, status)
                return task.model_copy(update={"status": status})

            if not task.materialized:
                if task.kind is TaskKind.LEGACY_INSTANCE:
                    await self._set_modification(task.recurring_parent_id, task.instance_date, status)
                    return task.model_copy(update={"status": status})
                return await self.materialize(
                    task.recurring_pattern_id, task.instance_date, OccurrenceOverrides(status=status)
                )

            pattern = self.state.patterns.get(task.recurring_pattern_id) if task.recurring_pattern_id else None
            if (
                status is TaskStatus.COMPLETE
                and pattern is not None
                and pattern.type is RecurrenceType.AFTER_COMPLETION
                and pattern.active_instance_id == task.id
                and task.status is not TaskStatus.COMPLETE
            ):
                await self.complete_after_completion(task.id)
                return self.state.tasks[task.id]

            completed_at = datetime.utcnow() if status is TaskStatus.COMPLETE else None
            updated = await self.repository.update_task(
                TaskUpdate(id=task.id, status=status, completed_at=completed_at), self.user_id
            )
            self.state.upsert_task(updated)
        return updated

    async def complete_after_completion(self, task_id: str, completed_at: Optional[datetime] = None) -> Optional[Task]:
        """
        Complete the open instance of an afterCompletion pattern.

        The instance is marked complete, then exactly one new instance is
        created ``days_after_completion`` days after the completion day. No
        exception is recorded. Only the pattern's active, unfinished instance
        can be completed this way. If creating the next instance fails the
        completion stays written and no successor exists.

        Returns:
            The new instance, or None when the pattern's end condition is reached
        """
        completed_at = completed_at or datetime.utcnow()
        async with self._syncing("Failed to complete recurring task"):
            task = self.state.tasks.get(task_id)
            if task is None:
                raise NotFoundError(f"Task {task_id} not found", {"task_id": task_id})
            pattern = self.state.patterns.get(task.recurring_pattern_id) if task.recurring_pattern_id else None
            if pattern is None:
                raise NotRecurringError(f"Task {task_id} is not a recurring pattern instance")
            if pattern.type is not RecurrenceType.AFTER_COMPLETION:
                raise ValidationError(f"Pattern {pattern.id} is not an afterCompletion pattern")
            if task.status is TaskStatus.COMPLETE or pattern.active_instance_id != task.id:
                raise ValidationError(
                    f"Task {task_id} is not the open instance of pattern {pattern.id}",
                    {"task_id": task_id, "pattern_id": pattern.id, "active_instance_id": pattern.active_instance_id},
                )

            completed = await self.repository.update_task(
                TaskUpdate(id=task.id, status=TaskStatus.COMPLETE, completed_at=completed_at), self.user_id
            )
            self.state.upsert_task(completed)

            next_day = add_days(completed_at.date(), pattern.days_after_completion)
            if await self._after_completion_ended(pattern, next_day):
                updated_pattern = await self.repository.update_recurring_pattern(
                    PatternUpdate(id=pattern.id, active_instance_id=None), self.user_id
                )
                self.state.upsert_pattern(updated_pattern)
                logger.info(f"Pattern {pattern.id} reached its end condition")
                return None

            letter = pattern.priority.letter
            instance = await self.repository.create_task(
                TaskCreate(
                    title=pattern.title,
                    description=pattern.description,
                    category_id=pattern.category_id,
                    priority=TaskPriority(
                        letter=letter,
                        number=next_priority_number(self.state.tasks_on(next_day), letter),
                    ),
                    scheduled_date=next_day,
                    scheduled_time=pattern.start_time,
                    recurring_pattern_id=pattern.id,
                    is_recurring_instance=True,
                    instance_date=next_day,
                ),
                self.user_id,
            )
            try:
                updated_pattern = await self.repository.update_recurring_pattern(
                    PatternUpdate(id=pattern.id, active_instance_id=instance.id), self.user_id
                )
            except Exception as exc:
                await self._compensate_create(instance, exc, source_id=pattern.id)
                raise PartialFailureError(
                    f"Failed to update recurring pattern {pattern.id}; the next instance was removed",
                    {"pattern_id": pattern.id, "task_id": task.id},
                ) from exc

            self.state.upsert_task(instance)
            self.state.upsert_pattern(updated_pattern)

        engine_logger.info(
            "after_completion_scheduled",
            user_id=self.user_id,
            pattern_id=pattern.id,
            completed_task_id=task_id,
            next_task_id=instance.id,
            next_date=to_date_string(next_day),
        )
        return instance

    async def _after_completion_ended(self, pattern: RecurringPattern, next_day) -> bool:
        end = pattern.end_condition
        if end.type is EndConditionType.DATE:
            return end.end_date is not None and next_day > end.end_date
        if end.type is EndConditionType.OCCURRENCES and end.max_occurrences:
            instances = await self.repository.get_instances_for_pattern(pattern.id, self.user_id)
            return len(instances) >= end.max_occurrences
        return False

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def _soft_delete_all(self, tasks: List[Task]):
        for task in tasks:
            await self.repository.soft_delete_task(task.id, self.user_id)
            self.state.remove_task(task.id)

    async def delete_occurrence(self, source_id: str, occurrence_date):
        """
        Delete "this occurrence only".

        The day becomes an exception. When the deleted day is the recurring
        parent's own scheduled day, the parent moves to the next occurrence
        (or stays put, hidden by the exception, when there is none). A stored
        instance for that day is soft-deleted.
        """
        day = normalize_to_date(occurrence_date)
        async with self._syncing("Failed to delete recurring task instance"):
            source = self._resolve_source(source_id)
            key = to_date_string(day)

            if isinstance(source, Task):
                rule = source.recurrence
                modifications = {k: v for k, v in rule.instance_modifications.items() if k != key}
                new_rule = rule.model_copy(update={
                    "exceptions": add_exception_with_dedup(rule.exceptions, day),
                    "instance_modifications": modifications,
                })
                changes = {"recurrence": new_rule}
                if is_same_day(day, source.scheduled_date):
                    moved_to = next_occurrence(source.model_copy(update={"recurrence": new_rule}), day)
                    if moved_to is not None:
                        changes["scheduled_date"] = moved_to
                        changes["recurrence"] = pin_rule_anchor(new_rule, source.scheduled_date)
                stored = self._stored_instances_on(source.id, day)
                updated = await self.repository.update_task(TaskUpdate(id=source.id, **changes), self.user_id)
            else:
                stored = await self.repository.get_instances_for_pattern(source.id, self.user_id, day, day)
                updated = await self.repository.update_recurring_pattern(
                    PatternUpdate(id=source.id, exceptions=add_exception_with_dedup(source.exceptions, day)),
                    self.user_id,
                )
            self._commit_source(updated)
            await self._soft_delete_all(stored)

        engine_logger.info("occurrence_deleted", user_id=self.user_id, source_id=source_id, occurrence_date=key)
        return updated

    async def delete_occurrence_and_future(self, source_id: str, occurrence_date):
        """
        Delete "this and all future occurrences" by ending the series the day before.

        Stored instances on or after the day are soft-deleted. A legacy parent
        whose own day is being deleted is soft-deleted as a whole.
        """
        day = normalize_to_date(occurrence_date)
        end_condition = EndCondition(type=EndConditionType.DATE, end_date=add_days(day, -1))
        async with self._syncing("Failed to delete recurring task instances"):
            source = self._resolve_source(source_id)

            if isinstance(source, Task):
                stored = [
                    task for task in await self.repository.get_instances_for_parent(source.id, self.user_id)
                    if task.instance_date is not None and task.instance_date >= day
                ]
                if day <= source.scheduled_date:
                    await self.repository.soft_delete_task(source.id, self.user_id)
                    self.state.remove_task(source.id)
                    updated = None
                else:
                    new_rule = source.recurrence.model_copy(update={"end_condition": end_condition})
                    updated = await self.repository.update_task(
                        TaskUpdate(id=source.id, recurrence=new_rule), self.user_id
                    )
                    self._commit_source(updated)
            else:
                stored = await self.repository.get_instances_for_pattern(source.id, self.user_id, start=day)
                updated = await self.repository.update_recurring_pattern(
                    PatternUpdate(id=source.id, end_condition=end_condition), self.user_id
                )
                self._commit_source(updated)
            await self._soft_delete_all(stored)

        engine_logger.info(
            "series_ended",
            user_id=self.user_id,
            source_id=source_id,
            end_date=to_date_string(end_condition.end_date),
            instances_deleted=len(stored),
        )
        return updated
