"""
Recurring Pattern Service

Creates, edits and deletes recurring patterns and keeps their stored
instances generated up to a rolling window (GENERATION_DAYS ahead).
"""

import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional

from planner.schemas.pattern import (
    PatternCreate,
    PatternGeneration,
    PatternUpdate,
    RecurringPattern,
    apply_pattern_update,
)
from planner.schemas.task import EndConditionType, RecurrenceType, Task, TaskCreate, TaskPriority, TaskStatus
from planner.services.base import StateBoundService
from planner.services.errors import ValidationError
from planner.services.priority import next_priority_number
from planner.services.recurrence import generate_occurrence_dates
from planner.services.recurrence_validator import RecurrenceValidator
from planner.services.state import FetchCategory
from planner.utils.dates import add_days, normalize_to_date, to_date_string
from planner.utils.logger import get_logger
from planner.utils.metrics import INSTANCES_GENERATED, PATTERNS_CREATED, metrics_collector

logger = logging.getLogger(__name__)
pattern_logger = get_logger("planner.patterns")

ALL_KEY = "all"


def _validate(rule) -> None:
    validation = RecurrenceValidator.validate_rule(rule)
    if not validation["valid"]:
        raise ValidationError("; ".join(validation["errors"]), {"errors": validation["errors"]})
    for warning in validation["warnings"]:
        logger.warning(f"Recurrence warning: {warning}")


def last_allowed_date(pattern: RecurringPattern, horizon: date) -> Optional[date]:
    """
    Last day the pattern may produce an occurrence on, looking no further than ``horizon``.

    None means the series is open-ended within the horizon.
    """
    end = pattern.end_condition
    if end.type is EndConditionType.DATE:
        return end.end_date
    if end.type is EndConditionType.OCCURRENCES:
        dates = generate_occurrence_dates(pattern, pattern.start_date, horizon)
        if len(dates) >= (end.max_occurrences or 0):
            return dates[-1] if dates else pattern.start_date - timedelta(days=1)
    return None


class PatternService(StateBoundService):
    """Recurring pattern lifecycle for one user."""

    async def fetch_recurring_patterns(self) -> Optional[List[RecurringPattern]]:
        if not self.state.begin_fetch(FetchCategory.RECURRING_PATTERNS, ALL_KEY):
            return None
        try:
            async with self._syncing("Failed to fetch recurring patterns"):
                patterns = await self.repository.get_recurring_patterns(self.user_id)
                self.state.set_patterns(patterns)
        finally:
            self.state.end_fetch(FetchCategory.RECURRING_PATTERNS, ALL_KEY)
        return patterns

    async def _require_pattern(self, pattern_id: str) -> RecurringPattern:
        pattern = self.state.patterns.get(pattern_id)
        if pattern is None:
            # Raises NotFoundError for unknown or foreign ids
            pattern = await self.repository.get_recurring_pattern(pattern_id, self.user_id)
        return pattern

    # ------------------------------------------------------------------
    # Instance generation
    # ------------------------------------------------------------------

    def _instance_input(self, pattern: RecurringPattern, day: date, number: int) -> TaskCreate:
        return TaskCreate(
            title=pattern.title,
            description=pattern.description,
            category_id=pattern.category_id,
            priority=TaskPriority(letter=pattern.priority.letter, number=number),
            status=TaskStatus.IN_PROGRESS,
            scheduled_date=day,
            scheduled_time=pattern.start_time,
            recurring_pattern_id=pattern.id,
            is_recurring_instance=True,
            instance_date=day,
        )

    async def generate_instances(
        self,
        pattern: RecurringPattern,
        dates: Iterable[date],
        skip_dates: Iterable[date] = (),
    ) -> PatternGeneration:
        """
        Store one instance per day, skipping days that already have one.

        One failing day is logged and recorded; generation continues with the
        next day.
        """
        skip = {to_date_string(day) for day in skip_dates}
        skip.update(to_date_string(task.instance_date) for task in self.state.instances_of_pattern(pattern.id))

        result = PatternGeneration(pattern=pattern)
        letter = pattern.priority.letter
        for day in dates:
            if to_date_string(day) in skip:
                continue
            number = next_priority_number(self.state.tasks_on(day), letter)
            try:
                instance = await self.repository.create_task(self._instance_input(pattern, day, number), self.user_id)
            except Exception as exc:
                pattern_logger.exception(
                    "instance_generation_failed",
                    pattern_id=pattern.id,
                    occurrence_date=to_date_string(day),
                    error=str(exc),
                )
                result.errors.append(f"{to_date_string(day)}: {exc}")
                continue
            self.state.upsert_task(instance)
            result.instances.append(instance)

        metrics_collector.increment_counter(INSTANCES_GENERATED, len(result.instances))
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_recurring_pattern(self, data: PatternCreate) -> PatternGeneration:
        """
        Create a pattern and store its first window of instances.

        The start date defaults to today and ``generated_until`` to
        start + GENERATION_DAYS. An afterCompletion pattern gets exactly one
        instance, on its start date, which becomes its active instance.
        """
        async with self._syncing("Failed to create recurring task"):
            _validate(data)
            start = data.start_date or self.clock()
            generated_until = data.generated_until or add_days(start, self.generation_days)
            pattern = await self.repository.create_recurring_pattern(
                data.model_copy(update={"start_date": start, "generated_until": generated_until}),
                self.user_id,
            )
            self.state.upsert_pattern(pattern)

            dates = generate_occurrence_dates(pattern, start, generated_until)
            result = await self.generate_instances(pattern, dates)

            if pattern.type is RecurrenceType.AFTER_COMPLETION and result.instances:
                pattern = await self.repository.update_recurring_pattern(
                    PatternUpdate(id=pattern.id, active_instance_id=result.instances[0].id),
                    self.user_id,
                )
                self.state.upsert_pattern(pattern)
            result.pattern = pattern

        metrics_collector.increment_counter(PATTERNS_CREATED)
        pattern_logger.info(
            "pattern_created",
            user_id=self.user_id,
            pattern_id=pattern.id,
            type=pattern.type.value,
            instances=len(result.instances),
            errors=len(result.errors),
        )
        return result

    async def update_recurring_pattern(
        self,
        update: PatternUpdate,
        regenerate_future_instances: bool = False,
    ) -> PatternGeneration:
        """
        Apply a partial pattern edit.

        Extending the end condition generates the newly allowed days inside
        the generation window; shortening it soft-deletes instances past the
        new end. With ``regenerate_future_instances`` every future in-progress
        instance is replaced by one built from the edited template.
        """
        async with self._syncing("Failed to update recurring task"):
            existing = await self._require_pattern(update.id)
            today = self.clock()
            horizon = add_days(today, self.generation_days)

            _validate(apply_pattern_update(existing, update))
            pattern = await self.repository.update_recurring_pattern(update, self.user_id)
            self.state.upsert_pattern(pattern)
            result = PatternGeneration(pattern=pattern)
            if pattern.type is RecurrenceType.AFTER_COMPLETION:
                return result

            old_last = last_allowed_date(existing, horizon)
            new_last = last_allowed_date(pattern, horizon)

            if new_last is not None and (old_last is None or new_last < old_last):
                await self._delete_instances_after(pattern, new_last)

            window_start = max(pattern.start_date, today)
            if regenerate_future_instances:
                await self._delete_future_open_instances(pattern, today)
                generated = await self._generate_window(pattern, window_start, pattern.generated_until or horizon)
            elif old_last is not None and (new_last is None or new_last > old_last):
                from_day = max(add_days(old_last, 1), window_start)
                generated = await self._generate_window(pattern, from_day, horizon)
            else:
                generated = None

            if generated is not None:
                result = generated

        pattern_logger.info(
            "pattern_updated",
            user_id=self.user_id,
            pattern_id=update.id,
            regenerated=regenerate_future_instances,
            instances=len(result.instances),
        )
        return result

    async def _generate_window(self, pattern: RecurringPattern, start: date, end: date) -> PatternGeneration:
        dates = generate_occurrence_dates(pattern, start, end) if start <= end else []
        existing = await self.repository.get_instances_for_pattern(pattern.id, self.user_id, start, end)
        result = await self.generate_instances(pattern, dates, skip_dates=[task.instance_date for task in existing])
        if pattern.generated_until is None or end > pattern.generated_until:
            pattern = await self.repository.update_recurring_pattern(
                PatternUpdate(id=pattern.id, generated_until=end), self.user_id
            )
            self.state.upsert_pattern(pattern)
        result.pattern = pattern
        return result

    async def _delete_instances_after(self, pattern: RecurringPattern, last_day: date):
        deleted_ids = await self.repository.soft_delete_pattern_instances(
            pattern.id, self.user_id, start=add_days(last_day, 1)
        )
        for task_id in deleted_ids:
            self.state.remove_task(task_id)
        logger.info(f"Removed {len(deleted_ids)} instances of {pattern.id} after {to_date_string(last_day)}")

    async def _delete_future_open_instances(self, pattern: RecurringPattern, today: date):
        instances = await self.repository.get_instances_for_pattern(pattern.id, self.user_id, start=today)
        for instance in instances:
            if instance.status is not TaskStatus.IN_PROGRESS:
                continue
            await self.repository.soft_delete_task(instance.id, self.user_id)
            self.state.remove_task(instance.id)

    async def delete_recurring_pattern(self, pattern_id: str, cascade: bool = True):
        """Soft-delete a pattern and, with ``cascade``, its instances."""
        async with self._syncing("Failed to delete recurring task"):
            await self.repository.delete_recurring_pattern(pattern_id, self.user_id, cascade)
            self.state.remove_pattern(pattern_id)
            if cascade:
                for instance in self.state.instances_of_pattern(pattern_id):
                    self.state.remove_task(instance.id)
        pattern_logger.info("pattern_deleted", user_id=self.user_id, pattern_id=pattern_id, cascade=cascade)

    async def ensure_instances_for_date(self, pattern_id: str, day) -> List[Task]:
        """
        Make sure instances exist for ``day``.

        Nothing happens when ``day`` is within the generated window; otherwise
        instances are generated up to ``day + GENERATION_DAYS``.
        """
        day = normalize_to_date(day)
        async with self._syncing("Failed to generate recurring instances"):
            pattern = await self._require_pattern(pattern_id)
            if pattern.type is RecurrenceType.AFTER_COMPLETION:
                return []
            if pattern.generated_until is not None and day <= pattern.generated_until:
                return []

            start = add_days(pattern.generated_until, 1) if pattern.generated_until else pattern.start_date
            result = await self._generate_window(pattern, start, add_days(day, self.generation_days))
        return result.instances

    async def ensure_instances_for_all(self, day) -> List[Task]:
        instances = []
        for pattern in list(self.state.patterns.values()):
            instances.extend(await self.ensure_instances_for_date(pattern.id, day))
        return instances
