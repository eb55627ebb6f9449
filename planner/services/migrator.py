"""
Legacy-to-Pattern Migrator

Converts recurring parents that embed their recurrence rule into standalone
recurring patterns. Existing materialized instances are re-linked to the new
pattern, the first generation window is stored, and the legacy parent is
marked as migrated and soft-deleted.
"""

import logging
from typing import List

from planner.schemas.pattern import MigrationResult, PatternCreate, PatternUpdate, RecurringPattern
from planner.schemas.task import RecurrenceType, Task, TaskStatus, TaskUpdate
from planner.services.base import StateBoundService
from planner.services.pattern_service import PatternService
from planner.services.recurrence import generate_occurrence_dates
from planner.utils.dates import add_days
from planner.utils.logger import get_logger
from planner.utils.metrics import MIGRATION_DURATION, MIGRATION_ERRORS, metrics_collector

logger = logging.getLogger(__name__)
migration_logger = get_logger("planner.migration")


def pattern_input_from_parent(parent: Task) -> PatternCreate:
    """Build the pattern equivalent of a legacy recurring parent."""
    rule = parent.recurrence
    return PatternCreate(
        title=parent.title,
        description=parent.description,
        category_id=parent.category_id,
        priority=parent.priority,
        start_time=parent.scheduled_time,
        type=rule.type,
        interval=rule.interval,
        days_of_week=rule.days_of_week,
        day_of_month=rule.day_of_month,
        month_of_year=rule.month_of_year,
        nth_weekday=rule.nth_weekday,
        specific_dates_of_month=rule.specific_dates_of_month,
        days_after_completion=rule.days_after_completion,
        end_condition=rule.end_condition,
        start_date=parent.scheduled_date,
        exceptions=rule.exceptions,
    )


class LegacyMigrator(StateBoundService):
    """One-shot migration of a user's legacy recurring parents."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.patterns = PatternService(self.state, self.repository, self.clock, self.generation_days)

    async def migrate_all(self, dry_run: bool = False) -> MigrationResult:
        """
        Migrate every non-deleted legacy recurring parent of the user.

        A failing parent is recorded in ``errors`` and the run moves on to the
        next one.

        Args:
            dry_run: Count what would change without writing anything

        Returns:
            MigrationResult with per-run counters
        """
        result = MigrationResult()
        with metrics_collector.time_operation(MIGRATION_DURATION):
            parents = await self.repository.get_recurring_tasks(self.user_id)
            result.tasks_processed = len(parents)
            migration_logger.info(
                "migration_started", user_id=self.user_id, parents=len(parents), dry_run=dry_run
            )

            for parent in parents:
                try:
                    if dry_run:
                        instances = await self.repository.get_instances_for_parent(parent.id, self.user_id)
                        result.patterns_created += 1
                        result.instances_updated += len(instances)
                        continue
                    await self._migrate_parent(parent, result)
                except Exception as exc:
                    message = f"Failed to migrate task {parent.id}: {exc}"
                    migration_logger.error("migration_failed", user_id=self.user_id, task_id=parent.id, error=str(exc))
                    metrics_collector.increment_counter(MIGRATION_ERRORS)
                    result.errors.append(message)

        migration_logger.info(
            "migration_finished",
            user_id=self.user_id,
            tasks_processed=result.tasks_processed,
            patterns_created=result.patterns_created,
            instances_generated=result.instances_generated,
            instances_updated=result.instances_updated,
            errors=len(result.errors),
        )
        return result

    async def _migrate_parent(self, parent: Task, result: MigrationResult) -> RecurringPattern:
        today = self.clock()
        horizon = add_days(today, self.generation_days)

        pattern = await self.repository.create_recurring_pattern(
            pattern_input_from_parent(parent).model_copy(update={"generated_until": horizon}),
            self.user_id,
        )
        self.state.upsert_pattern(pattern)
        result.patterns_created += 1
        logger.info(f"Created pattern {pattern.id} from legacy task {parent.id}")

        relinked = await self._relink_instances(parent, pattern)
        result.instances_updated += len(relinked)

        start = max(pattern.start_date, today)
        if pattern.type is RecurrenceType.AFTER_COMPLETION:
            open_instances = [task for task in relinked if task.status is TaskStatus.IN_PROGRESS]
            dates = [] if open_instances else [start]
        else:
            dates = generate_occurrence_dates(pattern, start, horizon)
        generation = await self.patterns.generate_instances(
            pattern, dates, skip_dates=[task.instance_date for task in relinked if task.instance_date]
        )
        result.instances_generated += len(generation.instances)
        result.errors.extend(f"Task {parent.id}: {error}" for error in generation.errors)

        if pattern.type is RecurrenceType.AFTER_COMPLETION:
            active = generation.instances or open_instances
            if active:
                pattern = await self.repository.update_recurring_pattern(
                    PatternUpdate(id=pattern.id, active_instance_id=active[0].id), self.user_id
                )
                self.state.upsert_pattern(pattern)

        await self.repository.update_task(TaskUpdate(id=parent.id, migrated_to_pattern_id=pattern.id), self.user_id)
        await self.repository.soft_delete_task(parent.id, self.user_id)
        self.state.remove_task(parent.id)
        return pattern

    async def _relink_instances(self, parent: Task, pattern: RecurringPattern) -> List[Task]:
        instances = await self.repository.get_instances_for_parent(parent.id, self.user_id)
        if not instances:
            return []
        updates = [
            TaskUpdate(
                id=instance.id,
                recurring_pattern_id=pattern.id,
                recurring_parent_id=None,
                is_recurring_instance=True,
            )
            for instance in instances
        ]
        relinked = await self.repository.batch_update_tasks(updates, self.user_id)
        self.state.upsert_tasks(relinked)
        return relinked
