import unittest
from datetime import date

from sqlalchemy.pool import StaticPool

from planner.db.config import build_engine
from planner.db.init import init_db
from planner.repositories.sql import SqlPlannerRepository
from planner.schemas.pattern import PatternCreate, PatternUpdate
from planner.schemas.task import TaskCreate, TaskKind, TaskStatus, TaskUpdate
from planner.services.errors import NotFoundError
from tests.fakes import USER_ID

OTHER_USER = "user-2"


def task_input(day="2026-02-02", letter="A", number=1, **fields):
    fields.setdefault("title", "Write report")
    return TaskCreate(priority={"letter": letter, "number": number}, scheduled_date=day, **fields)


class SqlRepositoryTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.engine = build_engine("sqlite://", poolclass=StaticPool)
        init_db(self.engine)
        self.repo = SqlPlannerRepository(self.engine)

    def tearDown(self):
        self.engine.dispose()


class TestTasks(SqlRepositoryTestCase):
    async def test_create_and_fetch_by_date(self):
        created = await self.repo.create_task(task_input(scheduled_time="08:30"), USER_ID)
        await self.repo.create_task(task_input(day="2026-02-03"), USER_ID)
        await self.repo.create_task(task_input(), OTHER_USER)

        tasks = await self.repo.get_tasks_by_date(USER_ID, date(2026, 2, 2))

        self.assertEqual([task.id for task in tasks], [created.id])
        self.assertEqual(tasks[0].scheduled_time, "08:30")
        self.assertEqual(str(tasks[0].priority), "A1")
        self.assertEqual(len(await self.repo.get_tasks_by_range(USER_ID, date(2026, 2, 1), date(2026, 2, 28))), 2)

    async def test_recurrence_round_trips_through_json(self):
        parent = await self.repo.create_task(task_input(recurrence={
            "type": "monthly",
            "nth_weekday": {"n": -1, "weekday": 5},
            "exceptions": ["2026-02-27"],
            "instance_modifications": {"2026-03-27": {"status": "complete"}},
        }), USER_ID)

        (loaded,) = await self.repo.get_recurring_tasks(USER_ID)

        self.assertEqual(loaded.id, parent.id)
        self.assertEqual(loaded.kind, TaskKind.RECURRING_PARENT)
        self.assertEqual(loaded.recurrence.nth_weekday.n, -1)
        self.assertEqual(loaded.recurrence.exceptions, [date(2026, 2, 27)])
        self.assertEqual(loaded.recurrence.instance_modifications["2026-03-27"].status, TaskStatus.COMPLETE)
        self.assertEqual(self.repo.get_users_with_recurring_tasks(), [USER_ID])

    async def test_other_users_tasks_are_not_found(self):
        task = await self.repo.create_task(task_input(), OTHER_USER)
        with self.assertRaises(NotFoundError):
            await self.repo.get_task(task.id, USER_ID)
        with self.assertRaises(NotFoundError):
            await self.repo.update_task(TaskUpdate(id=task.id, title="Mine now"), USER_ID)

    async def test_soft_delete_restore_and_hard_delete(self):
        task = await self.repo.create_task(task_input(), USER_ID)

        await self.repo.soft_delete_task(task.id, USER_ID)
        self.assertEqual(await self.repo.get_tasks_by_date(USER_ID, date(2026, 2, 2)), [])
        self.assertIsNotNone((await self.repo.get_task(task.id, USER_ID, include_deleted=True)).deleted_at)

        restored = await self.repo.restore_task(task.id, USER_ID)
        self.assertIsNone(restored.deleted_at)

        await self.repo.hard_delete_task(task.id, USER_ID)
        await self.repo.hard_delete_task(task.id, USER_ID)
        with self.assertRaises(NotFoundError):
            await self.repo.get_task(task.id, USER_ID, include_deleted=True)

    async def test_batch_update_is_all_or_nothing(self):
        first = await self.repo.create_task(task_input(number=1), USER_ID)
        second = await self.repo.create_task(task_input(number=2), USER_ID)

        updated = await self.repo.batch_update_tasks([
            TaskUpdate(id=first.id, priority={"letter": "A", "number": 2}),
            TaskUpdate(id=second.id, priority={"letter": "A", "number": 1}),
        ], USER_ID)
        self.assertEqual([str(task.priority) for task in updated], ["A2", "A1"])

        with self.assertRaises(NotFoundError):
            await self.repo.batch_update_tasks([
                TaskUpdate(id=first.id, priority={"letter": "A", "number": 9}),
                TaskUpdate(id="missing", priority={"letter": "A", "number": 1}),
            ], USER_ID)
        self.assertEqual(str((await self.repo.get_task(first.id, USER_ID)).priority), "A2")

    async def test_instances_of_a_parent(self):
        parent = await self.repo.create_task(task_input(recurrence={"type": "daily"}), USER_ID)
        instance = await self.repo.create_task(task_input(
            day="2026-02-03", recurring_parent_id=parent.id, is_recurring_instance=True, instance_date="2026-02-03",
        ), USER_ID)

        self.assertEqual([task.id for task in await self.repo.get_instances_for_parent(parent.id, USER_ID)], [instance.id])
        self.assertEqual([task.id for task in await self.repo.get_recurring_tasks(USER_ID)], [parent.id])


class TestPatterns(SqlRepositoryTestCase):
    async def create_pattern(self, **fields):
        fields.setdefault("type", "monthly")
        data = PatternCreate(title="Pay rent", priority={"letter": "A", "number": 0}, start_date="2026-01-01", **fields)
        return await self.repo.create_recurring_pattern(data, USER_ID)

    async def create_instance(self, pattern_id, day):
        return await self.repo.create_task(task_input(
            day=day, recurring_pattern_id=pattern_id, is_recurring_instance=True, instance_date=day,
        ), USER_ID)

    async def test_pattern_round_trip(self):
        created = await self.create_pattern(
            nth_weekday={"n": 2, "weekday": 2},
            end_condition={"type": "occurrences", "max_occurrences": 12},
            exceptions=["2026-02-10"],
        )

        loaded = await self.repo.get_recurring_pattern(created.id, USER_ID)

        self.assertEqual(loaded.nth_weekday.weekday, 2)
        self.assertEqual(loaded.end_condition.max_occurrences, 12)
        self.assertEqual(loaded.exceptions, [date(2026, 2, 10)])
        self.assertEqual(loaded.start_date, date(2026, 1, 1))

    async def test_update_and_foreign_ids(self):
        created = await self.create_pattern(day_of_month=1)

        updated = await self.repo.update_recurring_pattern(
            PatternUpdate(id=created.id, day_of_month=5, generated_until="2026-04-01"), USER_ID
        )
        self.assertEqual(updated.day_of_month, 5)
        self.assertEqual(updated.generated_until, date(2026, 4, 1))

        with self.assertRaises(NotFoundError):
            await self.repo.get_recurring_pattern(created.id, OTHER_USER)

    async def test_instance_queries_and_range_delete(self):
        pattern = await self.create_pattern(day_of_month=1)
        january = await self.create_instance(pattern.id, "2026-01-01")
        february = await self.create_instance(pattern.id, "2026-02-01")
        march = await self.create_instance(pattern.id, "2026-03-01")

        in_range = await self.repo.get_instances_for_pattern(pattern.id, USER_ID, date(2026, 2, 1), date(2026, 2, 28))
        self.assertEqual([task.id for task in in_range], [february.id])

        deleted = await self.repo.soft_delete_pattern_instances(pattern.id, USER_ID, start=date(2026, 2, 1))
        self.assertEqual(sorted(deleted), sorted([february.id, march.id]))
        remaining = await self.repo.get_instances_for_pattern(pattern.id, USER_ID)
        self.assertEqual([task.id for task in remaining], [january.id])

    async def test_cascade_delete(self):
        pattern = await self.create_pattern(day_of_month=1)
        await self.create_instance(pattern.id, "2026-01-01")

        await self.repo.delete_recurring_pattern(pattern.id, USER_ID)

        self.assertEqual(await self.repo.get_recurring_patterns(USER_ID), [])
        self.assertEqual(await self.repo.get_instances_for_pattern(pattern.id, USER_ID), [])
        with self.assertRaises(NotFoundError):
            await self.repo.delete_recurring_pattern(pattern.id, USER_ID)


if __name__ == "__main__":
    unittest.main(verbosity=2)
