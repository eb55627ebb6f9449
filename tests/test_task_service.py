import unittest
from datetime import date

from planner.schemas.task import TaskCreate, TaskStatus
from planner.services.errors import PartialFailureError, ValidationError
from planner.services.state import FetchCategory, PlannerState, SyncStatus, is_date_loaded
from planner.services.task_service import TaskService
from tests.fakes import USER_ID, InjectedFailure, InMemoryRepository, make_parent, make_task

DAY = "2026-02-02"


class TaskServiceTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.repo = InMemoryRepository()
        self.state = PlannerState(USER_ID)
        self.service = TaskService(self.state, self.repo)


class TestFetch(TaskServiceTestCase):
    async def test_fetch_replaces_the_day(self):
        self.repo.add_task(make_task("t1", DAY))
        self.state.upsert_task(make_task("stale", DAY))

        tasks = await self.service.fetch_tasks_for_date(DAY)

        self.assertEqual([task.id for task in tasks], ["t1"])
        self.assertEqual(self.state.task_ids_by_date[DAY], ["t1"])
        self.assertTrue(is_date_loaded(self.state, DAY))

    async def test_duplicate_fetch_is_skipped(self):
        self.state.begin_fetch(FetchCategory.TASKS_FOR_DATE, DAY)
        self.assertIsNone(await self.service.fetch_tasks_for_date(DAY))
        self.assertNotIn("get_tasks_by_date", self.repo.calls)

    async def test_failed_fetch_sets_the_error(self):
        self.repo.fail_next("get_tasks_by_date")
        with self.assertRaises(InjectedFailure):
            await self.service.fetch_tasks_for_date(DAY)
        self.assertEqual(self.state.sync_status, SyncStatus.ERROR)
        self.assertIn("Failed to fetch tasks", self.state.error)
        self.assertFalse(self.state.is_fetching(FetchCategory.TASKS_FOR_DATE, DAY))

    async def test_range_fetch_marks_every_day_loaded(self):
        self.repo.add_task(make_task("t1", "2026-02-03"))
        await self.service.fetch_tasks_for_range("2026-02-01", "2026-02-04")
        for day in ("2026-02-01", "2026-02-02", "2026-02-03", "2026-02-04"):
            self.assertTrue(is_date_loaded(self.state, day))
        with self.assertRaises(ValidationError):
            await self.service.fetch_tasks_for_range("2026-02-04", "2026-02-01")


class TestCrud(TaskServiceTestCase):
    async def test_create_numbers_after_the_day(self):
        self.state.upsert_task(self.repo.add_task(make_task("t1", DAY, "C", 4)))

        task = await self.service.create_task(TaskCreate(
            title="Renew passport", priority={"letter": "C", "number": 0}, scheduled_date=DAY,
        ))

        self.assertEqual(str(task.priority), "C5")
        self.assertIn(task.id, self.state.task_ids_by_date[DAY])

    async def test_failed_write_leaves_state_alone(self):
        self.repo.fail_next("create_task")
        with self.assertRaises(InjectedFailure):
            await self.service.create_task(TaskCreate(
                title="Renew passport", priority={"letter": "C", "number": 1}, scheduled_date=DAY,
            ))
        self.assertEqual(self.state.tasks, {})


class TestForward(TaskServiceTestCase):
    def setUp(self):
        super().setUp()
        self.state.upsert_task(self.repo.add_task(make_task("t1", DAY, "B", 2, scheduled_time="10:00")))
        self.state.upsert_task(self.repo.add_task(make_task("t2", "2026-02-03", "B", 1)))

    async def test_copy_is_numbered_on_the_new_day(self):
        copy = await self.service.forward_task("t1", "2026-02-03")

        self.assertEqual(copy.scheduled_date, date(2026, 2, 3))
        self.assertEqual(str(copy.priority), "B2")
        self.assertEqual(copy.scheduled_time, "10:00")
        self.assertEqual(self.repo.tasks["t1"].status, TaskStatus.FORWARD)
        self.assertEqual(self.state.tasks["t1"].status, TaskStatus.FORWARD)

    async def test_failed_status_write_removes_the_copy(self):
        self.repo.fail_next("update_task")

        with self.assertRaises(PartialFailureError):
            await self.service.forward_task("t1", "2026-02-03")

        self.assertEqual(sorted(self.repo.tasks), ["t1", "t2"])
        self.assertEqual(self.state.tasks_on("2026-02-03")[0].id, "t2")
        self.assertEqual(len(self.state.tasks_on("2026-02-03")), 1)

    async def test_same_day_is_rejected(self):
        with self.assertRaises(ValidationError):
            await self.service.forward_task("t1", DAY)


class TestExceptionCleanup(TaskServiceTestCase):
    async def test_duplicate_exceptions_are_collapsed(self):
        self.repo.add_task(make_parent("p1", DAY, {
            "type": "daily", "exceptions": ["2026-02-03", "2026-02-03T00:00:00", "2026-02-05"],
        }))
        self.repo.add_task(make_parent("p2", DAY, {"type": "daily", "exceptions": ["2026-02-04"]}))

        result = await self.service.cleanup_duplicate_exceptions()

        self.assertEqual(result.tasks_checked, 2)
        self.assertEqual(result.tasks_cleaned, 1)
        self.assertEqual(result.total_duplicates_removed, 1)
        self.assertEqual(self.repo.tasks["p1"].recurrence.exceptions, [date(2026, 2, 3), date(2026, 2, 5)])


if __name__ == "__main__":
    unittest.main(verbosity=2)
