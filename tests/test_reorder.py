import asyncio
import unittest

from planner.services.errors import ReorderInProgressError, ReorderValidationError
from planner.services.reorder import ReorderPhase, ReorderTransactionManager
from planner.services.state import PlannerState, SyncStatus
from tests.fakes import USER_ID, InMemoryRepository, InjectedFailure, make_task

DAY = "2026-02-02"


class ReorderTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.repo = InMemoryRepository()
        self.state = PlannerState(USER_ID)
        for task in [
            make_task("a1", DAY, "A", 1),
            make_task("a2", DAY, "A", 2),
            make_task("a3", DAY, "A", 3),
            make_task("b1", DAY, "B", 1),
        ]:
            self.state.upsert_task(self.repo.add_task(task))
        self.manager = ReorderTransactionManager(self.state, self.repo)

    def numbers(self, source):
        return {task_id: str(task.priority) for task_id, task in source.items() if task.deleted_at is None}


class TestReorder(ReorderTestCase):
    async def test_confirmed_reorder(self):
        await self.manager.reorder(["a3", "a1", "a2"], "A")

        expected = {"a3": "A1", "a1": "A2", "a2": "A3", "b1": "B1"}
        self.assertEqual(self.numbers(self.state.tasks), expected)
        self.assertEqual(self.numbers(self.repo.tasks), expected)
        self.assertIsNone(self.state.reorder_rollback)
        self.assertEqual(self.manager.phase, ReorderPhase.CONFIRMED)
        self.assertEqual(self.state.sync_status, SyncStatus.SYNCED)

    async def test_failed_write_restores_every_number(self):
        before = self.numbers(self.state.tasks)
        self.repo.fail_next("batch_update_tasks")

        with self.assertRaises(InjectedFailure):
            await self.manager.reorder(["a3", "a1", "a2"], "A")

        self.assertEqual(self.numbers(self.state.tasks), before)
        self.assertIsNone(self.state.reorder_rollback)
        self.assertEqual(self.manager.phase, ReorderPhase.ROLLED_BACK)
        self.assertEqual(self.state.sync_status, SyncStatus.ERROR)
        self.assertIn("Failed to reorder tasks", self.state.error)

    async def test_invalid_order_touches_nothing(self):
        before = self.numbers(self.state.tasks)
        with self.assertRaises(ReorderValidationError):
            await self.manager.reorder(["a1", "b1"], "A")
        self.assertEqual(self.numbers(self.state.tasks), before)
        self.assertNotIn("batch_update_tasks", self.repo.calls)

    async def test_second_reorder_is_rejected_while_the_first_is_pending(self):
        release = asyncio.Event()
        original = self.repo.batch_update_tasks

        async def slow_batch(updates, user_id):
            await release.wait()
            return await original(updates, user_id)

        self.repo.batch_update_tasks = slow_batch
        first = asyncio.ensure_future(self.manager.reorder(["a3", "a1", "a2"], "A"))
        await asyncio.sleep(0)
        self.assertTrue(self.manager.in_progress)

        with self.assertRaises(ReorderInProgressError):
            await self.manager.reorder(["a1", "a2", "a3"], "A")

        release.set()
        await first
        self.assertEqual(str(self.state.tasks["a3"].priority), "A1")
        self.assertFalse(self.manager.in_progress)

    async def test_cancelled_write_restores_numbers_and_frees_the_slot(self):
        before = self.numbers(self.state.tasks)
        blocked = asyncio.Event()

        async def hanging_batch(updates, user_id):
            await blocked.wait()

        self.repo.batch_update_tasks = hanging_batch
        pending = asyncio.ensure_future(self.manager.reorder(["a2", "a1", "a3"], "A"))
        await asyncio.sleep(0)
        self.assertEqual(str(self.state.tasks["a1"].priority), "A2")

        pending.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await pending

        self.assertEqual(self.numbers(self.state.tasks), before)
        self.assertIsNone(self.state.reorder_rollback)
        self.assertEqual(self.manager.phase, ReorderPhase.ROLLED_BACK)
        self.assertEqual(self.state.sync_status, SyncStatus.ERROR)

        del self.repo.batch_update_tasks
        await self.manager.reorder(["a2", "a1", "a3"], "A")
        self.assertEqual(str(self.repo.tasks["a1"].priority), "A2")


class TestFillGaps(ReorderTestCase):
    async def test_day_is_renumbered_after_the_write(self):
        self.state.remove_task("a2")
        self.repo.tasks.pop("a2")

        result = await self.manager.fill_gaps(DAY)

        self.assertTrue(result.has_changes)
        self.assertEqual(str(self.repo.tasks["a3"].priority), "A2")
        self.assertEqual(str(self.state.tasks["a3"].priority), "A2")

    async def test_failed_write_leaves_state_untouched(self):
        self.state.remove_task("a2")
        self.repo.tasks.pop("a2")
        self.repo.fail_next("batch_update_tasks")

        with self.assertRaises(InjectedFailure):
            await self.manager.fill_gaps(DAY)
        self.assertEqual(str(self.state.tasks["a3"].priority), "A3")

    async def test_dense_day_skips_the_write(self):
        result = await self.manager.fill_gaps(DAY)
        self.assertFalse(result.has_changes)
        self.assertNotIn("batch_update_tasks", self.repo.calls)


if __name__ == "__main__":
    unittest.main(verbosity=2)
