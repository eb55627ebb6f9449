import unittest
from datetime import date

from planner.schemas.pattern import PatternCreate, PatternUpdate
from planner.schemas.task import TaskStatus
from planner.services.errors import NotFoundError, ValidationError
from planner.services.pattern_service import PatternService, last_allowed_date
from planner.services.state import PlannerState
from planner.utils.metrics import INSTANCES_GENERATED, metrics_collector
from tests.fakes import USER_ID, InMemoryRepository, fixed_clock, make_pattern

TODAY = date(2026, 2, 1)


def daily(**fields):
    fields.setdefault("title", "Stretch")
    fields.setdefault("type", "daily")
    return PatternCreate(priority={"letter": "B", "number": 0}, **fields)


class PatternServiceTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        metrics_collector.reset()
        self.repo = InMemoryRepository()
        self.state = PlannerState(USER_ID)
        self.service = PatternService(self.state, self.repo, clock=fixed_clock(TODAY), generation_days=14)

    def live_instances(self, pattern_id):
        return sorted(
            (task for task in self.repo.live_tasks(USER_ID) if task.recurring_pattern_id == pattern_id),
            key=lambda task: task.instance_date,
        )


class TestCreate(PatternServiceTestCase):
    async def test_first_window_is_generated(self):
        result = await self.service.create_recurring_pattern(daily())

        pattern = result.pattern
        self.assertEqual(pattern.start_date, TODAY)
        self.assertEqual(pattern.generated_until, date(2026, 2, 15))
        self.assertEqual(len(result.instances), 15)
        self.assertEqual(result.errors, [])
        self.assertTrue(all(str(task.priority) == "B1" for task in result.instances))
        self.assertEqual(metrics_collector.get_metrics()["counters"][INSTANCES_GENERATED], 15)

    async def test_after_completion_gets_one_active_instance(self):
        result = await self.service.create_recurring_pattern(
            daily(type="afterCompletion", days_after_completion=3, start_date="2026-02-05")
        )

        self.assertEqual([task.scheduled_date for task in result.instances], [date(2026, 2, 5)])
        self.assertEqual(result.pattern.active_instance_id, result.instances[0].id)
        self.assertEqual(self.repo.patterns[result.pattern.id].active_instance_id, result.instances[0].id)

    async def test_invalid_rule_is_rejected_before_any_write(self):
        with self.assertRaises(ValidationError):
            await self.service.create_recurring_pattern(daily(type="weekly"))
        self.assertNotIn("create_recurring_pattern", self.repo.calls)

    async def test_one_failing_day_does_not_stop_generation(self):
        pattern = self.repo.add_pattern(make_pattern("pt1", "2026-02-01"))
        self.state.set_patterns([pattern])
        self.repo.fail_next("create_task")

        result = await self.service.generate_instances(
            pattern, [date(2026, 2, 1), date(2026, 2, 2), date(2026, 2, 3)]
        )

        self.assertEqual(len(result.instances), 2)
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].startswith("2026-02-01"))


class TestUpdate(PatternServiceTestCase):
    async def test_shortening_removes_instances_past_the_new_end(self):
        pattern = (await self.service.create_recurring_pattern(daily())).pattern

        await self.service.update_recurring_pattern(PatternUpdate(
            id=pattern.id, end_condition={"type": "date", "end_date": "2026-02-10"},
        ))

        instances = self.live_instances(pattern.id)
        self.assertEqual(len(instances), 10)
        self.assertEqual(instances[-1].instance_date, date(2026, 2, 10))
        self.assertEqual(len(self.state.instances_of_pattern(pattern.id)), 10)

    async def test_extending_generates_the_newly_allowed_days(self):
        pattern = (await self.service.create_recurring_pattern(
            daily(end_condition={"type": "date", "end_date": "2026-02-05"})
        )).pattern
        self.assertEqual(len(self.live_instances(pattern.id)), 5)

        result = await self.service.update_recurring_pattern(PatternUpdate(
            id=pattern.id, end_condition={"type": "never"},
        ))

        self.assertEqual(len(result.instances), 10)
        self.assertEqual(result.instances[0].instance_date, date(2026, 2, 6))
        self.assertEqual(len(self.live_instances(pattern.id)), 15)

    async def test_regenerate_replaces_open_future_instances(self):
        created = await self.service.create_recurring_pattern(daily())
        pattern = created.pattern
        done = created.instances[2]
        self.repo.tasks[done.id] = done.model_copy(update={"status": TaskStatus.COMPLETE})

        await self.service.update_recurring_pattern(
            PatternUpdate(id=pattern.id, title="Stretch and breathe"),
            regenerate_future_instances=True,
        )

        instances = self.live_instances(pattern.id)
        self.assertEqual(len(instances), 15)
        titles = {task.id: task.title for task in instances}
        self.assertEqual(titles.pop(done.id), "Stretch")
        self.assertEqual(set(titles.values()), {"Stretch and breathe"})

    async def test_invalid_edit_is_rejected_before_the_write(self):
        pattern = (await self.service.create_recurring_pattern(daily())).pattern
        with self.assertRaises(ValidationError):
            await self.service.update_recurring_pattern(PatternUpdate(id=pattern.id, type="weekly"))
        self.assertNotIn("update_recurring_pattern", self.repo.calls)
        self.assertEqual(self.repo.patterns[pattern.id].type.value, "daily")

    async def test_unknown_pattern(self):
        with self.assertRaises(NotFoundError):
            await self.service.update_recurring_pattern(PatternUpdate(id="missing", title="x"))


class TestEnsureAndDelete(PatternServiceTestCase):
    async def test_inside_the_window_is_a_no_op(self):
        pattern = (await self.service.create_recurring_pattern(daily())).pattern
        calls = len(self.repo.calls)

        self.assertEqual(await self.service.ensure_instances_for_date(pattern.id, "2026-02-10"), [])
        self.assertEqual(len(self.repo.calls), calls)

    async def test_beyond_the_window_extends_generation(self):
        pattern = (await self.service.create_recurring_pattern(daily())).pattern

        created = await self.service.ensure_instances_for_date(pattern.id, "2026-02-20")

        self.assertEqual(created[0].instance_date, date(2026, 2, 16))
        self.assertEqual(created[-1].instance_date, date(2026, 3, 6))
        self.assertEqual(self.repo.patterns[pattern.id].generated_until, date(2026, 3, 6))

    async def test_cascade_delete(self):
        pattern = (await self.service.create_recurring_pattern(daily())).pattern

        await self.service.delete_recurring_pattern(pattern.id)

        self.assertIsNotNone(self.repo.patterns[pattern.id].deleted_at)
        self.assertEqual(self.live_instances(pattern.id), [])
        self.assertNotIn(pattern.id, self.state.patterns)
        self.assertEqual(self.state.instances_of_pattern(pattern.id), [])


class TestLastAllowedDate(unittest.TestCase):
    def test_end_conditions(self):
        horizon = date(2026, 3, 1)
        self.assertIsNone(last_allowed_date(make_pattern("pt1", "2026-02-01"), horizon))
        by_date = make_pattern("pt1", "2026-02-01", end_condition={"type": "date", "end_date": "2026-02-10"})
        self.assertEqual(last_allowed_date(by_date, horizon), date(2026, 2, 10))
        by_count = make_pattern("pt1", "2026-02-01", end_condition={"type": "occurrences", "max_occurrences": 3})
        self.assertEqual(last_allowed_date(by_count, horizon), date(2026, 2, 3))
        # Occurrence limit not reached inside the horizon
        self.assertIsNone(last_allowed_date(by_count, date(2026, 2, 2)))


if __name__ == "__main__":
    unittest.main(verbosity=2)
