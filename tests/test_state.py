import unittest
from datetime import date

from planner.schemas.task import TaskStatus
from planner.services.errors import ValidationError
from planner.services.recurrence import virtual_occurrence
from planner.services.state import (
    FetchCategory,
    PlannerState,
    active_recurring_patterns,
    completed_task_count_for_date,
    find_visible_task,
    is_date_loaded,
    task_count_for_date,
    tasks_by_priority_for_date,
    tasks_visible_on_date,
)
from tests.fakes import USER_ID, make_parent, make_pattern, make_task

MONDAYS = {"type": "weekly", "days_of_week": [1]}


def summary(tasks):
    return [(task.id, str(task.priority)) for task in tasks]


class TestStateMutations(unittest.TestCase):
    def setUp(self):
        self.state = PlannerState(USER_ID)

    def test_user_id_is_required(self):
        with self.assertRaises(ValidationError) as ctx:
            PlannerState("")
        self.assertEqual(ctx.exception.code, "UNAUTHORIZED")

    def test_date_index_follows_moves(self):
        self.state.upsert_task(make_task("t1", "2026-02-02"))
        self.state.upsert_task(make_task("t1", "2026-02-03"))
        self.assertNotIn("2026-02-02", self.state.task_ids_by_date)
        self.assertEqual(self.state.task_ids_by_date["2026-02-03"], ["t1"])

        self.state.remove_task("t1")
        self.assertEqual(self.state.task_ids_by_date, {})

    def test_virtual_occurrences_are_never_stored(self):
        parent = make_parent("p1", "2026-02-02", MONDAYS)
        with self.assertRaises(ValueError):
            self.state.upsert_task(virtual_occurrence(parent, "2026-02-09"))

    def test_set_tasks_for_date_keeps_recurring_parents(self):
        parent = make_parent("p1", "2026-02-02", MONDAYS)
        self.state.set_recurring_parents([parent])
        self.state.upsert_task(make_task("old", "2026-02-02"))

        self.state.set_tasks_for_date("2026-02-02", [make_task("new", "2026-02-02")])

        self.assertEqual(sorted(self.state.task_ids_by_date["2026-02-02"]), ["new", "p1"])
        self.assertNotIn("old", self.state.tasks)
        self.assertTrue(is_date_loaded(self.state, date(2026, 2, 2)))
        self.assertFalse(is_date_loaded(self.state, "2026-02-03"))

    def test_in_flight_guard(self):
        self.assertTrue(self.state.begin_fetch(FetchCategory.TASKS_FOR_DATE, "2026-02-02"))
        self.assertFalse(self.state.begin_fetch(FetchCategory.TASKS_FOR_DATE, "2026-02-02"))
        self.assertTrue(self.state.begin_fetch(FetchCategory.TASKS_FOR_DATE, "2026-02-03"))
        self.state.end_fetch(FetchCategory.TASKS_FOR_DATE, "2026-02-02")
        self.assertFalse(self.state.is_fetching(FetchCategory.TASKS_FOR_DATE, "2026-02-02"))


class TestVisibleTasks(unittest.TestCase):
    def setUp(self):
        self.state = PlannerState(USER_ID)
        self.parent = make_parent("p1", "2026-02-02", MONDAYS, letter="A", number=1)
        self.state.set_recurring_parents([self.parent])

    def test_virtual_occurrences_are_numbered_after_stored_tasks(self):
        self.state.set_tasks_for_date("2026-02-09", [
            make_task("t1", "2026-02-09", "A", 1),
            make_task("t2", "2026-02-09", "A", 2),
        ])
        self.assertEqual(summary(tasks_visible_on_date(self.state, "2026-02-09")), [
            ("t1", "A1"), ("t2", "A2"), ("p1_2026-02-09", "A3"),
        ])

    def test_parent_shows_on_its_own_day_only(self):
        self.assertEqual(summary(tasks_visible_on_date(self.state, "2026-02-02")), [("p1", "A1")])
        self.assertEqual(tasks_visible_on_date(self.state, "2026-02-03"), [])
        self.assertEqual(tasks_visible_on_date(self.state, "2026-01-26"), [])

    def test_excepted_parent_day_is_hidden(self):
        self.state.set_recurring_parents([
            make_parent("p1", "2026-02-02", {**MONDAYS, "exceptions": ["2026-02-02"]}),
        ])
        self.assertEqual(tasks_visible_on_date(self.state, "2026-02-02"), [])

    def test_parent_modification_is_overlaid_on_its_own_day(self):
        self.state.set_recurring_parents([
            make_parent("p1", "2026-02-02", {
                **MONDAYS, "instance_modifications": {"2026-02-02": {"status": "complete"}},
            }),
        ])
        visible = tasks_visible_on_date(self.state, "2026-02-02")
        self.assertEqual(visible[0].status, TaskStatus.COMPLETE)
        self.assertEqual(completed_task_count_for_date(self.state, "2026-02-02"), 1)

    def test_materialized_occurrence_hides_the_virtual_one(self):
        instance = make_task(
            "i1", "2026-02-09", "A", 4,
            recurring_parent_id="p1", is_recurring_instance=True, instance_date="2026-02-09",
        )
        self.state.set_tasks_for_date("2026-02-09", [instance])
        self.assertEqual(summary(tasks_visible_on_date(self.state, "2026-02-09")), [("i1", "A4")])

    def test_delete_status_is_filtered(self):
        self.state.set_tasks_for_date("2026-02-10", [
            make_task("t1", "2026-02-10", status="delete"),
            make_task("t2", "2026-02-10", "B", 1),
        ])
        self.assertEqual(summary(tasks_visible_on_date(self.state, "2026-02-10")), [("t2", "B1")])
        self.assertEqual(task_count_for_date(self.state, "2026-02-10"), 1)

    def test_patterns_are_virtual_only_beyond_generated_until(self):
        self.state.set_patterns([make_pattern("pt1", "2026-02-01", generated_until="2026-02-10")])
        self.assertEqual(tasks_visible_on_date(self.state, "2026-02-10"), [])
        self.assertEqual(summary(tasks_visible_on_date(self.state, "2026-02-11")), [("pt1_2026-02-11", "B1")])

    def test_grouping_and_lookup(self):
        self.state.set_patterns([make_pattern("pt1", "2026-02-01")])
        grouped = tasks_by_priority_for_date(self.state, "2026-02-09")
        self.assertEqual([task.id for task in grouped["A"]], ["p1_2026-02-09"])
        self.assertEqual([task.id for task in grouped["B"]], ["pt1_2026-02-09"])

        found = find_visible_task(self.state, "2026-02-09", "pt1_2026-02-09")
        self.assertFalse(found.materialized)
        self.assertIsNone(find_visible_task(self.state, "2026-02-09", "missing"))

    def test_active_patterns_are_sorted_by_title(self):
        self.state.set_patterns([
            make_pattern("pt2", "2026-02-01", title="Water plants"),
            make_pattern("pt1", "2026-02-01", title="Inbox zero"),
        ])
        self.assertEqual([pattern.id for pattern in active_recurring_patterns(self.state)], ["pt1", "pt2"])


if __name__ == "__main__":
    unittest.main(verbosity=2)
