import unittest

from planner.services.errors import ReorderValidationError
from planner.services.priority import (
    apply_explicit_order,
    gap_counts_by_letter,
    group_by_priority,
    has_priority_gaps,
    next_priority_number,
    reorder_to_fill_gaps,
    sort_by_priority,
)
from tests.fakes import make_task

DAY = "2026-02-02"


class TestFillGaps(unittest.TestCase):
    def test_gaps_are_closed_with_minimal_updates(self):
        tasks = [make_task("a1", DAY, "A", 1), make_task("a3", DAY, "A", 3), make_task("a5", DAY, "A", 5)]
        result = reorder_to_fill_gaps(tasks)

        self.assertTrue(result.has_changes)
        self.assertEqual(
            {update.id: str(update.priority) for update in result.updates},
            {"a3": "A2", "a5": "A3"},
        )

    def test_dense_day_needs_no_updates(self):
        tasks = [make_task("a1", DAY, "A", 1), make_task("a2", DAY, "A", 2), make_task("b1", DAY, "B", 1)]
        result = reorder_to_fill_gaps(tasks)
        self.assertFalse(result.has_changes)
        self.assertEqual(result.updates, [])

    def test_every_letter_is_dense_afterwards(self):
        tasks = [
            make_task("a4", DAY, "A", 4), make_task("a9", DAY, "A", 9),
            make_task("c2", DAY, "C", 2), make_task("d7", DAY, "D", 7), make_task("d8", DAY, "D", 8),
        ]
        numbers = {task.id: task.priority for task in tasks}
        for update in reorder_to_fill_gaps(tasks).updates:
            numbers[update.id] = update.priority

        for letter in "ACD":
            used = sorted(priority.number for priority in numbers.values() if priority.letter == letter)
            self.assertEqual(used, list(range(1, len(used) + 1)))
        # Relative order is kept
        self.assertEqual(numbers["a4"].number, 1)
        self.assertEqual(numbers["a9"].number, 2)


class TestNumbering(unittest.TestCase):
    def test_next_number_ignores_gaps(self):
        tasks = [make_task("a1", DAY, "A", 1), make_task("a4", DAY, "A", 4)]
        self.assertEqual(next_priority_number(tasks, "A"), 5)
        self.assertEqual(next_priority_number(tasks, "B"), 1)

    def test_sort_and_group(self):
        tasks = [make_task("b1", DAY, "B", 1), make_task("a2", DAY, "A", 2), make_task("a1", DAY, "A", 1)]
        self.assertEqual([task.id for task in sort_by_priority(tasks)], ["a1", "a2", "b1"])
        grouped = group_by_priority(tasks)
        self.assertEqual(list(grouped), ["A", "B", "C", "D"])
        self.assertEqual([task.id for task in grouped["A"]], ["a1", "a2"])
        self.assertEqual(grouped["D"], [])

    def test_gap_counts(self):
        tasks = [make_task("a1", DAY, "A", 1), make_task("a4", DAY, "A", 4), make_task("b1", DAY, "B", 1)]
        self.assertEqual(gap_counts_by_letter(tasks), {"A": 2, "B": 0, "C": 0, "D": 0})
        self.assertTrue(has_priority_gaps(tasks))


class TestExplicitOrder(unittest.TestCase):
    def setUp(self):
        self.tasks = {
            task.id: task for task in [
                make_task("a1", DAY, "A", 1), make_task("a2", DAY, "A", 2), make_task("b1", DAY, "B", 1),
            ]
        }

    def test_numbers_follow_positions(self):
        updates = apply_explicit_order(["a2", "a1"], "A", self.tasks)
        self.assertEqual([(update.id, str(update.priority)) for update in updates], [("a2", "A1"), ("a1", "A2")])

    def test_wrong_letter_is_rejected(self):
        with self.assertRaises(ReorderValidationError) as ctx:
            apply_explicit_order(["a1", "b1"], "A", self.tasks)
        self.assertIn("Invalid task in reorder", ctx.exception.message)

    def test_unknown_and_duplicate_ids_are_rejected(self):
        with self.assertRaises(ReorderValidationError):
            apply_explicit_order(["a1", "zz"], "A", self.tasks)
        with self.assertRaises(ReorderValidationError):
            apply_explicit_order(["a1", "a1"], "A", self.tasks)


if __name__ == "__main__":
    unittest.main(verbosity=2)
