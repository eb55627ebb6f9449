"""
Priority Ordering Engine

Pure helpers for the (letter, number) ranking key. Within one scheduled day
and one letter, numbers are dense and 1-based after a reorder; appends use
the next free number and may leave gaps until the next reorder.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, NamedTuple, Sequence

from planner.schemas.task import PRIORITY_LETTERS, Task, TaskPriority, TaskUpdate
from planner.services.errors import ReorderValidationError


class PriorityReorderResult(NamedTuple):
    updates: List[TaskUpdate]
    has_changes: bool


def _with_letter(tasks: Iterable[Task], letter: str) -> List[Task]:
    return [task for task in tasks if task.priority.letter == letter]


def max_priority_number(tasks: Iterable[Task], letter: str) -> int:
    """Highest number used by ``letter`` (0 when the letter is unused)."""
    return max((task.priority.number for task in _with_letter(tasks, letter)), default=0)


def next_priority_number(tasks: Iterable[Task], letter: str) -> int:
    """Next number for an append: 1 + max(existing), ignoring gaps."""
    return max_priority_number(tasks, letter) + 1


def sort_by_priority(tasks: Iterable[Task]) -> List[Task]:
    return sorted(tasks, key=lambda task: (task.priority.letter, task.priority.number))


def group_by_priority(tasks: Iterable[Task]) -> Dict[str, List[Task]]:
    """Tasks per letter, each list sorted by number. Every letter is present."""
    grouped = {letter: [] for letter in PRIORITY_LETTERS}
    for task in sort_by_priority(tasks):
        grouped[task.priority.letter].append(task)
    return grouped


def reorder_to_fill_gaps(tasks: Iterable[Task]) -> PriorityReorderResult:
    """
    Renumber every letter group of a day to 1..n, keeping relative order.

    Args:
        tasks: Tasks of one scheduled day

    Returns:
        Updates for the tasks whose number actually changes
    """
    updates = []
    for letter, group in group_by_priority(tasks).items():
        # sorted() is stable, so ties keep their incoming order
        for position, task in enumerate(group, start=1):
            if task.priority.number != position:
                updates.append(
                    TaskUpdate(id=task.id, priority=TaskPriority(letter=letter, number=position))
                )
    return PriorityReorderResult(updates=updates, has_changes=bool(updates))


def apply_explicit_order(
    ordered_ids: Sequence[str],
    letter: str,
    tasks_by_id: Mapping[str, Task],
) -> List[TaskUpdate]:
    """
    Number one letter group by position in a user-supplied order.

    Raises:
        ReorderValidationError: If an id is unknown, repeated, or has another letter
    """
    if letter not in PRIORITY_LETTERS:
        raise ReorderValidationError(f"Unknown priority letter: {letter}")

    seen = set()
    updates = []
    for position, task_id in enumerate(ordered_ids, start=1):
        task = tasks_by_id.get(task_id)
        if task is None:
            raise ReorderValidationError(
                f"Invalid task in reorder: {task_id} is not loaded", {"task_id": task_id}
            )
        if task.priority.letter != letter:
            raise ReorderValidationError(
                f"Invalid task in reorder: {task_id} has priority {task.priority.letter}, not {letter}",
                {"task_id": task_id},
            )
        if task_id in seen:
            raise ReorderValidationError(
                f"Invalid task in reorder: {task_id} appears twice", {"task_id": task_id}
            )
        seen.add(task_id)
        updates.append(TaskUpdate(id=task_id, priority=TaskPriority(letter=letter, number=position)))
    return updates


def has_priority_gaps(tasks: Iterable[Task]) -> bool:
    return any(count > 0 for count in gap_counts_by_letter(tasks).values())


def gap_counts_by_letter(tasks: Iterable[Task]) -> Dict[str, int]:
    """Missing numbers per letter between 1 and the letter's max."""
    numbers = defaultdict(set)
    for task in tasks:
        numbers[task.priority.letter].add(task.priority.number)
    return {
        letter: (max(numbers[letter]) - len(numbers[letter] - {0})) if numbers[letter] else 0
        for letter in PRIORITY_LETTERS
    }
