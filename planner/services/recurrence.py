"""
Recurrence Expander

Pure functions that turn a recurrence rule into calendar days and virtual
(unpersisted) task occurrences. Nothing in this module touches state or
persistence.

A source is either a legacy recurring parent task (rule embedded in
``task.recurrence``, series anchored on ``task.scheduled_date``) or a
RecurringPattern (rule on the pattern, anchored on ``pattern.start_date``).
"""

import logging
from datetime import date, timedelta
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from planner import config
from planner.schemas.pattern import RecurringPattern
from planner.schemas.task import (
    EndCondition,
    EndConditionType,
    InstanceModification,
    RecurrenceRuleFields,
    RecurrenceType,
    Task,
    TaskKind,
    TaskPriority,
    TaskStatus,
)
from planner.services.recurrence_validator import RecurrenceValidator
from planner.utils.dates import (
    date_range,
    days_in_month,
    months_between,
    normalize_to_date,
    start_of_week,
    to_date_string,
    weekday_index,
)

logger = logging.getLogger(__name__)

RecurrenceSource = Union[Task, RecurringPattern]


# =============================================================================
# Exceptions and end conditions
# =============================================================================

def is_date_in_exceptions(day, exceptions: Iterable) -> bool:
    """Check a day against an exception list holding any date representation."""
    key = to_date_string(day)
    if not key:
        return False
    return any(to_date_string(exception) == key for exception in exceptions)


def add_exception_with_dedup(exceptions: Iterable, day) -> List[date]:
    """
    Return a new exception list containing ``day`` exactly once.

    Existing entries are normalized as well, so a list that already held the
    same day as a string or datetime does not grow.
    """
    cleaned, _ = dedupe_exceptions(exceptions)
    new_day = normalize_to_date(day)
    if new_day not in cleaned:
        cleaned.append(new_day)
    return cleaned


def dedupe_exceptions(exceptions: Iterable) -> Tuple[List[date], int]:
    """Normalize and deduplicate an exception list, keeping first-seen order.

    Returns:
        (cleaned list, number of duplicates removed)
    """
    seen = set()
    cleaned = []
    removed = 0
    for exception in exceptions:
        day = normalize_to_date(exception)
        if day is None:
            continue
        if day in seen:
            removed += 1
            continue
        seen.add(day)
        cleaned.append(day)
    return cleaned, removed


def has_reached_end_condition(end_condition: EndCondition, count: int, day) -> bool:
    """
    Check whether a series has ended by the time it reaches ``day``.

    Args:
        end_condition: The series end condition
        count: Occurrences already produced before ``day``
        day: The candidate day

    Returns:
        True when ``day`` is past the end date or the occurrence limit is used up
    """
    if end_condition.type is EndConditionType.DATE:
        if end_condition.end_date is None:
            return False
        return normalize_to_date(day) > end_condition.end_date
    if end_condition.type is EndConditionType.OCCURRENCES:
        if not end_condition.max_occurrences:
            return False
        return count >= end_condition.max_occurrences
    return False


# =============================================================================
# Rule membership
# =============================================================================

def nth_weekday_of_month(year: int, month: int, n: int, weekday: int) -> Optional[date]:
    """
    Resolve "the nth <weekday> of a month".

    Args:
        year: Calendar year
        month: 1-12
        n: 1-5, or -1 for the last one in the month
        weekday: 0=Sunday ... 6=Saturday

    Returns:
        The day, or None when the month has no such occurrence or the input is invalid
    """
    if n == 0 or n < -1 or n > 5 or weekday < 0 or weekday > 6 or month < 1 or month > 12:
        return None

    last_day = days_in_month(year, month)
    if n == -1:
        last = date(year, month, last_day)
        return last - timedelta(days=(weekday_index(last) - weekday) % 7)

    first = date(year, month, 1)
    day = 1 + (weekday - weekday_index(first)) % 7 + (n - 1) * 7
    if day > last_day:
        return None
    return date(year, month, day)


def _monthly_days(rule: RecurrenceRuleFields, start: date, year: int, month: int) -> List[date]:
    # nth_weekday, then specific dates, then day_of_month, then the start day
    if rule.nth_weekday is not None:
        day = nth_weekday_of_month(year, month, rule.nth_weekday.n, rule.nth_weekday.weekday)
        return [day] if day else []

    last_day = days_in_month(year, month)
    if rule.specific_dates_of_month:
        return sorted({date(year, month, min(value, last_day)) for value in rule.specific_dates_of_month})

    target = rule.day_of_month or start.day
    return [date(year, month, min(target, last_day))]


def matches_rule(rule: RecurrenceRuleFields, start: date, day: date) -> bool:
    """True when ``day`` is an occurrence of ``rule`` anchored at ``start``.

    Exceptions and end conditions are not considered here.
    """
    if day < start:
        return False

    if rule.type is RecurrenceType.DAILY:
        return (day - start).days % rule.interval == 0

    if rule.type is RecurrenceType.WEEKLY:
        if weekday_index(day) not in rule.days_of_week:
            return False
        week_index = (start_of_week(day) - start_of_week(start)).days // 7
        return week_index % rule.interval == 0

    if rule.type is RecurrenceType.MONTHLY:
        if months_between(start, day) % rule.interval != 0:
            return False
        return day in _monthly_days(rule, start, day.year, day.month)

    if rule.type is RecurrenceType.YEARLY:
        if (day.year - start.year) % rule.interval != 0:
            return False
        month = rule.month_of_year or start.month
        target = rule.day_of_month or start.day
        # Clamping also turns Feb 29 into Feb 28 outside leap years
        return day.month == month and day.day == min(target, days_in_month(day.year, month))

    # afterCompletion occurrences are created on completion, never expanded
    return False


def pin_rule_anchor(rule: RecurrenceRuleFields, start: date) -> RecurrenceRuleFields:
    """
    Copy of ``rule`` with the selectors it takes from ``start`` written out.

    Monthly rules without a selector and yearly rules without a month or day
    follow the start date. Pinning keeps the same occurrences when the rule
    is re-anchored on a later (possibly clamped) day.
    """
    pinned = {}
    if rule.type is RecurrenceType.MONTHLY:
        if rule.nth_weekday is None and not rule.specific_dates_of_month and rule.day_of_month is None:
            pinned["day_of_month"] = start.day
    elif rule.type is RecurrenceType.YEARLY:
        if rule.month_of_year is None:
            pinned["month_of_year"] = start.month
        if rule.day_of_month is None:
            pinned["day_of_month"] = start.day
    return rule.model_copy(update=pinned) if pinned else rule


def _rule_and_start(source: RecurrenceSource) -> Tuple[Optional[RecurrenceRuleFields], Optional[date]]:
    if isinstance(source, RecurringPattern):
        return source, source.start_date
    return source.recurrence, source.scheduled_date


def iter_occurrence_dates(
    rule: RecurrenceRuleFields,
    start: date,
    range_start: date,
    range_end: date,
) -> Iterator[date]:
    """
    Yield the occurrence days of a rule inside ``[range_start, range_end]``.

    Occurrences are counted from ``start`` inclusive and only non-excepted
    days count toward an occurrences end condition.
    """
    end = rule.end_condition
    last = range_end
    if end.type is EndConditionType.DATE and end.end_date is not None:
        last = min(last, end.end_date)

    # Counting must begin at the series start when occurrences are limited
    first = start
    if end.type is not EndConditionType.OCCURRENCES:
        first = max(start, range_start)

    exceptions = set(rule.exceptions)
    count = 0
    for day in date_range(first, last):
        if not matches_rule(rule, start, day) or day in exceptions:
            continue
        if has_reached_end_condition(end, count, day):
            return
        count += 1
        if day >= range_start:
            yield day


def _is_expandable(source: RecurrenceSource, rule: Optional[RecurrenceRuleFields], start: Optional[date]) -> bool:
    if rule is None or start is None:
        return False
    if source.deleted_at is not None:
        return False
    validation = RecurrenceValidator.validate_rule(rule)
    if not validation["valid"]:
        logger.warning(f"Skipping expansion of {source.id}: {'; '.join(validation['errors'])}")
        return False
    return True


def generate_occurrence_dates(
    source: RecurrenceSource,
    range_start,
    range_end,
    max_instances: Optional[int] = None,
) -> List[date]:
    """
    List the occurrence days of a source inside a window.

    For afterCompletion sources only the start date is returned (when inside
    the window); it seeds the first instance.
    """
    rule, start = _rule_and_start(source)
    range_start = normalize_to_date(range_start)
    range_end = normalize_to_date(range_end)
    if not _is_expandable(source, rule, start):
        return []

    if rule.type is RecurrenceType.AFTER_COMPLETION:
        return [start] if range_start <= start <= range_end else []

    limit = max_instances or config.MAX_RECURRING_INSTANCES
    dates = []
    for day in iter_occurrence_dates(rule, start, range_start, range_end):
        if len(dates) >= limit:
            logger.warning(
                f"Reached maximum recurring instances limit ({limit}) for {source.id}"
            )
            break
        dates.append(day)
    return dates


def next_occurrence(source: RecurrenceSource, after) -> Optional[date]:
    """First occurrence strictly after ``after``, or None if the series has ended."""
    rule, start = _rule_and_start(source)
    if not _is_expandable(source, rule, start) or rule.type is RecurrenceType.AFTER_COMPLETION:
        return None

    after = normalize_to_date(after)
    # One full interval of the coarsest unit always contains the next occurrence
    horizon = after + timedelta(days=366 * rule.interval + 31)
    for day in iter_occurrence_dates(rule, start, after + timedelta(days=1), horizon):
        return day
    return None


# =============================================================================
# Virtual occurrences
# =============================================================================

def apply_instance_modification(task: Task, modification: Optional[InstanceModification]) -> Task:
    """Overlay a per-date modification onto a task without persisting anything."""
    if modification is None:
        return task
    overrides = {
        name: value
        for name, value in modification.model_dump().items()
        if value is not None
    }
    return task.model_copy(update=overrides) if overrides else task


def occurrence_id(source_id: str, day) -> str:
    return f"{source_id}_{to_date_string(day)}"


def _virtual_from_parent(parent: Task, day: date) -> Task:
    occurrence = parent.model_copy(update={
        "id": occurrence_id(parent.id, day),
        "scheduled_date": day,
        "instance_date": day,
        "is_recurring_instance": True,
        "recurring_parent_id": parent.id,
        "recurrence": None,
        "priority": TaskPriority(letter=parent.priority.letter, number=0),
        "status": TaskStatus.IN_PROGRESS,
        "completed_at": None,
        "materialized": False,
    })
    modification = parent.recurrence.instance_modifications.get(to_date_string(day))
    return apply_instance_modification(occurrence, modification)


def _virtual_from_pattern(pattern: RecurringPattern, day: date) -> Task:
    return Task(
        id=occurrence_id(pattern.id, day),
        user_id=pattern.user_id,
        title=pattern.title,
        description=pattern.description,
        category_id=pattern.category_id,
        priority=TaskPriority(letter=pattern.priority.letter, number=0),
        status=TaskStatus.IN_PROGRESS,
        scheduled_date=day,
        scheduled_time=pattern.start_time,
        recurring_pattern_id=pattern.id,
        is_recurring_instance=True,
        instance_date=day,
        materialized=False,
    )


def virtual_occurrence(source: RecurrenceSource, day) -> Task:
    """Build the unpersisted task a source implies for ``day``."""
    day = normalize_to_date(day)
    if isinstance(source, RecurringPattern):
        return _virtual_from_pattern(source, day)
    return _virtual_from_parent(source, day)


class OccurrenceWindow:
    """
    Virtual occurrences of one source inside ``[range_start, range_end]``.

    Iteration is lazy and restartable: every ``iter()`` recomputes the
    sequence from the source, so two passes always agree.
    """

    def __init__(self, source: RecurrenceSource, range_start, range_end, max_instances: Optional[int] = None):
        if isinstance(source, Task) and source.kind is not TaskKind.RECURRING_PARENT:
            raise ValueError(f"Task {source.id} is not a recurring parent")
        self.source = source
        self.range_start = normalize_to_date(range_start)
        self.range_end = normalize_to_date(range_end)
        self.max_instances = max_instances or config.MAX_RECURRING_INSTANCES

    def __iter__(self) -> Iterator[Task]:
        return self._generate()

    def _generate(self) -> Iterator[Task]:
        rule, start = _rule_and_start(self.source)
        if not _is_expandable(self.source, rule, start):
            return
        if rule.type is RecurrenceType.AFTER_COMPLETION:
            return

        emitted = 0
        for day in iter_occurrence_dates(rule, start, self.range_start, self.range_end):
            if emitted >= self.max_instances:
                logger.warning(
                    f"Reached maximum recurring instances limit ({self.max_instances}) "
                    f"for {self.source.id}"
                )
                return
            emitted += 1
            yield virtual_occurrence(self.source, day)

    def dates(self) -> List[date]:
        return [occurrence.scheduled_date for occurrence in self]


def expand(source: RecurrenceSource, range_start, range_end, max_instances: Optional[int] = None) -> OccurrenceWindow:
    """
    Expand a recurring parent or pattern into its virtual occurrences.

    Args:
        source: Legacy recurring parent task or RecurringPattern
        range_start: First day of the window (inclusive)
        range_end: Last day of the window (inclusive)
        max_instances: Optional cap, defaults to MAX_RECURRING_INSTANCES

    Returns:
        A restartable OccurrenceWindow; de-duplication against stored tasks
        is left to the caller
    """
    return OccurrenceWindow(source, range_start, range_end, max_instances)
