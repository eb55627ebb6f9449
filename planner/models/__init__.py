"""Table models for the planner database."""

from .recurring_pattern import RecurringPatternRecord
from .task import TaskRecord

__all__ = ["RecurringPatternRecord", "TaskRecord"]
