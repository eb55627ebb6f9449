"""Task schemas for the planner engine."""
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from planner.utils.dates import normalize_to_date, to_date_string

PRIORITY_LETTERS = ("A", "B", "C", "D")


class TaskStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FORWARD = "forward"
    DELEGATE = "delegate"
    CANCELLED = "cancelled"
    # Terminal sentinel, distinct from soft delete
    DELETE = "delete"


# Order used when a status is cycled by clicking
STATUS_ORDER = [
    TaskStatus.IN_PROGRESS,
    TaskStatus.COMPLETE,
    TaskStatus.FORWARD,
    TaskStatus.DELEGATE,
    TaskStatus.CANCELLED,
]


def next_status(current: TaskStatus) -> TaskStatus:
    """Return the status after ``current`` in the click cycle."""
    if current not in STATUS_ORDER:
        return TaskStatus.IN_PROGRESS
    return STATUS_ORDER[(STATUS_ORDER.index(current) + 1) % len(STATUS_ORDER)]


class TaskKind(str, Enum):
    """The mutually exclusive shapes a task can take."""
    PLAIN = "plain"
    RECURRING_PARENT = "recurring_parent"
    LEGACY_INSTANCE = "legacy_instance"
    PATTERN_INSTANCE = "pattern_instance"


class RecurrenceType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    AFTER_COMPLETION = "afterCompletion"


class EndConditionType(str, Enum):
    NEVER = "never"
    DATE = "date"
    OCCURRENCES = "occurrences"


class TaskPriority(BaseModel):
    """Composite (letter, number) ranking key, e.g. A1."""
    letter: str = Field(..., pattern=r"^[ABCD]$")
    # 0 marks a virtual occurrence that has not been numbered yet
    number: int = Field(default=0, ge=0)

    def __str__(self) -> str:
        return f"{self.letter}{self.number}"


class EndCondition(BaseModel):
    type: EndConditionType = EndConditionType.NEVER
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = Field(default=None, ge=1)

    @field_validator("end_date", mode="before")
    @classmethod
    def _normalize_end_date(cls, value):
        return normalize_to_date(value)


class NthWeekday(BaseModel):
    """Monthly "nth weekday" selector; n=-1 means the last one in the month."""
    n: int = Field(..., ge=-1, le=5)
    weekday: int = Field(..., ge=0, le=6)

    @field_validator("n")
    @classmethod
    def _reject_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("n must be 1-5 or -1")
        return value


class InstanceModification(BaseModel):
    """Per-date overlay applied to a virtual occurrence."""
    status: Optional[TaskStatus] = None
    title: Optional[str] = None
    description: Optional[str] = None


class RecurrenceRuleFields(BaseModel):
    """Rule fields shared by embedded recurrence and recurring patterns."""
    type: RecurrenceType
    interval: int = Field(default=1, ge=1)
    days_of_week: List[int] = Field(default_factory=list)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    month_of_year: Optional[int] = Field(default=None, ge=1, le=12)
    nth_weekday: Optional[NthWeekday] = None
    specific_dates_of_month: Optional[List[int]] = None
    days_after_completion: Optional[int] = Field(default=None, ge=1)
    end_condition: EndCondition = Field(default_factory=EndCondition)
    exceptions: List[date] = Field(default_factory=list)

    @field_validator("days_of_week")
    @classmethod
    def _check_days_of_week(cls, value: List[int]) -> List[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week entries must be 0 (Sunday) to 6 (Saturday)")
        return sorted(set(value))

    @field_validator("specific_dates_of_month")
    @classmethod
    def _check_specific_dates(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is None:
            return None
        if any(day < 1 or day > 31 for day in value):
            raise ValueError("specific_dates_of_month entries must be 1-31")
        return sorted(set(value))

    @field_validator("exceptions", mode="before")
    @classmethod
    def _normalize_exceptions(cls, value):
        if value is None:
            return []
        return [normalize_to_date(item) for item in value]


class RecurrenceRule(RecurrenceRuleFields):
    """Legacy recurrence embedded in a parent task."""
    instance_modifications: Dict[str, InstanceModification] = Field(default_factory=dict)

    @field_validator("instance_modifications", mode="before")
    @classmethod
    def _normalize_modification_keys(cls, value):
        if not value:
            return {}
        return {to_date_string(key): modification for key, modification in value.items()}


class Task(BaseModel):
    """A planner task in any of its four shapes (see TaskKind)."""
    id: str
    user_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    category_id: Optional[str] = None
    priority: TaskPriority
    status: TaskStatus = TaskStatus.IN_PROGRESS
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    recurrence: Optional[RecurrenceRule] = None
    recurring_pattern_id: Optional[str] = None
    is_recurring_instance: bool = False
    recurring_parent_id: Optional[str] = None
    instance_date: Optional[date] = None
    migrated_to_pattern_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deleted_at: Optional[datetime] = None
    # False for occurrences computed by the expander and never persisted
    materialized: bool = True

    class Config:
        from_attributes = True

    @field_validator("scheduled_date", "instance_date", mode="before")
    @classmethod
    def _normalize_dates(cls, value):
        return normalize_to_date(value)

    @model_validator(mode="after")
    def _check_kind(self):
        # Raises for mixed shapes
        _ = self.kind
        return self

    @property
    def kind(self) -> TaskKind:
        has_rule = self.recurrence is not None
        has_parent = self.recurring_parent_id is not None
        has_pattern = self.recurring_pattern_id is not None

        if sum((has_rule, has_parent, has_pattern)) > 1:
            raise ValueError("a task cannot mix embedded recurrence, a legacy parent and a pattern")
        if has_rule:
            if self.is_recurring_instance:
                raise ValueError("a recurring parent cannot be a recurring instance")
            return TaskKind.RECURRING_PARENT
        if has_parent:
            if not self.is_recurring_instance:
                raise ValueError("a legacy instance must be flagged as a recurring instance")
            return TaskKind.LEGACY_INSTANCE
        if has_pattern:
            return TaskKind.PATTERN_INSTANCE
        if self.is_recurring_instance:
            raise ValueError("a recurring instance needs a parent or a pattern")
        return TaskKind.PLAIN

    @property
    def source_id(self) -> Optional[str]:
        """Id of the parent task or pattern this task recurs from."""
        if self.kind is TaskKind.RECURRING_PARENT:
            return self.id
        return self.recurring_parent_id or self.recurring_pattern_id

    @property
    def date_key(self) -> str:
        return to_date_string(self.scheduled_date)


class TaskCreate(BaseModel):
    """Schema for creating a task."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    category_id: Optional[str] = None
    priority: TaskPriority
    status: TaskStatus = TaskStatus.IN_PROGRESS
    scheduled_date: date
    scheduled_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    recurrence: Optional[RecurrenceRule] = None
    recurring_pattern_id: Optional[str] = None
    is_recurring_instance: bool = False
    recurring_parent_id: Optional[str] = None
    instance_date: Optional[date] = None

    @field_validator("scheduled_date", "instance_date", mode="before")
    @classmethod
    def _normalize_dates(cls, value):
        return normalize_to_date(value)


class TaskChanges(BaseModel):
    """
    Partial changes to a task.

    Only the fields explicitly set are applied, so a field can be cleared by
    setting it to None.
    """
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    category_id: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    recurrence: Optional[RecurrenceRule] = None
    recurring_pattern_id: Optional[str] = None
    is_recurring_instance: Optional[bool] = None
    recurring_parent_id: Optional[str] = None
    instance_date: Optional[date] = None
    migrated_to_pattern_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    @field_validator("scheduled_date", "instance_date", mode="before")
    @classmethod
    def _normalize_dates(cls, value):
        return normalize_to_date(value)

    def changes(self) -> dict:
        """Explicitly set fields, excluding the id."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "id"
        }


class TaskUpdate(TaskChanges):
    """Changes addressed to one task by id."""
    id: str


def apply_task_update(task: Task, update: TaskUpdate) -> Task:
    """Return a copy of ``task`` with the update applied and revalidated."""
    data = task.model_dump()
    for name, value in update.changes().items():
        data[name] = value.model_dump() if isinstance(value, BaseModel) else value
    data["updated_at"] = datetime.utcnow()
    return Task.model_validate(data)


class OccurrenceOverrides(BaseModel):
    """Fields that may differ on a single materialized occurrence."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category_id: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    scheduled_time: Optional[str] = None


class ReorderRequest(BaseModel):
    letter: str = Field(..., pattern=r"^[ABCD]$")
    ordered_ids: List[str] = Field(..., min_length=1)


class ForwardRequest(BaseModel):
    new_date: date

    @field_validator("new_date", mode="before")
    @classmethod
    def _normalize(cls, value):
        return normalize_to_date(value)


class StatusRequest(BaseModel):
    status: TaskStatus


class CleanupResult(BaseModel):
    tasks_checked: int = 0
    tasks_cleaned: int = 0
    total_duplicates_removed: int = 0
