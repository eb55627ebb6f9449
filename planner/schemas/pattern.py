"""Recurring pattern schemas."""
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from planner.schemas.task import (
    EndCondition,
    NthWeekday,
    RecurrenceRuleFields,
    RecurrenceType,
    Task,
    TaskPriority,
)
from planner.utils.dates import normalize_to_date


class RecurringPattern(RecurrenceRuleFields):
    """A recurrence rule stored separately from the tasks it generates."""
    id: str
    user_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    category_id: Optional[str] = None
    priority: TaskPriority
    start_time: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)  # minutes
    start_date: date
    # High-water mark of materialized generation
    generated_until: Optional[date] = None
    # The one open instance of an afterCompletion pattern
    active_instance_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("start_date", "generated_until", mode="before")
    @classmethod
    def _normalize_dates(cls, value):
        return normalize_to_date(value)


class PatternCreate(BaseModel):
    """Schema for creating a recurring pattern."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    category_id: Optional[str] = None
    priority: TaskPriority
    start_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    duration: Optional[int] = Field(default=None, ge=0)
    type: RecurrenceType
    interval: int = Field(default=1, ge=1)
    days_of_week: List[int] = Field(default_factory=list)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    month_of_year: Optional[int] = Field(default=None, ge=1, le=12)
    nth_weekday: Optional[NthWeekday] = None
    specific_dates_of_month: Optional[List[int]] = None
    days_after_completion: Optional[int] = Field(default=None, ge=1)
    end_condition: EndCondition = Field(default_factory=EndCondition)
    # Defaults to today when omitted
    start_date: Optional[date] = None
    generated_until: Optional[date] = None
    exceptions: List[date] = Field(default_factory=list)

    @field_validator("start_date", "generated_until", mode="before")
    @classmethod
    def _normalize_dates(cls, value):
        return normalize_to_date(value)

    @field_validator("exceptions", mode="before")
    @classmethod
    def _normalize_exceptions(cls, value):
        return [normalize_to_date(item) for item in value or []]


class PatternChanges(BaseModel):
    """Partial changes to a pattern; only explicitly set fields apply."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category_id: Optional[str] = None
    priority: Optional[TaskPriority] = None
    start_time: Optional[str] = None
    duration: Optional[int] = None
    type: Optional[RecurrenceType] = None
    interval: Optional[int] = Field(default=None, ge=1)
    days_of_week: Optional[List[int]] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    month_of_year: Optional[int] = Field(default=None, ge=1, le=12)
    nth_weekday: Optional[NthWeekday] = None
    specific_dates_of_month: Optional[List[int]] = None
    days_after_completion: Optional[int] = Field(default=None, ge=1)
    end_condition: Optional[EndCondition] = None
    generated_until: Optional[date] = None
    active_instance_id: Optional[str] = None
    exceptions: Optional[List[date]] = None

    @field_validator("generated_until", mode="before")
    @classmethod
    def _normalize_dates(cls, value):
        return normalize_to_date(value)

    @field_validator("exceptions", mode="before")
    @classmethod
    def _normalize_exceptions(cls, value):
        if value is None:
            return None
        return [normalize_to_date(item) for item in value]

    def changes(self) -> dict:
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "id"
        }


class PatternUpdate(PatternChanges):
    id: str


def apply_pattern_update(pattern: RecurringPattern, update: PatternUpdate) -> RecurringPattern:
    """Return a copy of ``pattern`` with the update applied and revalidated."""
    data = pattern.model_dump()
    for name, value in update.changes().items():
        data[name] = value.model_dump() if isinstance(value, BaseModel) else value
    data["updated_at"] = datetime.utcnow()
    return RecurringPattern.model_validate(data)


class PatternGeneration(BaseModel):
    """Outcome of materializing a window of pattern instances."""
    pattern: RecurringPattern
    instances: List[Task] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class MigrationResult(BaseModel):
    """Counters returned by a legacy recurrence migration run."""
    tasks_processed: int = 0
    patterns_created: int = 0
    instances_generated: int = 0
    instances_updated: int = 0
    errors: List[str] = Field(default_factory=list)

