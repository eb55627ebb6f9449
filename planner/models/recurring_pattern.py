"""Recurring pattern table model for SQLModel."""
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import JSON, Column, String, Text
from sqlmodel import Field, SQLModel


class RecurringPatternRecord(SQLModel, table=True):
    """Stored recurring pattern row. Nested rule parts live in JSON columns."""

    __tablename__ = "recurring_patterns"

    id: str = Field(primary_key=True, max_length=64)
    user_id: str = Field(sa_column=Column(String, index=True, nullable=False))

    # Template copied onto generated instances
    title: str = Field(max_length=200, min_length=1)
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    category_id: Optional[str] = Field(default=None, max_length=64)
    priority_letter: str = Field(default="B", max_length=1)
    priority_number: int = Field(default=0)
    start_time: Optional[str] = Field(default=None, max_length=5)
    duration: Optional[int] = Field(default=None)

    # Rule
    type: str = Field(max_length=20)
    interval: int = Field(default=1)
    days_of_week: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    day_of_month: Optional[int] = Field(default=None)
    month_of_year: Optional[int] = Field(default=None)
    nth_weekday: Optional[dict] = Field(default=None, sa_column=Column(JSON(none_as_null=True)))
    specific_dates_of_month: Optional[List[int]] = Field(default=None, sa_column=Column(JSON(none_as_null=True)))
    days_after_completion: Optional[int] = Field(default=None)
    end_condition: dict = Field(default_factory=dict, sa_column=Column(JSON))
    exceptions: List[str] = Field(default_factory=list, sa_column=Column(JSON))  # YYYY-MM-DD

    start_date: date
    generated_until: Optional[date] = Field(default=None)
    active_instance_id: Optional[str] = Field(default=None, max_length=64)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deleted_at: Optional[datetime] = Field(default=None, index=True)
