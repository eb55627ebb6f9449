"""Task table model for SQLModel."""
from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Column, String, Text
from sqlmodel import Field, SQLModel


class TaskRecord(SQLModel, table=True):
    """Stored task row. Priority is split into letter and number columns."""

    __tablename__ = "tasks"

    id: str = Field(primary_key=True, max_length=64)
    user_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    title: str = Field(max_length=200, min_length=1)
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    category_id: Optional[str] = Field(default=None, max_length=64)
    priority_letter: str = Field(default="B", max_length=1)
    priority_number: int = Field(default=1)
    status: str = Field(default="in_progress", max_length=20)
    scheduled_date: Optional[date] = Field(default=None, index=True)
    scheduled_time: Optional[str] = Field(default=None, max_length=5)

    # Legacy embedded recurrence, stored as JSON
    recurrence: Optional[dict] = Field(default=None, sa_column=Column(JSON(none_as_null=True)))
    recurring_pattern_id: Optional[str] = Field(default=None, index=True, max_length=64)
    is_recurring_instance: bool = Field(default=False)
    recurring_parent_id: Optional[str] = Field(default=None, index=True, max_length=64)
    instance_date: Optional[date] = Field(default=None)
    migrated_to_pattern_id: Optional[str] = Field(default=None, max_length=64)

    completed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deleted_at: Optional[datetime] = Field(default=None, index=True)
