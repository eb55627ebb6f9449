"""SQLModel-backed implementation of the persistence boundary."""
import logging
import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from planner.models import RecurringPatternRecord, TaskRecord
from planner.repositories.base import PlannerRepository
from planner.schemas.pattern import PatternCreate, PatternUpdate, RecurringPattern, apply_pattern_update
from planner.schemas.task import (
    RecurrenceRule,
    Task,
    TaskCreate,
    TaskKind,
    TaskPriority,
    TaskUpdate,
    apply_task_update,
)
from planner.services.errors import NotFoundError
from planner.utils.dates import to_date_string

logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


# =============================================================================
# Record <-> domain conversion
# =============================================================================

def task_from_record(record: TaskRecord) -> Task:
    return Task(
        id=record.id,
        user_id=record.user_id,
        title=record.title,
        description=record.description or "",
        category_id=record.category_id,
        priority=TaskPriority(letter=record.priority_letter, number=record.priority_number),
        status=record.status,
        scheduled_date=record.scheduled_date,
        scheduled_time=record.scheduled_time,
        recurrence=RecurrenceRule.model_validate(record.recurrence) if record.recurrence else None,
        recurring_pattern_id=record.recurring_pattern_id,
        is_recurring_instance=record.is_recurring_instance,
        recurring_parent_id=record.recurring_parent_id,
        instance_date=record.instance_date,
        migrated_to_pattern_id=record.migrated_to_pattern_id,
        completed_at=record.completed_at,
        created_at=record.created_at,
        updated_at=record.updated_at,
        deleted_at=record.deleted_at,
    )


def _task_columns(task: Task) -> dict:
    return {
        "title": task.title,
        "description": task.description,
        "category_id": task.category_id,
        "priority_letter": task.priority.letter,
        "priority_number": task.priority.number,
        "status": task.status.value,
        "scheduled_date": task.scheduled_date,
        "scheduled_time": task.scheduled_time,
        "recurrence": task.recurrence.model_dump(mode="json") if task.recurrence else None,
        "recurring_pattern_id": task.recurring_pattern_id,
        "is_recurring_instance": task.is_recurring_instance,
        "recurring_parent_id": task.recurring_parent_id,
        "instance_date": task.instance_date,
        "migrated_to_pattern_id": task.migrated_to_pattern_id,
        "completed_at": task.completed_at,
        "updated_at": task.updated_at,
    }


def pattern_from_record(record: RecurringPatternRecord) -> RecurringPattern:
    return RecurringPattern(
        id=record.id,
        user_id=record.user_id,
        title=record.title,
        description=record.description or "",
        category_id=record.category_id,
        priority=TaskPriority(letter=record.priority_letter, number=record.priority_number),
        start_time=record.start_time,
        duration=record.duration,
        type=record.type,
        interval=record.interval,
        days_of_week=record.days_of_week or [],
        day_of_month=record.day_of_month,
        month_of_year=record.month_of_year,
        nth_weekday=record.nth_weekday,
        specific_dates_of_month=record.specific_dates_of_month,
        days_after_completion=record.days_after_completion,
        end_condition=record.end_condition or {},
        exceptions=record.exceptions or [],
        start_date=record.start_date,
        generated_until=record.generated_until,
        active_instance_id=record.active_instance_id,
        created_at=record.created_at,
        updated_at=record.updated_at,
        deleted_at=record.deleted_at,
    )


def _pattern_columns(pattern: RecurringPattern) -> dict:
    data = pattern.model_dump(mode="json")
    return {
        "title": pattern.title,
        "description": pattern.description,
        "category_id": pattern.category_id,
        "priority_letter": pattern.priority.letter,
        "priority_number": pattern.priority.number,
        "start_time": pattern.start_time,
        "duration": pattern.duration,
        "type": pattern.type.value,
        "interval": pattern.interval,
        "days_of_week": data["days_of_week"],
        "day_of_month": pattern.day_of_month,
        "month_of_year": pattern.month_of_year,
        "nth_weekday": data["nth_weekday"],
        "specific_dates_of_month": data["specific_dates_of_month"],
        "days_after_completion": pattern.days_after_completion,
        "end_condition": data["end_condition"],
        "exceptions": [to_date_string(day) for day in pattern.exceptions],
        "start_date": pattern.start_date,
        "generated_until": pattern.generated_until,
        "active_instance_id": pattern.active_instance_id,
        "updated_at": pattern.updated_at,
    }


class SqlPlannerRepository(PlannerRepository):
    """
    Stores tasks and patterns through SQLModel sessions.

    Each call opens its own session; batch updates commit once so they apply
    all-or-nothing.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_task_record(self, session: Session, task_id: str, user_id: str, include_deleted: bool = False) -> TaskRecord:
        record = session.get(TaskRecord, task_id)
        if record is None or record.user_id != user_id or (record.deleted_at is not None and not include_deleted):
            raise NotFoundError(f"Task {task_id} not found", {"task_id": task_id})
        return record

    def _get_pattern_record(self, session: Session, pattern_id: str, user_id: str) -> RecurringPatternRecord:
        record = session.get(RecurringPatternRecord, pattern_id)
        if record is None or record.user_id != user_id or record.deleted_at is not None:
            raise NotFoundError(f"Recurring pattern {pattern_id} not found", {"pattern_id": pattern_id})
        return record

    @staticmethod
    def _apply_task_update(record: TaskRecord, update: TaskUpdate) -> TaskRecord:
        # Revalidated through the domain model so mixed task shapes are rejected
        updated = apply_task_update(task_from_record(record), update)
        for column, value in _task_columns(updated).items():
            setattr(record, column, value)
        return record

    def _live_tasks(self, user_id: str):
        return select(TaskRecord).where(TaskRecord.user_id == user_id, TaskRecord.deleted_at.is_(None))

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def get_tasks_by_date(self, user_id: str, day: date) -> List[Task]:
        with Session(self.engine) as session:
            records = session.exec(self._live_tasks(user_id).where(TaskRecord.scheduled_date == day)).all()
            return [task_from_record(record) for record in records]

    async def get_tasks_by_range(self, user_id: str, start: date, end: date) -> List[Task]:
        with Session(self.engine) as session:
            statement = self._live_tasks(user_id).where(
                TaskRecord.scheduled_date >= start,
                TaskRecord.scheduled_date <= end,
            )
            return [task_from_record(record) for record in session.exec(statement).all()]

    async def get_recurring_tasks(self, user_id: str) -> List[Task]:
        with Session(self.engine) as session:
            statement = self._live_tasks(user_id).where(
                TaskRecord.recurrence.is_not(None),
                TaskRecord.is_recurring_instance == False,  # noqa: E712
            )
            tasks = [task_from_record(record) for record in session.exec(statement).all()]
            return [task for task in tasks if task.kind is TaskKind.RECURRING_PARENT]

    async def get_task(self, task_id: str, user_id: str, include_deleted: bool = False) -> Task:
        with Session(self.engine) as session:
            return task_from_record(self._get_task_record(session, task_id, user_id, include_deleted))

    async def get_instances_for_parent(self, parent_id: str, user_id: str) -> List[Task]:
        with Session(self.engine) as session:
            statement = self._live_tasks(user_id).where(TaskRecord.recurring_parent_id == parent_id)
            return [task_from_record(record) for record in session.exec(statement).all()]

    async def create_task(self, data: TaskCreate, user_id: str) -> Task:
        task = Task(id=new_id(), user_id=user_id, **data.model_dump())
        record = TaskRecord(id=task.id, user_id=user_id, created_at=task.created_at, **_task_columns(task))
        with Session(self.engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            logger.debug(f"Created task {record.id} for user {user_id}")
            return task_from_record(record)

    async def update_task(self, update: TaskUpdate, user_id: str) -> Task:
        with Session(self.engine) as session:
            record = self._apply_task_update(self._get_task_record(session, update.id, user_id), update)
            session.add(record)
            session.commit()
            session.refresh(record)
            return task_from_record(record)

    async def soft_delete_task(self, task_id: str, user_id: str) -> None:
        with Session(self.engine) as session:
            record = self._get_task_record(session, task_id, user_id, include_deleted=True)
            if record.deleted_at is None:
                record.deleted_at = datetime.utcnow()
                session.add(record)
                session.commit()

    async def hard_delete_task(self, task_id: str, user_id: str) -> None:
        with Session(self.engine) as session:
            record = session.get(TaskRecord, task_id)
            # Deleting a missing row is a no-op so compensation can be retried
            if record is None:
                return
            if record.user_id != user_id:
                raise NotFoundError(f"Task {task_id} not found", {"task_id": task_id})
            session.delete(record)
            session.commit()

    async def restore_task(self, task_id: str, user_id: str) -> Task:
        with Session(self.engine) as session:
            record = self._get_task_record(session, task_id, user_id, include_deleted=True)
            record.deleted_at = None
            record.updated_at = datetime.utcnow()
            session.add(record)
            session.commit()
            session.refresh(record)
            return task_from_record(record)

    async def batch_update_tasks(self, updates: List[TaskUpdate], user_id: str) -> List[Task]:
        with Session(self.engine) as session:
            records = []
            for update in updates:
                record = self._apply_task_update(self._get_task_record(session, update.id, user_id), update)
                session.add(record)
                records.append(record)
            session.commit()
            for record in records:
                session.refresh(record)
            return [task_from_record(record) for record in records]

    # ------------------------------------------------------------------
    # Recurring patterns
    # ------------------------------------------------------------------

    async def create_recurring_pattern(self, data: PatternCreate, user_id: str) -> RecurringPattern:
        pattern = RecurringPattern(id=new_id(), user_id=user_id, **data.model_dump())
        record = RecurringPatternRecord(
            id=pattern.id,
            user_id=user_id,
            created_at=pattern.created_at,
            **_pattern_columns(pattern),
        )
        with Session(self.engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return pattern_from_record(record)

    async def get_recurring_pattern(self, pattern_id: str, user_id: str) -> RecurringPattern:
        with Session(self.engine) as session:
            return pattern_from_record(self._get_pattern_record(session, pattern_id, user_id))

    async def get_recurring_patterns(self, user_id: str) -> List[RecurringPattern]:
        with Session(self.engine) as session:
            statement = select(RecurringPatternRecord).where(
                RecurringPatternRecord.user_id == user_id,
                RecurringPatternRecord.deleted_at.is_(None),
            )
            return [pattern_from_record(record) for record in session.exec(statement).all()]

    async def update_recurring_pattern(self, update: PatternUpdate, user_id: str) -> RecurringPattern:
        with Session(self.engine) as session:
            record = self._get_pattern_record(session, update.id, user_id)
            updated = apply_pattern_update(pattern_from_record(record), update)
            for column, value in _pattern_columns(updated).items():
                setattr(record, column, value)
            session.add(record)
            session.commit()
            session.refresh(record)
            return pattern_from_record(record)

    async def delete_recurring_pattern(self, pattern_id: str, user_id: str, cascade: bool = True) -> None:
        with Session(self.engine) as session:
            record = self._get_pattern_record(session, pattern_id, user_id)
            deleted_at = datetime.utcnow()
            record.deleted_at = deleted_at
            session.add(record)
            if cascade:
                statement = self._live_tasks(user_id).where(TaskRecord.recurring_pattern_id == pattern_id)
                for instance in session.exec(statement).all():
                    instance.deleted_at = deleted_at
                    session.add(instance)
            session.commit()

    async def get_instances_for_pattern(
        self,
        pattern_id: str,
        user_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Task]:
        with Session(self.engine) as session:
            statement = self._live_tasks(user_id).where(TaskRecord.recurring_pattern_id == pattern_id)
            if start is not None:
                statement = statement.where(TaskRecord.instance_date >= start)
            if end is not None:
                statement = statement.where(TaskRecord.instance_date <= end)
            return [task_from_record(record) for record in session.exec(statement).all()]

    async def soft_delete_pattern_instances(
        self,
        pattern_id: str,
        user_id: str,
        start: Optional[date] = None,
    ) -> List[str]:
        with Session(self.engine) as session:
            statement = self._live_tasks(user_id).where(TaskRecord.recurring_pattern_id == pattern_id)
            if start is not None:
                statement = statement.where(TaskRecord.instance_date >= start)
            deleted_at = datetime.utcnow()
            ids = []
            for record in session.exec(statement).all():
                record.deleted_at = deleted_at
                session.add(record)
                ids.append(record.id)
            session.commit()
            return ids

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def get_users_with_recurring_tasks(self) -> List[str]:
        """Ids of users that still own legacy recurring parents."""
        with Session(self.engine) as session:
            statement = select(TaskRecord.user_id).where(
                TaskRecord.deleted_at.is_(None),
                TaskRecord.recurrence.is_not(None),
                TaskRecord.is_recurring_instance == False,  # noqa: E712
            ).distinct()
            return sorted(session.exec(statement).all())
