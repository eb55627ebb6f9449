"""Task and occurrence router for the planner API."""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from planner.routers.deps import get_planner
from planner.schemas.task import (
    CleanupResult,
    ForwardRequest,
    OccurrenceOverrides,
    ReorderRequest,
    StatusRequest,
    Task,
    TaskChanges,
    TaskCreate,
    TaskUpdate,
)
from planner.services.planner import Planner
from planner.services.state import completed_task_count_for_date
from planner.utils.dates import to_date_string

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tasks"])  # No prefix since main.py adds /api prefix


@router.get("/{user_id}/days/{day}", response_model=Dict[str, Any])
async def get_day(day: date, planner: Planner = Depends(get_planner)):
    """Tasks visible on a day, stored and virtual, in priority order."""
    tasks = await planner.load_date(day)
    return {
        "date": to_date_string(day),
        "tasks": tasks,
        "count": len(tasks),
        "completed": completed_task_count_for_date(planner.state, day),
        "sync_status": planner.state.sync_status.value,
    }


@router.get("/{user_id}/days/{day}/by-priority", response_model=Dict[str, List[Task]])
async def get_day_by_priority(day: date, planner: Planner = Depends(get_planner)):
    await planner.load_date(day)
    return planner.tasks_by_priority(day)


@router.post("/{user_id}/tasks", response_model=Task, status_code=status.HTTP_201_CREATED)
async def create_task(task_data: TaskCreate, planner: Planner = Depends(get_planner)):
    """Create a task; a priority number of 0 takes the next free number of the day."""
    await planner.load_date(task_data.scheduled_date)
    return await planner.tasks.create_task(task_data)


@router.get("/{user_id}/tasks/{task_id}", response_model=Task)
async def get_task(task_id: str, planner: Planner = Depends(get_planner)):
    return await planner.ensure_task(task_id)


@router.patch("/{user_id}/tasks/{task_id}", response_model=Task)
async def update_task(task_id: str, changes: TaskChanges, planner: Planner = Depends(get_planner)):
    await planner.ensure_task(task_id)
    update = TaskUpdate(id=task_id, **changes.model_dump(exclude_unset=True))
    return await planner.tasks.update_task(update)


@router.delete("/{user_id}/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    permanent: bool = Query(False, description="Remove the row instead of soft-deleting it"),
    planner: Planner = Depends(get_planner),
):
    await planner.ensure_task(task_id)
    if permanent:
        await planner.tasks.hard_delete_task(task_id)
    else:
        await planner.tasks.soft_delete_task(task_id)


@router.post("/{user_id}/tasks/{task_id}/restore", response_model=Task)
async def restore_task(task_id: str, planner: Planner = Depends(get_planner)):
    return await planner.tasks.restore_task(task_id)


@router.post("/{user_id}/tasks/{task_id}/forward", response_model=Task, status_code=status.HTTP_201_CREATED)
async def forward_task(task_id: str, request: ForwardRequest, planner: Planner = Depends(get_planner)):
    """Copy a task to another day and mark the original as forwarded."""
    return await planner.forward_task(task_id, request.new_date)


@router.post("/{user_id}/tasks/{task_id}/complete", response_model=Optional[Task])
async def complete_after_completion(task_id: str, planner: Planner = Depends(get_planner)):
    """Complete an afterCompletion instance; returns the next instance, if any."""
    return await planner.complete_after_completion(task_id)


@router.post("/{user_id}/days/{day}/tasks/{task_id}/cycle-status", response_model=Task)
async def cycle_status(day: date, task_id: str, planner: Planner = Depends(get_planner)):
    await planner.load_date(day)
    return await planner.cycle_status(day, task_id)


@router.put("/{user_id}/days/{day}/tasks/{task_id}/status", response_model=Task)
async def set_status(day: date, task_id: str, request: StatusRequest, planner: Planner = Depends(get_planner)):
    await planner.load_date(day)
    return await planner.set_status(day, task_id, request.status)


@router.post("/{user_id}/days/{day}/reorder", response_model=List[Task])
async def reorder(day: date, request: ReorderRequest, planner: Planner = Depends(get_planner)):
    """Apply a new order to one priority letter; returns the day's visible tasks."""
    await planner.load_date(day)
    await planner.reorder.reorder(request.ordered_ids, request.letter)
    return planner.visible_tasks(day)


@router.post("/{user_id}/days/{day}/fill-gaps", response_model=List[Task])
async def fill_gaps(day: date, planner: Planner = Depends(get_planner)):
    await planner.load_date(day)
    await planner.reorder.fill_gaps(day)
    return planner.visible_tasks(day)


@router.put("/{user_id}/recurring/{source_id}/occurrences/{day}", response_model=Task)
async def edit_occurrence(
    source_id: str,
    day: date,
    overrides: OccurrenceOverrides,
    planner: Planner = Depends(get_planner),
):
    """Edit this occurrence only; the occurrence is stored as its own task."""
    await planner.load_date(day)
    return await planner.materializer.materialize(source_id, day, overrides)


@router.patch("/{user_id}/recurring/{source_id}", response_model=Dict[str, Any])
async def edit_future(source_id: str, overrides: OccurrenceOverrides, planner: Planner = Depends(get_planner)):
    """Edit this and all future occurrences by changing the series template."""
    await planner.ensure_sources()
    updated = await planner.materializer.edit_future(source_id, overrides)
    return updated.model_dump()


@router.delete("/{user_id}/recurring/{source_id}/occurrences/{day}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_occurrence(
    source_id: str,
    day: date,
    scope: str = Query("this", pattern="^(this|future)$", description="this: one occurrence, future: this and all later"),
    planner: Planner = Depends(get_planner),
):
    await planner.load_date(day)
    if scope == "future":
        await planner.materializer.delete_occurrence_and_future(source_id, day)
    else:
        await planner.materializer.delete_occurrence(source_id, day)


@router.post("/{user_id}/maintenance/cleanup-exceptions", response_model=CleanupResult)
async def cleanup_duplicate_exceptions(planner: Planner = Depends(get_planner)):
    return await planner.tasks.cleanup_duplicate_exceptions()
