"""Recurring pattern router for the planner API."""
import logging
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query, status

from planner.routers.deps import get_planner
from planner.schemas.pattern import (
    MigrationResult,
    PatternChanges,
    PatternCreate,
    PatternGeneration,
    PatternUpdate,
    RecurringPattern,
)
from planner.schemas.task import Task
from planner.services.planner import Planner
from planner.services.state import active_recurring_patterns

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Recurring Patterns"])  # No prefix since main.py adds /api prefix


@router.get("/{user_id}/patterns", response_model=List[RecurringPattern])
async def list_patterns(planner: Planner = Depends(get_planner)):
    """Active recurring patterns ordered by title."""
    await planner.patterns.fetch_recurring_patterns()
    return active_recurring_patterns(planner.state)


@router.post("/{user_id}/patterns", response_model=PatternGeneration, status_code=status.HTTP_201_CREATED)
async def create_pattern(pattern_data: PatternCreate, planner: Planner = Depends(get_planner)):
    """Create a pattern and store its first generation window of instances."""
    await planner.ensure_sources()
    return await planner.patterns.create_recurring_pattern(pattern_data)


@router.get("/{user_id}/patterns/{pattern_id}", response_model=RecurringPattern)
async def get_pattern(user_id: str, pattern_id: str, planner: Planner = Depends(get_planner)):
    return await planner.repository.get_recurring_pattern(pattern_id, user_id)


@router.patch("/{user_id}/patterns/{pattern_id}", response_model=PatternGeneration)
async def update_pattern(
    pattern_id: str,
    changes: PatternChanges,
    regenerate: bool = Query(False, description="Replace future in-progress instances"),
    planner: Planner = Depends(get_planner),
):
    await planner.ensure_sources()
    update = PatternUpdate(id=pattern_id, **changes.model_dump(exclude_unset=True))
    return await planner.patterns.update_recurring_pattern(update, regenerate_future_instances=regenerate)


@router.delete("/{user_id}/patterns/{pattern_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pattern(
    pattern_id: str,
    cascade: bool = Query(True, description="Also soft-delete the pattern's instances"),
    planner: Planner = Depends(get_planner),
):
    await planner.patterns.delete_recurring_pattern(pattern_id, cascade)


@router.post("/{user_id}/patterns/{pattern_id}/ensure/{day}", response_model=List[Task])
async def ensure_instances(pattern_id: str, day: date, planner: Planner = Depends(get_planner)):
    """Generate instances through ``day`` plus the generation window when needed."""
    await planner.ensure_sources()
    return await planner.patterns.ensure_instances_for_date(pattern_id, day)


@router.post("/{user_id}/migrations/recurring", response_model=MigrationResult)
async def migrate_recurring(
    dry_run: bool = Query(False, description="Count changes without writing"),
    planner: Planner = Depends(get_planner),
):
    """Convert legacy recurring tasks into recurring patterns."""
    return await planner.migrator.migrate_all(dry_run=dry_run)
