"""
Reorder Transaction Manager

A reorder gesture moves through Idle -> OptimisticallyApplied -> Confirmed
or RolledBack. New numbers are applied to state before the batch write is
awaited; the previous keys are kept in the state's single rollback slot until
the write settles.
"""

import asyncio
import logging
from enum import Enum
from typing import List, Sequence

from planner.schemas.task import TaskUpdate
from planner.services.base import StateBoundService
from planner.services.errors import ReorderInProgressError, ReorderValidationError
from planner.services.priority import PriorityReorderResult, apply_explicit_order, reorder_to_fill_gaps
from planner.services.state import SyncStatus
from planner.utils.dates import normalize_to_date, to_date_string
from planner.utils.logger import engine_logger
from planner.utils.metrics import REORDERS_CONFIRMED, REORDERS_ROLLED_BACK, metrics_collector

logger = logging.getLogger(__name__)


class ReorderPhase(str, Enum):
    IDLE = "idle"
    OPTIMISTICALLY_APPLIED = "optimistically_applied"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class ReorderTransactionManager(StateBoundService):
    """Optimistic priority reordering with exact rollback."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.phase = ReorderPhase.IDLE

    @property
    def in_progress(self) -> bool:
        return self.state.reorder_rollback is not None

    async def reorder(self, ordered_ids: Sequence[str], letter: str) -> List[TaskUpdate]:
        """
        Apply a user-chosen order to one letter group.

        Args:
            ordered_ids: Task ids of the group in their new order
            letter: The priority letter every id must carry

        Returns:
            The updates that were persisted

        Raises:
            ReorderInProgressError: If another reorder is still unconfirmed
            ReorderValidationError: If an id is unknown or has another letter
        """
        if self.in_progress:
            error = ReorderInProgressError("Another reorder is still being saved")
            self.state.fail(error.message)
            raise error

        try:
            updates = apply_explicit_order(ordered_ids, letter, self.state.tasks)
        except ReorderValidationError as exc:
            self.state.fail(exc.message)
            raise

        # Snapshot, then apply optimistically
        self.state.reorder_rollback = {
            update.id: self.state.tasks[update.id].priority.model_copy() for update in updates
        }
        for update in updates:
            self.state.set_task_priority(update.id, update.priority)
        self.phase = ReorderPhase.OPTIMISTICALLY_APPLIED
        self.state.sync_status = SyncStatus.SYNCING

        try:
            await self.repository.batch_update_tasks(updates, self.user_id)
        except asyncio.CancelledError:
            self._rollback()
            self.state.fail("Reorder was cancelled before it was saved")
            metrics_collector.increment_counter(REORDERS_ROLLED_BACK)
            engine_logger.warning(
                "reorder_cancelled", user_id=self.user_id, letter=letter, task_ids=list(ordered_ids)
            )
            raise
        except Exception as exc:
            self._rollback()
            self.state.fail(f"Failed to reorder tasks: {exc}")
            metrics_collector.increment_counter(REORDERS_ROLLED_BACK)
            engine_logger.warning(
                "reorder_rolled_back",
                user_id=self.user_id,
                letter=letter,
                task_ids=list(ordered_ids),
                error=str(exc),
            )
            raise

        self.state.reorder_rollback = None
        self.phase = ReorderPhase.CONFIRMED
        self.state.clear_error()
        self.state.sync_status = SyncStatus.SYNCED
        metrics_collector.increment_counter(REORDERS_CONFIRMED)
        logger.info(f"Reordered {len(updates)} {letter} tasks for user {self.user_id}")
        return updates

    def _rollback(self):
        snapshot = self.state.reorder_rollback or {}
        for task_id, priority in snapshot.items():
            # A task removed meanwhile has nothing to restore
            if task_id in self.state.tasks:
                self.state.set_task_priority(task_id, priority)
        self.state.reorder_rollback = None
        self.phase = ReorderPhase.ROLLED_BACK

    async def fill_gaps(self, day) -> PriorityReorderResult:
        """
        Renumber the stored tasks of a day to 1..n per letter.

        Not optimistic: state changes only after the batch write succeeded.
        """
        day = normalize_to_date(day)
        result = reorder_to_fill_gaps(self.state.tasks_on(day))
        if not result.has_changes:
            return result

        async with self._syncing("Failed to reorder tasks"):
            tasks = await self.repository.batch_update_tasks(result.updates, self.user_id)
            self.state.upsert_tasks(tasks)
        logger.info(f"Filled priority gaps on {to_date_string(day)}: {len(result.updates)} tasks renumbered")
        return result
