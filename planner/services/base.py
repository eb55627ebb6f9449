"""Shared plumbing for services that operate on one user's PlannerState."""
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Callable, Optional

from planner import config
from planner.repositories.base import PlannerRepository
from planner.schemas.task import Task
from planner.services.errors import ManualAttentionError, PlannerError
from planner.services.state import PlannerState, SyncStatus
from planner.utils import dates
from planner.utils.logger import engine_logger
from planner.utils.metrics import MATERIALIZATION_COMPENSATIONS, metrics_collector

logger = logging.getLogger(__name__)


class StateBoundService:
    """Base class holding the state container, repository and clock."""

    def __init__(
        self,
        state: PlannerState,
        repository: PlannerRepository,
        clock: Optional[Callable[[], date]] = None,
        generation_days: Optional[int] = None,
    ):
        self.state = state
        self.repository = repository
        self.clock = clock or dates.today
        self.generation_days = generation_days or config.GENERATION_DAYS

    @property
    def user_id(self) -> str:
        return self.state.user_id

    @asynccontextmanager
    async def _syncing(self, failure_message: str):
        """
        Track sync status around one operation.

        A failure records a human-readable message on the state and is
        re-raised unchanged.
        """
        self.state.sync_status = SyncStatus.SYNCING
        try:
            yield
        except PlannerError as exc:
            self.state.fail(exc.message)
            raise
        except Exception as exc:
            logger.error(f"{failure_message}: {exc}")
            self.state.fail(f"{failure_message}: {exc}")
            raise
        else:
            self.state.clear_error()
            self.state.sync_status = SyncStatus.SYNCED

    async def _compensate_create(self, created: Task, cause: Exception, source_id: Optional[str] = None):
        """
        Hard-delete a record whose follow-up write failed.

        Raises:
            ManualAttentionError: If the delete fails too
        """
        try:
            await self.repository.hard_delete_task(created.id, self.user_id)
        except Exception as delete_exc:
            engine_logger.critical(
                "compensation_failed",
                user_id=self.user_id,
                task_id=created.id,
                source_id=source_id,
                cause=str(cause),
                error=str(delete_exc),
            )
            raise ManualAttentionError(
                f"Task {created.id} was saved but a follow-up write failed and it could not be "
                f"removed; it needs manual correction",
                {"task_id": created.id, "source_id": source_id, "cause": str(cause)},
            ) from delete_exc
        metrics_collector.increment_counter(MATERIALIZATION_COMPENSATIONS)
        engine_logger.warning(
            "compensated_partial_write",
            user_id=self.user_id,
            task_id=created.id,
            source_id=source_id,
            cause=str(cause),
        )
