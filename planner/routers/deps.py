"""FastAPI dependencies shared by the planner routers."""
import logging
from typing import Dict, Optional

from fastapi import Depends

from planner.repositories.base import PlannerRepository
from planner.repositories.sql import SqlPlannerRepository
from planner.services.planner import Planner

logger = logging.getLogger(__name__)

_repository: Optional[PlannerRepository] = None


def get_repository() -> PlannerRepository:
    """Dependency for the process-wide SQL repository."""
    global _repository
    if _repository is None:
        from planner.db.config import engine

        _repository = SqlPlannerRepository(engine)
    return _repository


class PlannerRegistry:
    """Keeps one Planner (and so one state container) per user."""

    def __init__(self):
        self._planners: Dict[str, Planner] = {}

    def get(self, user_id: str, repository: PlannerRepository) -> Planner:
        planner = self._planners.get(user_id)
        if planner is None or planner.repository is not repository:
            logger.debug(f"Creating planner state for user {user_id}")
            planner = Planner(user_id, repository)
            self._planners[user_id] = planner
        return planner

    def clear(self):
        self._planners.clear()


registry = PlannerRegistry()


def get_planner(user_id: str, repository: PlannerRepository = Depends(get_repository)) -> Planner:
    """Dependency for the calling user's Planner."""
    return registry.get(user_id, repository)
