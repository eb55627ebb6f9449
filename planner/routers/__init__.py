"""Routers package for the planner API."""

from .patterns import router as patterns_router
from .tasks import router as tasks_router

__all__ = ["patterns_router", "tasks_router"]
