"""
Repositories Package

The persistence boundary the engine talks to, and its SQLModel
implementation.
"""

from .base import PlannerRepository
from .sql import SqlPlannerRepository

__all__ = ["PlannerRepository", "SqlPlannerRepository"]
