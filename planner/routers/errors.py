"""Mapping from engine errors to HTTP status codes."""
from fastapi import status

from planner.services.errors import (
    NotFoundError,
    PlannerError,
    ReorderInProgressError,
    ValidationError,
)


def status_code_for(exc: PlannerError) -> int:
    """HTTP status for an engine error; anything unexpected is a 500."""
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ReorderInProgressError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR
