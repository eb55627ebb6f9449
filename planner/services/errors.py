"""
Planner engine errors.

Every engine failure carries a machine-readable code, a human-readable
message (the one shown to the user) and optional details. Errors raised by
the persistence layer are not wrapped and reach the caller unchanged, except
where a compensating action ran (PartialFailureError, ManualAttentionError).
"""

from typing import Any, Dict, Optional


class PlannerError(Exception):
    """Base exception for planner engine errors"""
    code = "PLANNER_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: Optional[str] = None):
        self.code = code or self.code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(PlannerError):
    """Rejected before any write."""
    code = "VALIDATION_ERROR"


class NotFoundError(ValidationError):
    code = "NOT_FOUND"


class NotRecurringError(ValidationError):
    code = "NOT_RECURRING"


class ReorderValidationError(ValidationError):
    code = "INVALID_REORDER"


class ReorderInProgressError(ValidationError):
    """A second reorder was started before the first one was confirmed."""
    code = "REORDER_IN_PROGRESS"


class PartialFailureError(PlannerError):
    """A later write failed and the earlier write was compensated."""
    code = "PARTIAL_FAILURE"


class ManualAttentionError(PlannerError):
    """A compensating write failed; stored data is inconsistent."""
    code = "MANUAL_ATTENTION_REQUIRED"
