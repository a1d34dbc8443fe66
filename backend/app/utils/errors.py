"""
Scheduler error taxonomy.

Each error carries the HTTP status the route layer surfaces it as:
- ValidationError (400): malformed input, never retried automatically
- NotFoundError (404): account/season/game outside the requested scope
- ConflictError (409): proposal no longer satisfies hard constraints, or a
  recorded run cannot be replayed for this request; caller must re-solve

Infeasibility is NOT an error. Unplaceable games are reported in the solve
result instead.
"""

from typing import Any, Dict, List, Optional


class SchedulerError(Exception):
    """Base exception for scheduler errors"""

    status_code = 500
    code = "SCHEDULER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(SchedulerError):
    """Malformed input or problem spec closure violated"""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(SchedulerError):
    """Referenced entity does not exist in the requested scope"""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(SchedulerError):
    """Apply proposal conflicts with current state"""

    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str, violations: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.violations = violations or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["violations"] = self.violations
        return result


class DuplicateRunError(SchedulerError):
    """Idempotency key already claimed by a concurrent or earlier apply"""

    status_code = 409
    code = "DUPLICATE_RUN"
