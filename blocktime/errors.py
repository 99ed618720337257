from typing import Any, Dict, Optional, Tuple


class SchedulingError(Exception):
    """Base class for every error raised by the allocation engine."""


class ValidationError(SchedulingError, ValueError):
    """Malformed input. Raised before anything is written."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConflictError(SchedulingError):
    """A write would double-book a resource or the record changed underneath the caller.

    ``resource`` identifies what collided, e.g. ``('room', 4)``.
    """

    def __init__(self, message: str, resource: Optional[Tuple[str, Any]] = None):
        super().__init__(message)
        self.resource = resource


class ExpiredError(SchedulingError):
    """Undo attempted at or after the undo deadline."""


class NotFoundError(SchedulingError, LookupError):
    pass


class UnassignableWarning(UserWarning):
    """Issued once per bulk run that left courses or requests unplaced.

    The run itself still succeeds; the items are listed in its report.
    """
