"""Exceptions raised by the calendar sync pipeline."""
from typing import Optional


class CalendarSyncError(Exception):
    """Base class for failures that abort a sync invocation."""


class FetchFailure(CalendarSyncError):
    """Calendar feed could not be retrieved."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        reason: Optional[str] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason


class ParseFailure(CalendarSyncError):
    """Feed body is not a readable iCalendar document."""


class PersistenceFailure(CalendarSyncError):
    """A store write failed while reconciling events."""


class SyncInProgress(PersistenceFailure):
    """Another invocation currently holds the team's sync lock."""


class TimezoneLookupFailure(Exception):
    """Owning user's timezone could not be resolved.

    Never aborts a sync; callers fall back to UTC.
    """
