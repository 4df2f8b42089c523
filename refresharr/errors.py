"""
Exception types raised by the Servarr clients and the cleanup engine.
"""

from typing import Optional


class ArrError(Exception):
    """Base class for errors talking to a Sonarr/Radarr instance."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ArrError):
    """The requested record does not exist (HTTP 404)."""


class OperationError(ArrError):
    """Any other failed request: non-2xx status, bad payload, transport error."""


class CleanupCancelled(ArrError):
    """The run was cancelled before every item was processed."""

    def __init__(self, message: str = "cleanup cancelled"):
        super().__init__(message)


def is_not_found_error(error: BaseException) -> bool:
    """Return True if the error means the record is already gone.

    Concurrent deletions of the same file record surface as 'not found'
    responses and are treated as informational rather than as failures.
    """
    if isinstance(error, NotFoundError):
        return True
    return "not found" in str(error).lower()
